"""Contact / Sole: 발 착지 위치와 지지 다각형

★ 좌표 규약:
  - pose: 4x4 동차 변환 (world ← contact)
  - 지지 다각형: contact 평면 위 직사각형 (±half_length, ±half_width)
  - 다각형 연산은 모두 world XY 평면에서 수행 (평지 가정)

★ 다각형 표현:
  - vertices: (M, 2) 반시계 방향 꼭짓점
  - hrep: A·p ≤ b
"""

import dataclasses
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from scipy.spatial import ConvexHull

from capture_walking.config import (
    SOLE_FRICTION, SOLE_HALF_LENGTH, SOLE_HALF_WIDTH, SOLE_LEFT_ANKLE_OFFSET,
)
from capture_walking.errors import ConfigError
from capture_walking.utils import make_pose, matrix_to_rpy, rpy_to_matrix

LEFT_FOOT_SURFACE = "LeftFootCenter"
RIGHT_FOOT_SURFACE = "RightFootCenter"

SWING_CONFIG_KEYS = (
    "landing_pitch", "landing_ratio", "height",
    "takeoff_offset", "takeoff_pitch", "takeoff_ratio",
)


@dataclass
class Sole:
    """발바닥 물리 형상."""

    half_length: float = SOLE_HALF_LENGTH
    half_width: float = SOLE_HALF_WIDTH
    friction: float = SOLE_FRICTION
    left_ankle_offset: tuple = SOLE_LEFT_ANKLE_OFFSET

    def ankle_offset(self, is_left_foot: bool) -> np.ndarray:
        """sole 중심 기준 발목 오프셋 (오른발은 y 반전)."""
        x, y = self.left_ankle_offset
        return np.array([x, y if is_left_foot else -y])


@dataclass(frozen=True, eq=False)
class Contact:
    """plan 안의 발자국 하나.

    plan에 들어간 뒤에는 불변. step 완료 시 drift 보정만
    dataclasses.replace로 새 객체를 만들어 교체한다.
    """

    pose: np.ndarray
    surface: str
    id: int = 0
    half_length: Optional[float] = None
    half_width: Optional[float] = None
    ankle_offset: Optional[np.ndarray] = None
    swing_config: dict = field(default_factory=dict)
    double_support_duration: Optional[float] = None
    single_support_duration: Optional[float] = None
    ref_vel: np.ndarray = field(default_factory=lambda: np.zeros(3))

    # ================================================================== #
    # 기하 정보
    # ================================================================== #
    @property
    def position(self) -> np.ndarray:
        return self.pose[:3, 3]

    @property
    def rotation(self) -> np.ndarray:
        return self.pose[:3, :3]

    @property
    def is_left_foot(self) -> bool:
        return self.surface == LEFT_FOOT_SURFACE

    @property
    def is_complete(self) -> bool:
        return self.half_length is not None and self.half_width is not None

    @property
    def vertices(self) -> np.ndarray:
        """world XY 평면의 직사각형 꼭짓점 (4, 2), 반시계 방향."""
        hl, hw = self.half_length, self.half_width
        local = np.array([
            [+hl, +hw, 0.0],
            [-hl, +hw, 0.0],
            [-hl, -hw, 0.0],
            [+hl, -hw, 0.0],
        ])
        world = local @ self.rotation.T + self.position
        return world[:, :2]

    def hrep(self):
        return polygon_hrep(self.vertices)

    @property
    def ankle_position(self) -> np.ndarray:
        offset = np.zeros(3)
        if self.ankle_offset is not None:
            offset[:2] = self.ankle_offset
        return self.position + self.rotation @ offset

    # ================================================================== #
    # 설정 dict 변환
    # ================================================================== #
    @staticmethod
    def from_config(config: dict, contact_id: int = 0) -> "Contact":
        for key in ("pose", "surface"):
            if key not in config:
                raise ConfigError(f"contact #{contact_id}: '{key}' 필드 없음")
        swing_config = dict(config.get("swing", {}))
        unknown = set(swing_config) - set(SWING_CONFIG_KEYS)
        if unknown:
            raise ConfigError(f"contact #{contact_id}: 알 수 없는 swing 키 {sorted(unknown)}")
        if "takeoff_offset" in swing_config:
            swing_config["takeoff_offset"] = np.array(swing_config["takeoff_offset"], dtype=float)
        return Contact(
            pose=pose_from_config(config["pose"]),
            surface=config["surface"],
            id=contact_id,
            half_length=config.get("half_length"),
            half_width=config.get("half_width"),
            swing_config=swing_config,
            double_support_duration=config.get("double_support_duration"),
            single_support_duration=config.get("single_support_duration"),
            ref_vel=np.array(config.get("ref_vel", np.zeros(3)), dtype=float),
        )

    def to_config(self) -> dict:
        config = {
            "pose": pose_to_config(self.pose),
            "surface": self.surface,
        }
        if self.is_complete:
            config["half_length"] = self.half_length
            config["half_width"] = self.half_width
        if self.swing_config:
            config["swing"] = {
                key: (value.tolist() if isinstance(value, np.ndarray) else value)
                for key, value in self.swing_config.items()
            }
        if self.double_support_duration is not None:
            config["double_support_duration"] = self.double_support_duration
        if self.single_support_duration is not None:
            config["single_support_duration"] = self.single_support_duration
        if np.any(self.ref_vel):
            config["ref_vel"] = self.ref_vel.tolist()
        return config

    def completed(self, sole: Sole) -> "Contact":
        """sole 형상으로 빠진 지지 다각형을 채운 contact. 이미 완성이면 그대로."""
        if self.is_complete and self.ankle_offset is not None:
            return self
        return dataclasses.replace(
            self,
            half_length=self.half_length if self.half_length is not None else sole.half_length,
            half_width=self.half_width if self.half_width is not None else sole.half_width,
            ankle_offset=(self.ankle_offset if self.ankle_offset is not None
                          else sole.ankle_offset(self.is_left_foot)),
        )


def pose_from_config(config) -> np.ndarray:
    """{"translation": [x,y,z], "rotation": [r,p,y] 또는 3x3} → 4x4"""
    translation = np.array(config.get("translation", np.zeros(3)), dtype=float)
    rotation = np.array(config.get("rotation", np.zeros(3)), dtype=float)
    if rotation.shape == (3,):
        rotation = rpy_to_matrix(rotation)
    elif rotation.shape != (3, 3):
        raise ConfigError(f"rotation 형식 오류: shape {rotation.shape}")
    if translation.shape != (3,):
        raise ConfigError(f"translation 형식 오류: shape {translation.shape}")
    return make_pose(rotation, translation)


def pose_to_config(pose: np.ndarray) -> dict:
    return {
        "translation": pose[:3, 3].tolist(),
        "rotation": matrix_to_rpy(pose[:3, :3]).tolist(),
    }


# ================================================================== #
# 다각형 연산 (world XY)
# ================================================================== #
def polygon_hrep(vertices: np.ndarray):
    """반시계 꼭짓점 → (A, b), A·p ≤ b"""
    A = []
    b = []
    M = len(vertices)
    for i in range(M):
        v0 = vertices[i]
        v1 = vertices[(i + 1) % M]
        edge = v1 - v0
        normal = np.array([edge[1], -edge[0]])   # 반시계 → 바깥쪽 법선
        normal /= np.linalg.norm(normal)
        A.append(normal)
        b.append(normal @ v0)
    return np.array(A), np.array(b)


def support_hull(*contacts: Contact) -> np.ndarray:
    """여러 contact의 convex hull 꼭짓점 (반시계)."""
    unique = []
    for contact in contacts:
        if all(contact.id != c.id for c in unique):
            unique.append(contact)
    if len(unique) == 1:
        return unique[0].vertices
    points = np.vstack([c.vertices for c in unique])
    hull = ConvexHull(points)
    return points[hull.vertices]   # 2D에서는 반시계 순서


def polygon_centroid(vertices: np.ndarray) -> np.ndarray:
    return vertices.mean(axis=0)


def is_inside_polygon(point, vertices, tol: float = 1e-9) -> bool:
    A, b = polygon_hrep(vertices)
    return bool(np.all(A @ np.asarray(point)[:2] <= b + tol))


def project_onto_polygon(point, vertices) -> np.ndarray:
    """점을 convex polygon에 투영. 내부면 그대로 반환."""
    p = np.asarray(point, dtype=float)[:2]
    if is_inside_polygon(p, vertices):
        return p.copy()
    best = None
    best_dist = np.inf
    M = len(vertices)
    for i in range(M):
        v0 = vertices[i]
        v1 = vertices[(i + 1) % M]
        edge = v1 - v0
        s = np.clip((p - v0) @ edge / (edge @ edge), 0.0, 1.0)
        candidate = v0 + s * edge
        dist = np.linalg.norm(p - candidate)
        if dist < best_dist:
            best, best_dist = candidate, dist
    return best
