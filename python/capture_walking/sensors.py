"""발 힘/토크 센서 → net wrench, ZMP, 좌우 하중 비율

★ 모든 Wrench는 world 원점 기준 (force, couple)으로 표현한다.
★ ZMP (높이 h 평면):
    p_x = (h·f_x - τ_y) / f_z
    p_y = (τ_x + h·f_y) / f_z
  f_z < FZ_THRESHOLD 이면 공중으로 보고 None 반환
"""

from dataclasses import dataclass, field

import numpy as np

from capture_walking.config import FZ_THRESHOLD


@dataclass
class Wrench:
    force: np.ndarray = field(default_factory=lambda: np.zeros(3))
    couple: np.ndarray = field(default_factory=lambda: np.zeros(3))

    @staticmethod
    def at_point(force, couple, point) -> "Wrench":
        """point에서 측정한 wrench를 world 원점 기준으로 옮긴다. τ_0 = τ_p + p × f"""
        force = np.asarray(force, dtype=float)
        couple = np.asarray(couple, dtype=float)
        return Wrench(force.copy(), couple + np.cross(np.asarray(point, dtype=float), force))

    def __add__(self, other: "Wrench") -> "Wrench":
        return Wrench(self.force + other.force, self.couple + other.couple)


def net_wrench(*wrenches: Wrench) -> Wrench:
    total = Wrench()
    for wrench in wrenches:
        total = total + wrench
    return total


def zmp_from_wrench(wrench: Wrench, plane_height: float = 0.0):
    """높이 plane_height 평면 위 ZMP (3,). 공중이면 None."""
    fx, fy, fz = wrench.force
    if fz < FZ_THRESHOLD:
        return None
    tx, ty, _ = wrench.couple
    h = plane_height
    return np.array([(h * fx - ty) / fz, (tx + h * fy) / fz, h])


def left_foot_ratio(left: Wrench, right: Wrench) -> float:
    """왼발 수직 하중 비율 ∈ [0, 1]. 양발 모두 무하중이면 0.5."""
    fz_left = max(0.0, left.force[2])
    fz_right = max(0.0, right.force[2])
    total = fz_left + fz_right
    if total <= 0.0:
        return 0.5
    return fz_left / total
