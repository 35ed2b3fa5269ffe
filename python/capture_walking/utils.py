import numpy as np


def clamp(value, lower, upper):
    """[lower, upper]로 포화. 범위 밖 입력에도 실패하지 않는다 (NaN → lower)."""
    if np.isnan(value):
        return lower
    return min(max(value, lower), upper)


def quantize(duration, period):
    """period의 정수배로 반올림 (1e-9 s 해상도로 정리).

    0.5 경계는 0에서 먼 쪽으로 (0.05 → 0.1, 0.25 → 0.3).
    """
    n = np.floor(abs(duration) / period + 0.5 + 1e-9) * np.sign(duration)
    return round(float(n * period), 9)


def rpy_to_matrix(rpy):
    """roll-pitch-yaw (rad) → 회전 행렬. R = Rz(yaw) Ry(pitch) Rx(roll)"""
    r, p, y = rpy
    cr, sr = np.cos(r), np.sin(r)
    cp, sp = np.cos(p), np.sin(p)
    cy, sy = np.cos(y), np.sin(y)
    return np.array([
        [cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr],
        [sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr],
        [-sp,     cp * sr,                cp * cr],
    ])


def matrix_to_rpy(R):
    pitch = np.arcsin(-np.clip(R[2, 0], -1.0, 1.0))
    roll = np.arctan2(R[2, 1], R[2, 2])
    yaw = np.arctan2(R[1, 0], R[0, 0])
    return np.array([roll, pitch, yaw])


def make_pose(rotation=None, translation=None):
    """4x4 동차 변환 행렬."""
    pose = np.eye(4)
    if rotation is not None:
        pose[:3, :3] = rotation
    if translation is not None:
        pose[:3, 3] = translation
    return pose


def invert_pose(pose):
    R = pose[:3, :3]
    p = pose[:3, 3]
    return make_pose(R.T, -R.T @ p)


class LowPassVelocityFilter:
    """위치 차분 → 1차 low-pass 속도 추정.

    vel ← (1 - α)·vel + α·(pos - prev_pos)/dt,  α = dt / cutoff_period
    """

    def __init__(self, dt: float, cutoff_period: float):
        self.dt = dt
        self.cutoff_period = cutoff_period
        self.pos = None
        self.vel = None

    @property
    def alpha(self):
        if self.cutoff_period <= self.dt:
            return 1.0
        return self.dt / self.cutoff_period

    def reset(self, pos, vel=None):
        self.pos = np.array(pos, dtype=float)
        self.vel = np.zeros_like(self.pos) if vel is None else np.array(vel, dtype=float)

    def update(self, new_pos):
        new_pos = np.asarray(new_pos, dtype=float)
        if self.pos is None:
            self.reset(new_pos)
            return self.vel
        disc_vel = (new_pos - self.pos) / self.dt
        self.vel = (1.0 - self.alpha) * self.vel + self.alpha * disc_vel
        self.pos = new_pos.copy()
        return self.vel
