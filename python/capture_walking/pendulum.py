"""Pendulum: LIPM (single inverted pendulum) 상태

★ 상태: com, comd, zmp (3D), omega = sqrt(g / h)
★ 가속도는 저장하지 않고 항상 유도한다:
    comdd = ω²·(com - zmp) + g     (수직 성분은 LIPM에서 0)
★ DCM: ξ = com + comd / ω
"""

import numpy as np

from capture_walking.config import DEFAULT_COM_HEIGHT, GRAVITY, GRAVITY_VEC


class Pendulum:
    """매 제어 주기 preview 샘플로 갱신되는 LIPM 상태"""

    def __init__(self, com_height: float = DEFAULT_COM_HEIGHT):
        self.com = np.zeros(3)
        self.comd = np.zeros(3)
        self.zmp = np.zeros(3)
        self.omega = np.sqrt(GRAVITY / com_height)

    @property
    def com_height(self) -> float:
        return GRAVITY / self.omega**2

    @com_height.setter
    def com_height(self, height: float):
        self.omega = np.sqrt(GRAVITY / height)

    @property
    def comdd(self) -> np.ndarray:
        return self.omega**2 * (self.com - self.zmp) + GRAVITY_VEC

    @property
    def dcm(self) -> np.ndarray:
        return self.com + self.comd / self.omega

    def reset(self, com, comd=None, zmp=None):
        """정지 상태로 초기화. zmp 기본값은 com 바로 아래 지면."""
        self.com = np.array(com, dtype=float)
        self.comd = np.zeros(3) if comd is None else np.array(comd, dtype=float)
        if zmp is None:
            zmp = self.com - np.array([0.0, 0.0, self.com_height])
        self.zmp = np.array(zmp, dtype=float)

    def update(self, com, comd, zmp):
        """preview 샘플 (com, comd, zmp)로 상태 갱신."""
        self.com = np.array(com, dtype=float)
        self.comd = np.array(comd, dtype=float)
        self.zmp = np.array(zmp, dtype=float)

    def integrate_ipm(self, zmp, duration: float):
        """ZMP 고정 상태로 duration 동안 수평 LIPM 해석해 적분.

        c(t)  = r + (c0 - r)·cosh(ωt) + ċ0/ω·sinh(ωt)
        ċ(t)  = ω·(c0 - r)·sinh(ωt) + ċ0·cosh(ωt)
        """
        com, comd = integrate_ipm(self.com, self.comd, zmp, self.omega, duration)
        self.com = com
        self.comd = comd
        self.zmp = np.array(zmp, dtype=float)

    def copy(self) -> "Pendulum":
        other = Pendulum()
        other.omega = self.omega
        other.update(self.com, self.comd, self.zmp)
        return other


def integrate_ipm(com, comd, zmp, omega, duration):
    """수평 (x, y) 성분만 적분, 수직 성분은 유지."""
    com = np.array(com, dtype=float)
    comd = np.array(comd, dtype=float)
    ch = np.cosh(omega * duration)
    sh = np.sinh(omega * duration)
    r = np.asarray(zmp, dtype=float)[:2]
    c0 = com[:2].copy()
    cd0 = comd[:2].copy()
    com[:2] = r + (c0 - r) * ch + cd0 / omega * sh
    comd[:2] = omega * (c0 - r) * sh + cd0 * ch
    return com, comd
