"""Preview: 패턴 생성기가 만든 짧은 CoM/ZMP 궤적

★ 시간 t0(생성 시점)부터 고정 horizon까지 dt 간격 샘플 (com, comd, zmp).
★ 업데이트마다 통째로 교체되고, 제어 루프는 읽기만 한다.
★ 유효 구간 밖 샘플링은 StalePreviewError (외삽/클램프하지 않음).
"""

import numpy as np

from capture_walking.errors import StalePreviewError

TIME_TOLERANCE = 1e-9


class Preview:
    """시간 인덱스 CoM/ZMP 샘플 시퀀스"""

    def __init__(self, start_time: float, dt: float, com, comd, zmp, source: str = ""):
        com = np.asarray(com, dtype=float)
        comd = np.asarray(comd, dtype=float)
        zmp = np.asarray(zmp, dtype=float)
        if not (com.shape == comd.shape == zmp.shape) or com.ndim != 2 or com.shape[1] != 3:
            raise ValueError(f"preview 샘플 shape 불일치: {com.shape}, {comd.shape}, {zmp.shape}")
        if len(com) < 2:
            raise ValueError("preview는 샘플이 2개 이상 필요")
        self.start_time = start_time
        self.dt = dt
        self.com = com
        self.comd = comd
        self.zmp = zmp
        self.source = source

    @property
    def nb_samples(self) -> int:
        return len(self.com)

    @property
    def duration(self) -> float:
        return (self.nb_samples - 1) * self.dt

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def covers(self, t: float) -> bool:
        return self.start_time - TIME_TOLERANCE <= t <= self.end_time + TIME_TOLERANCE

    def first_sample(self):
        return self.com[0].copy(), self.comd[0].copy(), self.zmp[0].copy()

    def sample(self, t: float):
        """시각 t의 (com, comd, zmp). 샘플 사이는 선형 보간."""
        if not self.covers(t):
            raise StalePreviewError(
                f"t={t:.3f}s 가 preview 구간 [{self.start_time:.3f}, {self.end_time:.3f}] 밖"
            )
        s = np.clip((t - self.start_time) / self.dt, 0.0, self.nb_samples - 1)
        k = min(int(np.floor(s)), self.nb_samples - 2)
        w = s - k
        com = (1 - w) * self.com[k] + w * self.com[k + 1]
        comd = (1 - w) * self.comd[k] + w * self.comd[k + 1]
        zmp = (1 - w) * self.zmp[k] + w * self.zmp[k + 1]
        return com, comd, zmp
