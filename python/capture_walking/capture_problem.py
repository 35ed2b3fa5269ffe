"""Capture Problem 패턴 생성기 (CPS)

★ 목표:
  현재 위상이 끝나기 전에 DCM(capture point)을 다음 지지 다각형 안으로 보내는
  최소 ZMP 수정량을 QP로 구한다. 매 업데이트마다 짧은 horizon으로 다시 푼다.

★ DCM 이산 동역학 (구간 Δ 동안 ZMP u_k 고정, E = e^{ωΔ}):
  ξ_{k+1} = E·ξ_k + (1 - E)·u_k
  ξ_n     = E^n·ξ_0 + Σ_k E^{n-1-k}(1 - E)·u_k     (u에 대해 선형)

★ QP (x, y 동시, 변수 U = [u_x(0..n-1), u_y(0..n-1)]):
  min  w_zmp Σ|u_k - r_0|² + w_diff Σ|u_k - u_{k-1}|² + w_cap |ξ_n - c_next|²
  s.t. u_k ∈ 현재 지지 다각형,  ξ_n ∈ 다음 지지 다각형

★ 포착 이후: ZMP = ξ_n 고정 → DCM 정지, CoM은 ξ_n으로 수렴 (tail 구간)
"""

import numpy as np
from qpsolvers import solve_qp
from qpsolvers.exceptions import QPError

from capture_walking.config import (
    CPS_MIN_DURATION, CPS_SEGMENT_DURATION, CPS_STANDING_DURATION,
    CPS_TAIL_DURATION, CPS_W_CAPTURE, CPS_W_DIFF, CPS_W_ZMP, DT, QP_EPS,
    QP_SOLVER,
)
from capture_walking.contact import polygon_centroid, polygon_hrep, support_hull
from capture_walking.pattern_generator import GaitPhase, PatternGenerator, is_walking
from capture_walking.pendulum import integrate_ipm
from capture_walking.preview import Preview


class CaptureProblem(PatternGenerator):
    """Capturability 기반 단기 패턴 생성기"""

    name = "CPS"

    def __init__(
        self,
        dt: float = DT,
        segment_duration: float = CPS_SEGMENT_DURATION,
        min_duration: float = CPS_MIN_DURATION,
        standing_duration: float = CPS_STANDING_DURATION,
        tail_duration: float = CPS_TAIL_DURATION,
        w_zmp: float = CPS_W_ZMP,
        w_diff: float = CPS_W_DIFF,
        w_capture: float = CPS_W_CAPTURE,
    ):
        self.dt = dt
        self.segment_duration = segment_duration
        self.min_duration = min_duration
        self.standing_duration = standing_duration
        self.tail_duration = tail_duration
        self.w_zmp = w_zmp
        self.w_diff = w_diff
        self.w_capture = w_capture

        # 마지막 해 (디버깅용)
        self.zmps = None
        self.final_dcm = None

    # ================================================================== #
    # 위상별 다각형 선택
    # ================================================================== #
    def _problem_polygons(self, plan, phase, remaining_time):
        """(phase 시간, 현재 지지 다각형, 다음 지지 다각형)"""
        standing = support_hull(*plan.stance_contacts())
        if not is_walking(plan, phase):
            return self.standing_duration, standing, standing
        duration = max(remaining_time, self.min_duration)
        if phase is GaitPhase.SINGLE_SUPPORT:
            return duration, plan.support_contact.vertices, plan.target_contact.vertices
        if plan.target_contact.id == plan.support_contact.id:
            return duration, standing, standing
        return duration, standing, plan.support_contact.vertices

    # ================================================================== #
    # QP 풀이
    # ================================================================== #
    def solve(self, dcm, zmp, omega, duration, init_vertices, final_vertices):
        """구간별 ZMP (n, 2)와 최종 DCM (2,) 반환. infeasible이면 None."""
        n = max(1, int(np.ceil(duration / self.segment_duration - 1e-9)))
        delta = duration / n
        E = np.exp(omega * delta)
        En = E**n
        c = np.array([E**(n - 1 - k) * (1.0 - E) for k in range(n)])   # (n,)
        xi0 = np.asarray(dcm, dtype=float)[:2]
        r0 = np.asarray(zmp, dtype=float)[:2]
        center = polygon_centroid(final_vertices)

        # 목적함수: Σ w ||M z - v||²  →  P = Σ w M'M,  q = -Σ w M'v
        P = np.zeros((2 * n, 2 * n))
        q = np.zeros(2 * n)
        D = np.eye(n) - np.eye(n, k=-1)
        for axis in range(2):
            s = slice(axis * n, (axis + 1) * n)
            v_diff = np.zeros(n)
            v_diff[0] = r0[axis]
            P[s, s] += self.w_zmp * np.eye(n) + self.w_diff * D.T @ D
            P[s, s] += self.w_capture * np.outer(c, c)
            q[s] -= self.w_zmp * r0[axis] * np.ones(n)
            q[s] -= self.w_diff * D.T @ v_diff
            q[s] -= self.w_capture * c * (center[axis] - En * xi0[axis])

        # 제약: u_k ∈ 현재 다각형
        A1, b1 = polygon_hrep(init_vertices)
        G_rows = []
        h_rows = []
        for k in range(n):
            G = np.zeros((len(b1), 2 * n))
            G[:, k] = A1[:, 0]
            G[:, n + k] = A1[:, 1]
            G_rows.append(G)
            h_rows.append(b1)

        # 제약: ξ_n ∈ 다음 다각형
        A2, b2 = polygon_hrep(final_vertices)
        G = np.hstack([np.outer(A2[:, 0], c), np.outer(A2[:, 1], c)])
        G_rows.append(G)
        h_rows.append(b2 - A2 @ (En * xi0))

        G = np.vstack(G_rows)
        h = np.concatenate(h_rows)
        try:
            sol = solve_qp(P=P, q=q, G=G, h=h, solver=QP_SOLVER,
                           eps_abs=QP_EPS, eps_rel=QP_EPS, polishing=True, verbose=False)
        except QPError as e:
            print(f"[CPS] QP ERROR: {e}")
            return None
        if sol is None:
            return None

        zmps = np.stack([sol[:n], sol[n:]], axis=1)
        final_dcm = En * xi0 + c @ zmps
        if not np.all(A2 @ final_dcm <= b2 + 1e-4):
            return None   # solver 허용오차를 넘는 위반은 infeasible로 취급
        return zmps, final_dcm

    # ================================================================== #
    # Main Interface
    # ================================================================== #
    def update(self, pendulum, plan, phase, remaining_time, start_time=0.0):
        duration, init_vertices, final_vertices = self._problem_polygons(plan, phase, remaining_time)
        result = self.solve(pendulum.dcm, pendulum.zmp, pendulum.omega, duration,
                            init_vertices, final_vertices)
        if result is None:
            return None
        zmps, final_dcm = result
        self.zmps = zmps
        self.final_dcm = final_dcm
        return self._build_preview(pendulum, zmps, duration, final_dcm, start_time)

    def _build_preview(self, pendulum, zmps, duration, final_dcm, start_time):
        """구간별 ZMP + tail을 dt 간격으로 해석 적분."""
        n = len(zmps)
        delta = duration / n
        ground = pendulum.com[2] - pendulum.com_height
        omega = pendulum.omega

        # 각 구간의 ZMP와 시작 상태
        seg_zmps = [np.array([u[0], u[1], ground]) for u in zmps]
        seg_zmps.append(np.array([final_dcm[0], final_dcm[1], ground]))
        seg_starts = [(pendulum.com.copy(), pendulum.comd.copy())]
        for k in range(n):
            com, comd = seg_starts[-1]
            seg_starts.append(integrate_ipm(com, comd, seg_zmps[k], omega, delta))

        nb_samples = int(np.ceil((duration + self.tail_duration) / self.dt - 1e-9)) + 1
        com = np.zeros((nb_samples, 3))
        comd = np.zeros((nb_samples, 3))
        zmp = np.zeros((nb_samples, 3))
        for j in range(nb_samples):
            t = j * self.dt
            k = min(int(np.floor(t / delta + 1e-9)), n)
            tau = t - k * delta
            c0, cd0 = seg_starts[k]
            com[j], comd[j] = integrate_ipm(c0, cd0, seg_zmps[k], omega, tau)
            zmp[j] = seg_zmps[k]
        com[0] = pendulum.com
        comd[0] = pendulum.comd
        return Preview(start_time, self.dt, com, comd, zmp, source=self.name)
