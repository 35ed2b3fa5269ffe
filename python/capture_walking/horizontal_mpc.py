"""
Horizontal MPC: LIPM jerk 입력 선형 MPC (x, y 동시, qpsolvers + OSQP)

★ 3차 적분기 이산 시스템 (1D, X/Y 같은 모델):
  상태: x = [pos, vel, acc],  입력: u = jerk (샘플링 주기 T 동안 고정)
  x(k+1) = A·x(k) + B·u(k)
  A = [[1, T, T²/2], [0, 1, T], [0, 0, 1]],  B = [T³/6, T²/2, T]
  ZMP: z_k = pos_k - acc_k / ω²

★ 목적함수 (Dense form, U = [jerk_x(0..N-1), jerk_y(0..N-1)]):
  min  w_jerk·|U|² + w_zmp·Σ|z_k - c_k|² + w_vel·Σ|v_k|² + w_term·|ξ_N - c_N|²
  c_k: 시각 k·T의 지지 다각형 중심,  ξ_N = pos_N + vel_N / ω

★ 제약:
  z_k ∈ 시각 k·T의 지지 다각형 (k = 1..N)
  → horizon 내 phase 변화에 따라 각 스텝별 다각형이 다름 (support_schedule)

★ 초기 상태 [com, comd, ω²(com - zmp)]: pendulum의 ZMP에서 연속적으로 출발
"""

import numpy as np
from qpsolvers import solve_qp
from qpsolvers.exceptions import QPError

from capture_walking.config import (
    DT, HMPC_NB_STEPS, HMPC_W_JERK, HMPC_W_TERMINAL, HMPC_W_VEL, HMPC_W_ZMP,
    QP_EPS, QP_SOLVER, SAMPLING_PERIOD,
)
from capture_walking.contact import polygon_centroid, polygon_hrep
from capture_walking.pattern_generator import PatternGenerator, polygon_at, support_schedule
from capture_walking.preview import Preview


class HorizontalMPC(PatternGenerator):
    """지지 다각형 시퀀스를 따라가는 수평 CoM MPC"""

    name = "HMPC"

    def __init__(
        self,
        horizon: int = HMPC_NB_STEPS,
        sampling_period: float = SAMPLING_PERIOD,
        dt: float = DT,                     # preview 샘플 간격 (제어 dt)
        w_jerk: float = HMPC_W_JERK,
        w_zmp: float = HMPC_W_ZMP,
        w_vel: float = HMPC_W_VEL,
        w_terminal: float = HMPC_W_TERMINAL,
    ):
        self.N = horizon
        self.T = sampling_period
        self.dt = dt
        self.w_jerk = w_jerk
        self.w_zmp = w_zmp
        self.w_vel = w_vel
        self.w_terminal = w_terminal

        T = sampling_period
        self.A = np.array([
            [1.0, T,   T**2 / 2],
            [0.0, 1.0, T       ],
            [0.0, 0.0, 1.0     ],
        ])
        self.B = np.array([T**3 / 6, T**2 / 2, T])

        self._omega = None
        self._build_prediction_matrices()

        # 디버깅용 마지막 해
        self.jerks = None

        print(f"[HMPC] OSQP | horizon={horizon} | T={T}s | "
              f"lookahead={horizon * T:.2f}s | dt={dt}s")

    # ================================================================== #
    # 예측 행렬 (초기화 시 1회)
    # ================================================================== #
    def _build_prediction_matrices(self):
        N = self.N
        A, B = self.A, self.B

        # Psi (3N x 3): [A; A²; ...; A^N]
        Psi = np.zeros((3 * N, 3))
        Ak = np.eye(3)
        for k in range(N):
            Ak = A @ Ak
            Psi[3*k:3*k+3, :] = Ak

        # Phi (3N x N): 하삼각 Toeplitz, 블록 (k, j) = A^{k-j} B
        Phi = np.zeros((3 * N, N))
        AjB = [B.copy()]
        for j in range(1, N):
            AjB.append(A @ AjB[j-1])
        for k in range(N):
            for j in range(k + 1):
                Phi[3*k:3*k+3, j] = AjB[k - j]

        # pos / vel / acc 추출
        self.P_pos, self.U_pos = Psi[0::3], Phi[0::3]
        self.P_vel, self.U_vel = Psi[1::3], Phi[1::3]
        self.P_acc, self.U_acc = Psi[2::3], Phi[2::3]

    def _build_qp_matrices(self, omega):
        """ω가 바뀔 때만 ZMP/DCM 행렬과 Hessian 재계산."""
        if self._omega == omega:
            return
        self._omega = omega
        N = self.N

        self.P_zmp = self.P_pos - self.P_acc / omega**2
        self.U_zmp = self.U_pos - self.U_acc / omega**2
        self.P_dcm = self.P_pos[-1] + self.P_vel[-1] / omega
        self.U_dcm = self.U_pos[-1] + self.U_vel[-1] / omega

        # 축별 Hessian (x, y 동일)
        H = (self.w_jerk * np.eye(N)
             + self.w_zmp * self.U_zmp.T @ self.U_zmp
             + self.w_vel * self.U_vel.T @ self.U_vel
             + self.w_terminal * np.outer(self.U_dcm, self.U_dcm))
        self.H = np.kron(np.eye(2), H)

    # ================================================================== #
    # Main Interface
    # ================================================================== #
    def update(self, pendulum, plan, phase, remaining_time, start_time=0.0):
        omega = pendulum.omega
        self._build_qp_matrices(omega)
        N = self.N

        segments = support_schedule(plan, phase, remaining_time, horizon=N * self.T)
        polygons = [polygon_at(segments, (k + 1) * self.T) for k in range(N)]
        refs = np.array([polygon_centroid(vertices) for vertices in polygons])   # (N, 2)

        acc0 = omega**2 * (pendulum.com[:2] - pendulum.zmp[:2])
        x0 = np.stack([pendulum.com[:2], pendulum.comd[:2], acc0])   # (3, 2): 열 = 축

        # gradient
        f = np.zeros(2 * N)
        zmp_free = np.zeros((N, 2))
        for axis in range(2):
            s = slice(axis * N, (axis + 1) * N)
            zmp_free[:, axis] = self.P_zmp @ x0[:, axis]
            vel_free = self.P_vel @ x0[:, axis]
            dcm_free = self.P_dcm @ x0[:, axis]
            f[s] = (self.w_zmp * self.U_zmp.T @ (zmp_free[:, axis] - refs[:, axis])
                    + self.w_vel * self.U_vel.T @ vel_free
                    + self.w_terminal * self.U_dcm * (dcm_free - refs[-1, axis]))

        # 제약: a_x·z_x(k) + a_y·z_y(k) ≤ b
        G_rows = []
        h_rows = []
        for k, vertices in enumerate(polygons):
            A_k, b_k = polygon_hrep(vertices)
            G = np.zeros((len(b_k), 2 * N))
            G[:, :N] = np.outer(A_k[:, 0], self.U_zmp[k])
            G[:, N:] = np.outer(A_k[:, 1], self.U_zmp[k])
            G_rows.append(G)
            h_rows.append(b_k - A_k @ zmp_free[k])
        G = np.vstack(G_rows)
        h = np.concatenate(h_rows)

        try:
            sol = solve_qp(P=self.H, q=f, G=G, h=h, solver=QP_SOLVER,
                           eps_abs=QP_EPS, eps_rel=QP_EPS, polishing=True, verbose=False)
        except QPError as e:
            print(f"[HMPC] QP ERROR: {e}")
            return None
        if sol is None:
            return None

        jerks = np.stack([sol[:N], sol[N:]], axis=1)   # (N, 2)
        self.jerks = jerks
        return self._build_preview(pendulum, x0, jerks, start_time)

    def _build_preview(self, pendulum, x0, jerks, start_time):
        """jerk를 dt 간격으로 정확 적분해 preview 생성."""
        omega2 = self._omega**2
        ground = pendulum.com[2] - pendulum.com_height
        nb_substeps = int(round(self.T / self.dt))
        nb_samples = self.N * nb_substeps + 1

        com = np.tile(pendulum.com, (nb_samples, 1))
        comd = np.tile(pendulum.comd, (nb_samples, 1))
        zmp = np.tile(np.array([0.0, 0.0, ground]), (nb_samples, 1))

        x = x0.copy()
        j = 0
        for k in range(self.N):
            u = jerks[k]
            for i in range(nb_substeps):
                t = i * self.dt
                pos = x[0] + x[1] * t + x[2] * t**2 / 2 + u * t**3 / 6
                vel = x[1] + x[2] * t + u * t**2 / 2
                acc = x[2] + u * t
                com[j, :2] = pos
                comd[j, :2] = vel
                zmp[j, :2] = pos - acc / omega2
                j += 1
            x = self.A @ x + np.outer(self.B, u)
        com[j, :2] = x[0]
        comd[j, :2] = x[1]
        zmp[j, :2] = x[0] - x[2] / omega2

        com[0] = pendulum.com
        comd[0] = pendulum.comd
        zmp[0] = pendulum.zmp
        return Preview(start_time, self.dt, com, comd, zmp, source=self.name)
