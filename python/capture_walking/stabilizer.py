import numpy as np
from dataclasses import dataclass
from typing import List, Optional

from capture_walking.config import (
    DCM_INTEGRAL_LIMIT, DT, GRAVITY, K_COM, K_DCM, K_ZMP, KI_DCM, ROBOT_MASS,
    ZMP_FILTER_CUTOFF_PERIOD,
)
from capture_walking.contact import Contact, is_inside_polygon, project_onto_polygon
from capture_walking.sensors import Wrench, zmp_from_wrench


@dataclass
class BalanceCommand:
    """IK layer로 넘기는 보정된 균형 명령"""
    com: np.ndarray             # 명령 CoM (3,)
    comd: np.ndarray            # 명령 CoM 속도 (3,)
    zmp: np.ndarray             # 지지 다각형 안으로 포화된 desired ZMP (3,)
    dcm_error: np.ndarray       # 측정 DCM - 기준 DCM (2,)
    measured_zmp: Optional[np.ndarray]   # low-pass 측정 ZMP, 공중이면 None
    left_wrench: Wrench
    right_wrench: Wrench
    saturated: bool             # desired ZMP가 다각형 밖이라 투영되었는지


class Stabilizer:

    def __init__(
        self,
        mass: float = ROBOT_MASS,
        dt: float = DT,
        k_dcm: float = K_DCM,     # DCM 비례 게인 (> 1.0)
        ki_dcm: float = KI_DCM,   # DCM 적분 게인 (>= 0.0)
        k_zmp: float = K_ZMP,     # ZMP 오차 Gain (0 < K_zmp < w)
        k_com: float = K_COM,     # CoM 오차 Gain (K_com > w)
        dcm_integral_limit: float = DCM_INTEGRAL_LIMIT,  # 적분 anti-windup 한계 (m)
        zmp_cutoff_period: float = ZMP_FILTER_CUTOFF_PERIOD,
    ):
        self.mass = mass
        self.dt = dt
        self.kp_dcm = k_dcm
        self.ki_dcm = ki_dcm
        self.k_zmp = k_zmp
        self.k_com = k_com
        self.dcm_integral_limit = dcm_integral_limit
        self.zmp_cutoff_period = zmp_cutoff_period

        self.dcm_error_sum = np.zeros(2)    # 적분항 누적
        self.filtered_zmp = None

    def update_robot_mass(self, mass: float):
        self.mass = mass

    def reset(self):
        self.dcm_error_sum = np.zeros(2)
        self.filtered_zmp = None

    # ========================================================================= #
    # 1. DCM PI 피드백 -> 목표 ZMP
    # ========================================================================= #
    def compute_desired_zmp(self, pendulum, com, comd) -> np.ndarray:
        # LIPM에서 ξ_ref - dξ_ref/ω = r_ref 이므로 feedforward는 기준 ZMP
        # r_des = r_ref + Kp * (ξ - ξ_ref) + Ki * ∫(ξ - ξ_ref)dt
        current_dcm = com[:2] + comd[:2] / pendulum.omega
        e_dcm = current_dcm - pendulum.dcm[:2]

        self.dcm_error_sum += e_dcm * self.dt
        self.dcm_error_sum = np.clip(
            self.dcm_error_sum,
            -self.dcm_integral_limit,
            self.dcm_integral_limit
        )

        desired_zmp = pendulum.zmp[:2] + self.kp_dcm * e_dcm + self.ki_dcm * self.dcm_error_sum
        return desired_zmp, e_dcm

    # ========================================================================= #
    # 2. 측정 ZMP low-pass
    # ========================================================================= #
    def filter_measured_zmp(self, measured_wrench: Wrench, ground_height: float):
        zmp = zmp_from_wrench(measured_wrench, ground_height)
        if zmp is None:
            return None   # 공중: 필터 상태 유지
        if self.filtered_zmp is None:
            self.filtered_zmp = zmp
        else:
            alpha = min(1.0, self.dt / self.zmp_cutoff_period)
            self.filtered_zmp = (1.0 - alpha) * self.filtered_zmp + alpha * zmp
        return self.filtered_zmp.copy()

    # ========================================================================= #
    # 3. 양발 wrench 분배
    # ========================================================================= #
    def distribute_wrench(self, pendulum, zmp_cmd, contacts: List[Contact],
                          left_foot_ratio: Optional[float] = None):
        """desired ZMP의 net wrench를 발별로 분배 → (left, right).

        SSP: 지지발에 전부. DSP: 발 중심을 잇는 축 위 ZMP 위치 비율,
        Standing이고 left_foot_ratio가 주어지면 그 비율.
        각 발의 CoP는 desired ZMP를 그 발 다각형에 투영한 점.
        """
        com = pendulum.com
        force = self.mass * np.array([
            pendulum.omega**2 * (com[0] - zmp_cmd[0]),
            pendulum.omega**2 * (com[1] - zmp_cmd[1]),
            GRAVITY,
        ])

        left = Wrench()
        right = Wrench()
        if len(contacts) == 1:
            ratios = [1.0]
        else:
            if left_foot_ratio is None:
                p0 = contacts[0].position[:2]
                p1 = contacts[1].position[:2]
                axis = p1 - p0
                s = np.clip((zmp_cmd[:2] - p0) @ axis / (axis @ axis), 0.0, 1.0)
                ratios = [1.0 - s, s]
            else:
                ratios = [left_foot_ratio if c.is_left_foot else 1.0 - left_foot_ratio
                          for c in contacts]

        for contact, ratio in zip(contacts, ratios):
            cop = np.zeros(3)
            cop[:2] = project_onto_polygon(zmp_cmd, contact.vertices)
            cop[2] = contact.position[2]
            wrench = Wrench.at_point(ratio * force, np.zeros(3), cop)
            if contact.is_left_foot:
                left = left + wrench
            else:
                right = right + wrench
        return left, right

    # ========================================================================= #
    # Main Loop Function
    # ========================================================================= #
    def run(
        self,
        pendulum,                       # 기준 (com, comd, zmp)
        com: np.ndarray,                # 관측 CoM
        comd: np.ndarray,               # 관측 CoM 속도
        measured_wrench: Wrench,        # 측정 net contact wrench
        support_vertices: np.ndarray,   # 현재 지지 다각형
        contacts: List[Contact],        # 지면에 닿은 발 (1개 또는 2개)
        left_foot_ratio: Optional[float] = None,
    ) -> BalanceCommand:
        com = np.asarray(com, dtype=float)
        comd = np.asarray(comd, dtype=float)
        ground_height = pendulum.zmp[2]

        # 1. DCM 피드백
        desired_zmp, e_dcm = self.compute_desired_zmp(pendulum, com, comd)

        # 2. 지지 다각형 포화 (항상 적용)
        saturated = not is_inside_polygon(desired_zmp, support_vertices)
        zmp_cmd = np.array([*project_onto_polygon(desired_zmp, support_vertices), ground_height])

        # 3. 측정 ZMP
        measured_zmp = self.filter_measured_zmp(measured_wrench, ground_height)

        # 4. CoM admittance: dx* = dx_ref - K_zmp*(r_cmd - r) + K_com*(x_ref - x)
        comd_cmd = pendulum.comd.copy()
        if measured_zmp is not None:
            comd_cmd[:2] -= self.k_zmp * (zmp_cmd[:2] - measured_zmp[:2])
        comd_cmd[:2] += self.k_com * (pendulum.com[:2] - com[:2])
        com_cmd = com + comd_cmd * self.dt
        com_cmd[2] = pendulum.com[2]

        # 5. 발별 wrench
        left, right = self.distribute_wrench(pendulum, zmp_cmd, contacts, left_foot_ratio)

        return BalanceCommand(
            com=com_cmd,
            comd=comd_cmd,
            zmp=zmp_cmd,
            dcm_error=e_dcm,
            measured_zmp=measured_zmp,
            left_wrench=left,
            right_wrench=right,
            saturated=saturated,
        )
