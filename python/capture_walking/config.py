"""Capturability 기반 보행 제어기 파라미터 설정

FootstepPlan 기본값/클램프 범위, 두 패턴 생성기(Capture Problem, Horizontal MPC),
Stabilizer 게인을 한 파일에 모은 설정 모듈.
"""

import numpy as np

# ============================================
# 제어 주기 / 물리
# ============================================
DT: float = 0.02                 # 제어 주기 (50 Hz)
GRAVITY: float = 9.81
GRAVITY_VEC = np.array([0.0, 0.0, -GRAVITY])

# HMPC 샘플링 주기 = 보행 시간 양자화 단위
SAMPLING_PERIOD: float = 0.1

# ============================================
# 로봇 물리
# ============================================
ROBOT_MASS: float = 38.0
COM_VEL_CUTOFF_PERIOD: float = 0.1    # CoM 속도 low-pass 차단 주기 (s), DT보다 커야 함

# ============================================
# Sole (발바닥 형상)
# ============================================
SOLE_HALF_LENGTH: float = 0.112
SOLE_HALF_WIDTH: float = 0.065
SOLE_FRICTION: float = 0.7
SOLE_LEFT_ANKLE_OFFSET = (0.015, -0.01)   # 왼발 기준, 오른발은 y 반전

# ============================================
# FootstepPlan 기본값
# ============================================
DEFAULT_COM_HEIGHT: float = 0.78
DEFAULT_DS_DURATION: float = 0.2
DEFAULT_SS_DURATION: float = 0.8
DEFAULT_INIT_DSP_DURATION: float = 0.6
DEFAULT_FINAL_DSP_DURATION: float = 0.6
DEFAULT_LANDING_PITCH: float = 0.0
DEFAULT_LANDING_RATIO: float = 0.05
DEFAULT_SWING_HEIGHT: float = 0.04
DEFAULT_TAKEOFF_PITCH: float = 0.0
DEFAULT_TAKEOFF_RATIO: float = 0.05

# FootstepPlan 클램프 범위 (setter는 실패하지 않고 포화)
MIN_COM_HEIGHT, MAX_COM_HEIGHT = 0.70, 0.85        # [m]
MIN_DS_DURATION, MAX_DS_DURATION = 0.0, 1.0        # [s]
MIN_SS_DURATION, MAX_SS_DURATION = 0.0, 2.0        # [s]
MIN_XDSP_DURATION, MAX_XDSP_DURATION = 0.0, 1.6    # init/final DSP [s]
MIN_PITCH, MAX_PITCH = -1.0, 1.0                   # landing/takeoff [rad]
MIN_SWING_HEIGHT, MAX_SWING_HEIGHT = 0.0, 0.25     # [m]
MIN_RATIO, MAX_RATIO = 0.0, 0.5                    # landing/takeoff ratio

# ============================================
# Capture Problem (CPS)
# ============================================
CPS_SEGMENT_DURATION: float = 0.1   # ZMP 구간 최대 길이 (s)
CPS_MIN_DURATION: float = 0.05      # 남은 위상 시간이 이보다 짧으면 이 값 사용
CPS_STANDING_DURATION: float = 0.5  # Standing 재중심화 시간 (s)
CPS_TAIL_DURATION: float = 1.0      # 포착 후 ZMP 고정 구간 (s)
CPS_W_ZMP: float = 1.0              # 현재 ZMP 대비 편차
CPS_W_DIFF: float = 10.0            # ZMP 변화율
CPS_W_CAPTURE: float = 100.0        # 최종 DCM 중심화

# ============================================
# Horizontal MPC (HMPC)
# ============================================
HMPC_NB_STEPS: int = 16             # horizon = 16 * 0.1 = 1.6 s
HMPC_W_JERK: float = 1e-4
HMPC_W_ZMP: float = 1.0
HMPC_W_VEL: float = 1e-3
HMPC_W_TERMINAL: float = 10.0

# QP solver 설정 (qpsolvers → osqp)
QP_SOLVER: str = "osqp"
QP_EPS: float = 1e-7

# ============================================
# Stabilizer
# ============================================
K_DCM: float = 2.0
KI_DCM: float = 0.2
DCM_INTEGRAL_LIMIT: float = 0.05
K_ZMP: float = 1.0
K_COM: float = 1.0
ZMP_FILTER_CUTOFF_PERIOD: float = 0.05
FZ_THRESHOLD: float = 1.0           # (N) 공중 판정

# ============================================
# Controller
# ============================================
MAX_CONSECUTIVE_FAILURES: int = 5   # 외부 FSM의 emergency stop 판단 기준
FIRST_LOG_SEGMENT: int = 100
