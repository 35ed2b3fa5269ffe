"""
Controller: 실시간 보행 제어 루프 (오케스트레이션)

★ 매 제어 주기 (run):
  1. 관측 (CoM, CoM 속도, 양발 wrench)
  2. 갱신 주기가 되었으면 활성 패턴 생성기 update
     → 성공: preview 교체 / 실패: 이전 preview 유지 + 실패 카운트
  3. preview를 다음 시각에서 샘플링 → Pendulum 갱신
  4. Stabilizer → 보정된 균형 명령을 IK layer(command_sink)로 전달
  5. 시간 진행, snapshot 교체

★ emergency_stop / pause_walking:
  2단계와 plan 전진/후퇴만 멈춘다. 1/3/4단계(균형 유지)는 항상 실행.

★ 위상 전환 결정은 외부 gait FSM이 GaitInterface를 통해 한다.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import numpy as np

from capture_walking.capture_problem import CaptureProblem
from capture_walking.config import (
    COM_VEL_CUTOFF_PERIOD, DT, FIRST_LOG_SEGMENT, MAX_CONSECUTIVE_FAILURES,
    ROBOT_MASS, SAMPLING_PERIOD,
)
from capture_walking.contact import Sole, polygon_centroid, support_hull
from capture_walking.errors import ConfigError, StalePreviewError
from capture_walking.footstep_plan import FootstepPlan, clamp_ds_duration
from capture_walking.horizontal_mpc import HorizontalMPC
from capture_walking.pattern_generator import GaitPhase
from capture_walking.pendulum import Pendulum
from capture_walking.sensors import Wrench, left_foot_ratio, net_wrench
from capture_walking.stabilizer import BalanceCommand, Stabilizer
from capture_walking.utils import LowPassVelocityFilter, clamp


class WalkingPatternGeneration(Enum):
    CAPTURE_PROBLEM = "CaptureProblem"
    HORIZONTAL_MPC = "HorizontalMPC"


@dataclass
class Observation:
    """한 제어 주기의 관측값 (외부 observer / 센서)"""
    com: np.ndarray
    left_wrench: Wrench = field(default_factory=Wrench)
    right_wrench: Wrench = field(default_factory=Wrench)
    comd: Optional[np.ndarray] = None          # 없으면 low-pass 차분으로 추정
    floating_base_pose: Optional[np.ndarray] = None


@dataclass(frozen=True)
class ControllerSnapshot:
    """발행(publishing) 스레드용 불변 복사본"""
    time: float
    phase: GaitPhase
    wpg: WalkingPatternGeneration
    plan_name: str
    support_index: int
    target_index: int
    com: np.ndarray
    comd: np.ndarray
    zmp: np.ndarray
    command: Optional[BalanceCommand]
    floating_base_pose: Optional[np.ndarray]
    nb_cps_updates: int
    nb_cps_failures: int
    nb_hmpc_updates: int
    nb_hmpc_failures: int
    emergency_stop: bool
    pause_walking: bool
    segment_name: str


class Controller:
    """Capturability 기반 보행 제어기"""

    def __init__(
        self,
        plans: dict,
        sole: Optional[Sole] = None,
        mass: float = ROBOT_MASS,
        dt: float = DT,
        command_sink: Optional[Callable[[BalanceCommand], None]] = None,
        initial_plan: Optional[str] = None,
    ):
        if not plans:
            raise ConfigError("plans 설정이 비어 있음")
        self.dt = dt
        self.sole = sole if sole is not None else Sole()
        self.command_sink = command_sink
        self._plans = plans

        self.plan = FootstepPlan()
        self.cps = CaptureProblem(dt=dt)
        self.hmpc = HorizontalMPC(dt=dt)
        self.wpg = WalkingPatternGeneration.CAPTURE_PROBLEM
        self.emergency_stop = False
        self.pause_walking = False
        self.preview_update_period = SAMPLING_PERIOD
        self.preview = None

        self.pendulum = Pendulum()
        self.robot_mass = mass
        self.stabilizer = Stabilizer(mass=mass, dt=dt)
        self.com_vel_filter = LowPassVelocityFilter(dt, COM_VEL_CUTOFF_PERIOD)
        self.command = None
        self.observation = None

        self.segment_name = ""
        self.nb_log_segments = FIRST_LOG_SEGMENT

        self._lock = threading.Lock()
        self._snapshot = None

        self.load_footstep_plan(initial_plan if initial_plan is not None else next(iter(plans)))
        self.internal_reset()

        print(f"[Controller] dt={dt}s | preview period={self.preview_update_period}s | "
              f"mass={mass:.1f}kg | plans={self.available_plans()}")

    # ================================================================== #
    # 초기화 / 설정
    # ================================================================== #
    def internal_reset(self, com=None):
        """plan cursor, pendulum, stabilizer, preview, 카운터를 초기 상태로.

        com이 없으면 Standing 지지 다각형 중심 위 com_height 높이.
        """
        self.plan.reset(0)
        if com is None:
            contacts = self.plan.stance_contacts()
            center = polygon_centroid(support_hull(*contacts))
            ground = self.plan.support_contact.position[2]
            com = np.array([center[0], center[1], ground + self.plan.com_height])
        com = np.array(com, dtype=float)

        self.pendulum.com_height = self.plan.com_height
        self.pendulum.reset(com)
        self.com_vel_filter.reset(com)
        self.stabilizer.reset()
        self.preview = None
        self.command = None

        self.phase = GaitPhase.STANDING
        self.phase_remaining = 0.0
        self.ctl_time = 0.0
        self._next_preview_update = 0.0
        self._force_update = True
        self._ds_override = None
        self._left_foot_ratio = 0.5

        self.nb_cps_updates = 0
        self.nb_cps_failures = 0
        self.nb_hmpc_updates = 0
        self.nb_hmpc_failures = 0
        self.nb_consecutive_failures = 0
        self._publish_snapshot()

    def load_footstep_plan(self, name: str):
        """plans 설정에서 name을 찾아 plan 교체. 실패 시 기존 plan 유지."""
        if name not in self._plans:
            raise ConfigError(f"알 수 없는 plan '{name}' (가능: {self.available_plans()})")
        plan = FootstepPlan()
        plan.load(self._plans[name])
        plan.name = name
        plan.complete(self.sole)
        self.plan = plan
        self.pendulum.com_height = plan.com_height
        self._force_update = True
        print(f"[Controller] plan '{name}' 로드: contacts {len(plan.contacts)}개, "
              f"com_height={plan.com_height:.3f}m")

    def available_plans(self):
        return list(self._plans.keys())

    def update_robot_mass(self, mass: float):
        self.robot_mass = mass
        self.stabilizer.update_robot_mass(mass)

    def set_pattern_generation(self, wpg: WalkingPatternGeneration):
        """패턴 생성 전략 전환. 다음 주기에 새 전략으로 즉시 갱신."""
        if wpg is not self.wpg:
            print(f"[Controller] 패턴 생성 전환: {self.wpg.value} → {wpg.value}")
        self.wpg = wpg
        self._force_update = True

    # ================================================================== #
    # 제어 루프
    # ================================================================== #
    def run(self, observation: Observation) -> bool:
        """한 제어 주기. preview가 만료되어 샘플링이 불가능하면 False.

        emergency_stop / pause_walking 중에는 갱신 없이 마지막 preview를 끝까지 재생한다.
        horizon을 지나면 매 주기 False를 반환하지만 pendulum은 마지막 기준을 유지하고
        Stabilizer는 계속 균형 명령을 낸다. 재개 후 첫 주기에 새 preview로 갱신된다.
        """
        ok = True

        # 1. 관측
        com, comd = self._observe(observation)

        # 2. 패턴 생성 (정지/일시정지 중에는 건너뜀)
        if not (self.emergency_stop or self.pause_walking) and self._preview_update_due():
            self.update_preview()
            self._force_update = False
            self._next_preview_update = self.ctl_time + self.preview_update_period

        # 3. Pendulum 진행
        try:
            self._sample_preview(self.ctl_time + self.dt)
        except StalePreviewError as e:
            print(f"[Controller] t={self.ctl_time:.3f}s preview 만료: {e}")
            ok = False

        # 4. Stabilizer (항상 실행)
        contacts = self.ground_contacts()
        ratio = self._left_foot_ratio if self.phase is GaitPhase.STANDING else None
        self.command = self.stabilizer.run(
            self.pendulum, com, comd, self.measured_contact_wrench(),
            support_hull(*contacts), contacts, ratio,
        )
        if self.command_sink is not None:
            self.command_sink(self.command)

        # 5. 시간 진행
        self.ctl_time += self.dt
        self.phase_remaining = max(0.0, self.phase_remaining - self.dt)
        self._publish_snapshot()
        return ok

    def _observe(self, observation: Observation):
        self.observation = observation
        com = np.asarray(observation.com, dtype=float)
        if observation.comd is None:
            comd = self.com_vel_filter.update(com)
        else:
            comd = np.asarray(observation.comd, dtype=float)
            self.com_vel_filter.reset(com, comd)
        return com, comd

    def _preview_update_due(self) -> bool:
        return self._force_update or self.ctl_time >= self._next_preview_update - 1e-9

    def _sample_preview(self, t: float):
        if self.preview is None:
            raise StalePreviewError("사용 가능한 preview 없음")
        com, comd, zmp = self.preview.sample(t)
        self.pendulum.update(com, comd, zmp)

    def ground_contacts(self):
        """현재 위상에서 지면에 닿은 발."""
        if self.phase is GaitPhase.SINGLE_SUPPORT:
            return [self.plan.support_contact]
        return self.plan.stance_contacts()

    # ================================================================== #
    # 패턴 생성
    # ================================================================== #
    def update_preview(self) -> bool:
        if self.wpg is WalkingPatternGeneration.CAPTURE_PROBLEM:
            return self.update_preview_cps()
        return self.update_preview_hmpc()

    def update_preview_cps(self) -> bool:
        self.nb_cps_updates += 1
        preview = self.cps.update(self.pendulum, self.plan, self.phase,
                                  self.phase_remaining, self.ctl_time)
        if not self._accept_preview("CPS", preview):
            self.nb_cps_failures += 1
            self._on_update_failure("CPS", self.nb_cps_failures, self.nb_cps_updates)
            return False
        return True

    def update_preview_hmpc(self) -> bool:
        self.nb_hmpc_updates += 1
        preview = self.hmpc.update(self.pendulum, self.plan, self.phase,
                                   self.phase_remaining, self.ctl_time)
        if not self._accept_preview("HMPC", preview):
            self.nb_hmpc_failures += 1
            self._on_update_failure("HMPC", self.nb_hmpc_failures, self.nb_hmpc_updates)
            return False
        return True

    def _accept_preview(self, name, preview) -> bool:
        """다음 갱신 시각까지 덮는 preview만 교체. 짧은 preview는 실패로 취급."""
        if preview is None:
            return False
        next_update = self.ctl_time + self.preview_update_period
        if not preview.covers(next_update):
            print(f"[Controller] t={self.ctl_time:.3f}s {name} preview가 다음 갱신 "
                  f"t={next_update:.3f}s 전에 끝남 (end={preview.end_time:.3f}s)")
            return False
        self.preview = preview
        self.nb_consecutive_failures = 0
        return True

    def _on_update_failure(self, name, nb_failures, nb_updates):
        self.nb_consecutive_failures += 1
        print(f"[Controller] t={self.ctl_time:.3f}s {name} 실패 "
              f"({nb_failures}/{nb_updates}, 연속 {self.nb_consecutive_failures}), 이전 preview 유지")

    def failure_threshold_exceeded(self) -> bool:
        """외부 FSM이 emergency_stop을 올릴 조건."""
        return self.nb_consecutive_failures >= MAX_CONSECUTIVE_FAILURES

    # ================================================================== #
    # 위상 / plan 접근 (외부 FSM용)
    # ================================================================== #
    def start_phase(self, phase: GaitPhase, duration: float = 0.0):
        self.phase = phase
        self.phase_remaining = max(0.0, duration)
        self._force_update = True

    def double_support_duration(self) -> float:
        """다음 DSP 시간. 1회성 override가 있으면 그것을 쓰고 비운다."""
        if self._ds_override is not None:
            duration = self._ds_override
            self._ds_override = None
            return duration
        return self.plan.step_double_support_duration()

    def next_double_support_duration(self, duration: float):
        self._ds_override = clamp_ds_duration(duration)

    def single_support_duration(self) -> float:
        return self.plan.step_single_support_duration()

    @property
    def prev_contact(self):
        return self.plan.prev_contact

    @property
    def support_contact(self):
        return self.plan.support_contact

    @property
    def target_contact(self):
        return self.plan.target_contact

    @property
    def next_contact(self):
        return self.plan.next_contact

    def is_last_ssp(self) -> bool:
        return self.target_contact.id > self.next_contact.id

    def is_last_dsp(self) -> bool:
        return self.support_contact.id > self.target_contact.id

    # ================================================================== #
    # 센서
    # ================================================================== #
    def measured_contact_wrench(self) -> Wrench:
        if self.observation is None:
            return Wrench()
        return net_wrench(self.observation.left_wrench, self.observation.right_wrench)

    def measured_left_foot_ratio(self) -> float:
        if self.observation is None:
            return 0.5
        return left_foot_ratio(self.observation.left_wrench, self.observation.right_wrench)

    @property
    def left_foot_ratio(self) -> float:
        return self._left_foot_ratio

    @left_foot_ratio.setter
    def left_foot_ratio(self, ratio: float):
        self._left_foot_ratio = clamp(ratio, 0.0, 1.0)

    # ================================================================== #
    # 로그 구간
    # ================================================================== #
    def start_log_segment(self, label: str):
        if self.segment_name:
            self.stop_log_segment()
        self.segment_name = f"t_{self.nb_log_segments}_{label}"
        self.nb_log_segments += 1
        print(f"[LOG] 구간 시작: {self.segment_name}")

    def stop_log_segment(self):
        print(f"[LOG] 구간 종료: {self.segment_name}")
        self.segment_name = ""

    # ================================================================== #
    # Snapshot (발행 스레드)
    # ================================================================== #
    def _publish_snapshot(self):
        pose = None
        if self.observation is not None and self.observation.floating_base_pose is not None:
            pose = np.array(self.observation.floating_base_pose, dtype=float)
        snapshot = ControllerSnapshot(
            time=self.ctl_time,
            phase=self.phase,
            wpg=self.wpg,
            plan_name=self.plan.name,
            support_index=self.plan.support_index,
            target_index=self.plan.target_index,
            com=self.pendulum.com.copy(),
            comd=self.pendulum.comd.copy(),
            zmp=self.pendulum.zmp.copy(),
            command=self.command,
            floating_base_pose=pose,
            nb_cps_updates=self.nb_cps_updates,
            nb_cps_failures=self.nb_cps_failures,
            nb_hmpc_updates=self.nb_hmpc_updates,
            nb_hmpc_failures=self.nb_hmpc_failures,
            emergency_stop=self.emergency_stop,
            pause_walking=self.pause_walking,
            segment_name=self.segment_name,
        )
        with self._lock:
            self._snapshot = snapshot

    def snapshot(self) -> ControllerSnapshot:
        """가장 최근 주기의 상태 (thread-safe, non-blocking)."""
        with self._lock:
            return self._snapshot

    def gait_interface(self) -> "GaitInterface":
        return GaitInterface(self)


class GaitInterface:
    """외부 gait FSM에 넘기는 좁은 capability 객체.

    plan 전진/후퇴는 emergency_stop 또는 pause_walking 중에는 보류되고 False를 반환한다.
    """

    def __init__(self, controller: Controller):
        self._ctl = controller

    # contacts
    @property
    def prev_contact(self):
        return self._ctl.prev_contact

    @property
    def support_contact(self):
        return self._ctl.support_contact

    @property
    def target_contact(self):
        return self._ctl.target_contact

    @property
    def next_contact(self):
        return self._ctl.next_contact

    # 위상 시간
    def double_support_duration(self) -> float:
        return self._ctl.double_support_duration()

    def next_double_support_duration(self, duration: float):
        self._ctl.next_double_support_duration(duration)

    def single_support_duration(self) -> float:
        return self._ctl.single_support_duration()

    @property
    def init_dsp_duration(self) -> float:
        return self._ctl.plan.init_dsp_duration

    @property
    def final_dsp_duration(self) -> float:
        return self._ctl.plan.final_dsp_duration

    def start_phase(self, phase: GaitPhase, duration: float = 0.0):
        self._ctl.start_phase(phase, duration)

    # plan cursor
    @property
    def suspended(self) -> bool:
        return self._ctl.emergency_stop or self._ctl.pause_walking

    def go_to_next_footstep(self, actual_target_pose=None) -> bool:
        if self.suspended:
            return False
        self._ctl.plan.go_to_next_footstep(actual_target_pose)
        return True

    def restore_previous_footstep(self) -> bool:
        if self.suspended:
            return False
        self._ctl.plan.restore_previous_footstep()
        return True

    def is_last_ssp(self) -> bool:
        return self._ctl.is_last_ssp()

    def is_last_dsp(self) -> bool:
        return self._ctl.is_last_dsp()

    # 하중 비율
    @property
    def left_foot_ratio(self) -> float:
        return self._ctl.left_foot_ratio

    @left_foot_ratio.setter
    def left_foot_ratio(self, ratio: float):
        self._ctl.left_foot_ratio = ratio

    def measured_left_foot_ratio(self) -> float:
        return self._ctl.measured_left_foot_ratio()

    # 실패 / 정지
    @property
    def nb_consecutive_failures(self) -> int:
        return self._ctl.nb_consecutive_failures

    def failure_threshold_exceeded(self) -> bool:
        return self._ctl.failure_threshold_exceeded()

    @property
    def emergency_stop(self) -> bool:
        return self._ctl.emergency_stop

    def trigger_emergency_stop(self):
        if not self._ctl.emergency_stop:
            print(f"[Controller] t={self._ctl.ctl_time:.3f}s EMERGENCY STOP")
        self._ctl.emergency_stop = True
