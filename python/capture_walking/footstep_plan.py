"""FootstepPlan: 발자국 시퀀스 + 4-slot cursor + 보행 파라미터

★ cursor:
  prev / support / target / next 는 contacts 리스트의 인덱스.
  support.id ≤ target.id ≤ next.id 를 항상 유지하고,
  뒤로 가는 것은 restore_previous_footstep()의 1회 rewind뿐이다.

★ 파라미터 setter:
  모든 setter는 실패하지 않고 문서화된 범위로 포화(clamp)한다.
  DSP/SSP 시간은 추가로 SAMPLING_PERIOD의 정수배로 반올림한다.
"""

import dataclasses
from typing import List, Optional

import numpy as np

from capture_walking.config import (
    DEFAULT_COM_HEIGHT, DEFAULT_DS_DURATION, DEFAULT_FINAL_DSP_DURATION,
    DEFAULT_INIT_DSP_DURATION, DEFAULT_LANDING_PITCH, DEFAULT_LANDING_RATIO,
    DEFAULT_SS_DURATION, DEFAULT_SWING_HEIGHT, DEFAULT_TAKEOFF_PITCH,
    DEFAULT_TAKEOFF_RATIO,
    MAX_COM_HEIGHT, MAX_DS_DURATION, MAX_PITCH, MAX_RATIO, MAX_SS_DURATION,
    MAX_SWING_HEIGHT, MAX_XDSP_DURATION,
    MIN_COM_HEIGHT, MIN_DS_DURATION, MIN_PITCH, MIN_RATIO, MIN_SS_DURATION,
    MIN_SWING_HEIGHT, MIN_XDSP_DURATION,
    SAMPLING_PERIOD,
)
from capture_walking.contact import Contact, Sole
from capture_walking.errors import ConfigError, InvalidPlanTransition
from capture_walking.utils import clamp, invert_pose, quantize

PLAN_PARAMETERS = (
    "com_height", "double_support_duration", "single_support_duration",
    "init_dsp_duration", "final_dsp_duration", "landing_pitch", "landing_ratio",
    "swing_height", "takeoff_offset", "takeoff_pitch", "takeoff_ratio",
)


def clamp_ds_duration(duration):
    return clamp(quantize(duration, SAMPLING_PERIOD), MIN_DS_DURATION, MAX_DS_DURATION)


def clamp_ss_duration(duration):
    return clamp(quantize(duration, SAMPLING_PERIOD), MIN_SS_DURATION, MAX_SS_DURATION)


class FootstepPlan:
    """발자국 시퀀스와 보행 파라미터."""

    def __init__(self):
        self.name = ""
        self._contacts: List[Contact] = []

        # cursor (contacts 인덱스)
        self._prev = 0
        self._support = 0
        self._target = 0
        self._next = 0
        self._pending = 0            # 다음 전진 때 target이 될 인덱스
        self._saved_cursor = None    # 1회 rewind용

        self._com_height = DEFAULT_COM_HEIGHT
        self._double_support_duration = DEFAULT_DS_DURATION
        self._single_support_duration = DEFAULT_SS_DURATION
        self._init_dsp_duration = DEFAULT_INIT_DSP_DURATION
        self._final_dsp_duration = DEFAULT_FINAL_DSP_DURATION
        self._landing_pitch = DEFAULT_LANDING_PITCH
        self._landing_ratio = DEFAULT_LANDING_RATIO
        self._swing_height = DEFAULT_SWING_HEIGHT
        self._takeoff_offset = np.zeros(3)
        self._takeoff_pitch = DEFAULT_TAKEOFF_PITCH
        self._takeoff_ratio = DEFAULT_TAKEOFF_RATIO

    # ================================================================== #
    # 설정 dict 입출력
    # ================================================================== #
    def load(self, config: dict):
        """설정 dict에서 plan 로드.

        새 contacts/파라미터를 지역 변수에 모두 만든 뒤 한 번에 설치하므로
        ConfigError가 나면 기존 plan은 그대로 남는다. 로드 후 cursor는 reset(0).
        """
        if "contacts" not in config:
            raise ConfigError("plan에 'contacts' 필드 없음")
        entries = config["contacts"]
        if len(entries) == 0:
            raise ConfigError("plan의 contacts가 비어 있음")
        contacts = [Contact.from_config(entry, contact_id=i) for i, entry in enumerate(entries)]

        staged = FootstepPlan()
        for key in PLAN_PARAMETERS:
            if key in config:
                setattr(staged, key, config[key])

        self.name = config.get("name", self.name)
        self._contacts = contacts
        for key in PLAN_PARAMETERS:
            attr = "_" + key
            setattr(self, attr, getattr(staged, attr))
        self.reset(0)

    def save(self, config: dict):
        """plan 기본값(per-contact override 제외)과 contacts를 dict에 기록."""
        config["name"] = self.name
        for key in PLAN_PARAMETERS:
            value = getattr(self, "_" + key)
            config[key] = value.tolist() if isinstance(value, np.ndarray) else value
        config["contacts"] = [contact.to_config() for contact in self._contacts]
        return config

    def complete(self, sole: Sole):
        """지지 다각형이 없는 contact를 sole 형상과 발 방향으로 채운다."""
        self._contacts = [contact.completed(sole) for contact in self._contacts]

    # ================================================================== #
    # cursor 조작
    # ================================================================== #
    def reset(self, start_index: int = 0):
        """start_index를 첫 지지 contact로 cursor 재배치."""
        n = len(self._contacts)
        if not 0 <= start_index < n:
            raise IndexError(f"start_index {start_index} 범위 밖 (contacts {n}개)")
        self._prev = start_index - 1 if start_index > 0 else start_index
        self._support = start_index
        self._target = start_index
        self._next = start_index
        self._pending = min(start_index + 1, n - 1)
        self._saved_cursor = None

    def go_to_next_footstep(self, actual_target_pose: Optional[np.ndarray] = None):
        """cursor를 한 칸 전진.

        actual_target_pose가 주어지면 support가 될 contact(현재 target)의
        pose를 실제 착지 pose로 먼저 덮어쓴다 (drift 보정).
        """
        if actual_target_pose is not None:
            corrected = dataclasses.replace(
                self._contacts[self._target],
                pose=np.array(actual_target_pose, dtype=float),
            )
            self._contacts[self._target] = corrected

        self._saved_cursor = self._cursor_state()
        self._prev = self._support
        self._support = self._target
        self._target = self._pending
        if self._pending + 1 < len(self._contacts):
            self._pending += 1
        self._next = self._pending

    def restore_previous_footstep(self):
        """직전 전진 1회 되돌리기 (DoubleSupport → Standing 전용).

        연속 두 번 호출하거나 전진 없이 호출하면 InvalidPlanTransition.
        """
        if self._saved_cursor is None:
            raise InvalidPlanTransition("한 스텝보다 더 되돌릴 수 없음")
        self._prev, self._support, self._target, self._next, self._pending = self._saved_cursor
        self._saved_cursor = None

    def _cursor_state(self):
        return (self._prev, self._support, self._target, self._next, self._pending)

    def compute_initial_transform(self, robot) -> np.ndarray:
        """floating base를 첫 지지 contact 위에 놓는 world pose (4x4).

        robot: floating_base_pose (4x4)와 surface_pose(name) → 4x4를 제공.
        X_0_fb' = X_0_c · (X_0_s)^-1 · X_0_fb
        """
        contact = self.support_contact
        X_0_s = robot.surface_pose(contact.surface)
        X_0_fb = robot.floating_base_pose
        return contact.pose @ invert_pose(X_0_s) @ X_0_fb

    # ================================================================== #
    # contacts 접근
    # ================================================================== #
    @property
    def contacts(self) -> List[Contact]:
        return list(self._contacts)

    @property
    def prev_contact(self) -> Contact:
        return self._contacts[self._prev]

    @property
    def support_contact(self) -> Contact:
        return self._contacts[self._support]

    @property
    def target_contact(self) -> Contact:
        return self._contacts[self._target]

    @property
    def next_contact(self) -> Contact:
        return self._contacts[self._next]

    def stance_contacts(self):
        """Standing/DSP에서 지면에 닿은 발.

        보통 (prev, support). 첫 전진 전처럼 prev == support이면 target을 쓴다.
        """
        if self.prev_contact.id != self.support_contact.id:
            return [self.prev_contact, self.support_contact]
        if self.target_contact.id != self.support_contact.id:
            return [self.support_contact, self.target_contact]
        return [self.support_contact]

    @property
    def support_index(self) -> int:
        return self._support

    @property
    def target_index(self) -> int:
        return self._target

    # ================================================================== #
    # 보행 파라미터 (getter / clamp setter)
    # ================================================================== #
    @property
    def com_height(self):
        return self._com_height

    @com_height.setter
    def com_height(self, height):
        self._com_height = clamp(height, MIN_COM_HEIGHT, MAX_COM_HEIGHT)

    @property
    def double_support_duration(self):
        return self._double_support_duration

    @double_support_duration.setter
    def double_support_duration(self, duration):
        self._double_support_duration = clamp_ds_duration(duration)

    @property
    def single_support_duration(self):
        return self._single_support_duration

    @single_support_duration.setter
    def single_support_duration(self, duration):
        self._single_support_duration = clamp_ss_duration(duration)

    @property
    def init_dsp_duration(self):
        return self._init_dsp_duration

    @init_dsp_duration.setter
    def init_dsp_duration(self, duration):
        self._init_dsp_duration = clamp(duration, MIN_XDSP_DURATION, MAX_XDSP_DURATION)

    @property
    def final_dsp_duration(self):
        return self._final_dsp_duration

    @final_dsp_duration.setter
    def final_dsp_duration(self, duration):
        self._final_dsp_duration = clamp(duration, MIN_XDSP_DURATION, MAX_XDSP_DURATION)

    # swing 파라미터: 관련 contact의 swing_config override가 있으면 그대로 반환
    @property
    def landing_pitch(self):
        return self.prev_contact.swing_config.get("landing_pitch", self._landing_pitch)

    @landing_pitch.setter
    def landing_pitch(self, pitch):
        self._landing_pitch = clamp(pitch, MIN_PITCH, MAX_PITCH)

    @property
    def landing_ratio(self):
        return self.support_contact.swing_config.get("landing_ratio", self._landing_ratio)

    @landing_ratio.setter
    def landing_ratio(self, ratio):
        self._landing_ratio = clamp(ratio, MIN_RATIO, MAX_RATIO)

    @property
    def swing_height(self):
        return self.prev_contact.swing_config.get("height", self._swing_height)

    @swing_height.setter
    def swing_height(self, height):
        self._swing_height = clamp(height, MIN_SWING_HEIGHT, MAX_SWING_HEIGHT)

    @property
    def takeoff_offset(self):
        return self.prev_contact.swing_config.get("takeoff_offset", self._takeoff_offset)

    @takeoff_offset.setter
    def takeoff_offset(self, offset):
        self._takeoff_offset = np.array(offset, dtype=float)

    @property
    def takeoff_pitch(self):
        return self.prev_contact.swing_config.get("takeoff_pitch", self._takeoff_pitch)

    @takeoff_pitch.setter
    def takeoff_pitch(self, pitch):
        self._takeoff_pitch = clamp(pitch, MIN_PITCH, MAX_PITCH)

    @property
    def takeoff_ratio(self):
        return self.support_contact.swing_config.get("takeoff_ratio", self._takeoff_ratio)

    @takeoff_ratio.setter
    def takeoff_ratio(self, ratio):
        self._takeoff_ratio = clamp(ratio, MIN_RATIO, MAX_RATIO)

    # ================================================================== #
    # contact별 위상 시간 override
    # ================================================================== #
    def step_double_support_duration(self, contact: Optional[Contact] = None):
        """contact(기본: target)로 들어가는 DSP 시간."""
        contact = self.target_contact if contact is None else contact
        if contact.double_support_duration is not None:
            return clamp_ds_duration(contact.double_support_duration)
        return self._double_support_duration

    def step_single_support_duration(self, contact: Optional[Contact] = None):
        """contact(기본: target)로 발을 옮기는 SSP 시간."""
        contact = self.target_contact if contact is None else contact
        if contact.single_support_duration is not None:
            return clamp_ss_duration(contact.single_support_duration)
        return self._single_support_duration
