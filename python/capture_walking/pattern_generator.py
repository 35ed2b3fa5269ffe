"""패턴 생성기 공통 인터페이스

두 전략 (CaptureProblem, HorizontalMPC) 모두 같은 계약을 따른다:
  update(pendulum, plan, phase, remaining_time, start_time) → Preview 또는 None

  - pendulum의 현재 상태(com, comd, zmp)에서 출발 → 전략 전환 시 연속성 보장
  - None은 infeasible. 호출자(Controller)가 이전 preview를 유지하고 실패 카운트.

support_schedule()은 plan cursor로부터 앞으로의 지지 다각형 시퀀스를 만든다.
"""

from enum import Enum

import numpy as np

from capture_walking.contact import support_hull


class GaitPhase(Enum):
    STANDING = "standing"
    DOUBLE_SUPPORT = "double_support"
    SINGLE_SUPPORT = "single_support"


class PatternGenerator:
    """패턴 생성기 base class"""

    name = "base"

    def update(self, pendulum, plan, phase, remaining_time, start_time=0.0):
        """새 Preview 반환, infeasible이면 None. 하위 클래스에서 구현."""
        raise NotImplementedError("update()는 패턴 생성기 하위 클래스에서 구현해야 함")


def is_walking(plan, phase) -> bool:
    """앞으로 밟을 contact가 남아 있는지 (plan 끝이면 Standing과 동일)."""
    if phase is GaitPhase.STANDING:
        return False
    if phase is GaitPhase.SINGLE_SUPPORT:
        return plan.target_contact.id > plan.support_contact.id
    return True


def support_schedule(plan, phase, remaining_time, horizon):
    """(duration, vertices) 구간 리스트.

    SSP: support(남은 시간) → DSP hull(support, target) → SSP target → ...
    DSP: hull(prev, support)(남은 시간) → SSP support → DSP hull(support, target) → ...
    plan 마지막 contact에 도달하면 hull(마지막 두 발)에서 무한 Standing.
    """
    standing = support_hull(*plan.stance_contacts())
    if not is_walking(plan, phase):
        return [(np.inf, standing)]

    contacts = plan.contacts
    segments = []
    if phase is GaitPhase.DOUBLE_SUPPORT:
        if remaining_time > 0:
            segments.append((remaining_time, standing))
        if plan.target_contact.id == plan.support_contact.id:
            # 마지막 DSP: 이후 계속 양발 지지
            segments.append((np.inf, standing))
            return segments
        segments.append((plan.step_single_support_duration(), plan.support_contact.vertices))
    else:
        if remaining_time > 0:
            segments.append((remaining_time, plan.support_contact.vertices))

    elapsed = sum(duration for duration, _ in segments)
    stance = plan.support_contact
    j = plan.target_index
    while True:
        contact = contacts[j]
        hull = support_hull(stance, contact)
        if j == len(contacts) - 1 or elapsed >= horizon:
            segments.append((np.inf, hull))
            break
        ds = plan.step_double_support_duration(contact)
        ss = plan.step_single_support_duration(contacts[j + 1])
        segments.append((ds, hull))
        segments.append((ss, contact.vertices))
        elapsed += ds + ss
        stance = contact
        j += 1
    return segments


def polygon_at(segments, t):
    """schedule에서 시각 t (phase 시작 기준)의 지지 다각형."""
    elapsed = 0.0
    for duration, vertices in segments:
        elapsed += duration
        if t < elapsed - 1e-9:
            return vertices
    return segments[-1][1]
