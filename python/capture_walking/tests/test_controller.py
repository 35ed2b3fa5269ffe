"""Controller 루프: 갱신/실패 처리, 전략 전환, 정지 중 균형 유지, snapshot 테스트"""

import sys
import os
import dataclasses
import threading
import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from capture_walking.config import GRAVITY, MAX_CONSECUTIVE_FAILURES, ROBOT_MASS
from capture_walking.contact import (
    LEFT_FOOT_SURFACE, RIGHT_FOOT_SURFACE, is_inside_polygon, support_hull,
)
from capture_walking.controller import (
    Controller, ControllerSnapshot, GaitInterface, Observation, WalkingPatternGeneration,
)
from capture_walking.errors import ConfigError, InvalidPlanTransition
from capture_walking.pattern_generator import GaitPhase
from capture_walking.preview import Preview
from capture_walking.sensors import Wrench


def make_plan(nb_contacts=6, **params):
    contacts = []
    for i in range(nb_contacts):
        is_left = (i % 2 == 0)
        contacts.append({
            "pose": {"translation": [0.2 * max(0, i - 1), 0.09 if is_left else -0.09, 0.0]},
            "surface": LEFT_FOOT_SURFACE if is_left else RIGHT_FOOT_SURFACE,
        })
    plan = {"contacts": contacts}
    plan.update(params)
    return plan


@pytest.fixture
def commands():
    return []


@pytest.fixture
def ctl(commands):
    plans = {
        "walk": make_plan(),
        "short": make_plan(nb_contacts=3, com_height=0.72),
    }
    return Controller(plans, command_sink=commands.append)


def observe(ctl, left_fz=None, right_fz=0.0):
    """pendulum을 완벽히 추종한다고 가정한 관측값 (왼발 지지)."""
    if left_fz is None:
        left_fz = ROBOT_MASS * GRAVITY
    foot = ctl.plan.support_contact.position
    return Observation(
        com=ctl.pendulum.com.copy(),
        comd=ctl.pendulum.comd.copy(),
        left_wrench=Wrench.at_point([0.0, 0.0, left_fz], np.zeros(3), foot),
        right_wrench=Wrench([0.0, 0.0, right_fz], np.zeros(3)),
    )


class TestConstruction:

    def test_initial_state(self, ctl):
        assert ctl.available_plans() == ["walk", "short"]
        assert ctl.plan.name == "walk"
        assert ctl.wpg is WalkingPatternGeneration.CAPTURE_PROBLEM
        assert ctl.preview is None
        snapshot = ctl.snapshot()
        assert isinstance(snapshot, ControllerSnapshot)
        assert snapshot.time == 0.0
        assert snapshot.phase is GaitPhase.STANDING

    def test_contacts_completed_with_sole(self, ctl):
        assert all(contact.is_complete for contact in ctl.plan.contacts)

    def test_empty_plans_raise(self):
        with pytest.raises(ConfigError):
            Controller({})

    def test_unknown_plan_keeps_current(self, ctl):
        plan = ctl.plan
        with pytest.raises(ConfigError):
            ctl.load_footstep_plan("missing")
        assert ctl.plan is plan

    def test_malformed_plan_keeps_current(self, ctl):
        ctl._plans["broken"] = {"contacts": [{"surface": LEFT_FOOT_SURFACE}]}
        plan = ctl.plan
        with pytest.raises(ConfigError):
            ctl.load_footstep_plan("broken")
        assert ctl.plan is plan

    def test_load_sets_com_height(self, ctl):
        ctl.load_footstep_plan("short")
        assert ctl.plan.name == "short"
        assert np.isclose(ctl.pendulum.com_height, 0.72)


class TestRun:

    def test_first_cycle_updates_preview(self, ctl, commands):
        assert ctl.run(observe(ctl))
        assert ctl.nb_cps_updates == 1
        assert ctl.nb_cps_failures == 0
        assert ctl.preview is not None
        assert len(commands) == 1
        assert np.isclose(ctl.ctl_time, ctl.dt)

    def test_update_period(self, ctl):
        for _ in range(6):
            assert ctl.run(observe(ctl))
        assert ctl.nb_cps_updates == 2

    def test_balance_at_rest(self, ctl):
        com0 = ctl.pendulum.com.copy()
        for _ in range(20):
            assert ctl.run(observe(ctl))
        np.testing.assert_allclose(ctl.pendulum.com, com0, atol=1e-4)
        vertices = support_hull(*ctl.ground_contacts())
        assert is_inside_polygon(ctl.command.zmp, vertices)

    def test_start_phase_forces_update(self, ctl):
        ctl.run(observe(ctl))
        ctl.gait_interface().go_to_next_footstep()
        ctl.start_phase(GaitPhase.STANDING)
        ctl.run(observe(ctl))
        assert ctl.nb_cps_updates == 2

    def test_velocity_estimated_without_comd(self, ctl):
        obs = observe(ctl)
        obs.comd = None
        ctl.run(obs)
        moved = observe(ctl)
        moved.comd = None
        moved.com = obs.com + np.array([0.001, 0.0, 0.0])
        ctl.run(moved)
        assert ctl.com_vel_filter.alpha < 1.0
        # 차분 속도(0.001 / dt)보다 작게 걸러짐
        assert 0.0 < ctl.com_vel_filter.vel[0] < 0.001 / ctl.dt


class TestFailureHandling:

    def test_failure_keeps_previous_preview(self, ctl, monkeypatch):
        ctl.run(observe(ctl))
        preview = ctl.preview
        monkeypatch.setattr(ctl.cps, "update", lambda *args, **kwargs: None)

        assert ctl.update_preview() is False
        assert ctl.preview is preview
        assert ctl.nb_cps_updates == 2
        assert ctl.nb_cps_failures == 1
        assert ctl.nb_consecutive_failures == 1
        # 이전 preview로 계속 진행
        assert ctl.run(observe(ctl))

    def test_failure_threshold(self, ctl, monkeypatch):
        ctl.run(observe(ctl))
        update = ctl.cps.update
        monkeypatch.setattr(ctl.cps, "update", lambda *args, **kwargs: None)
        for _ in range(MAX_CONSECUTIVE_FAILURES - 1):
            ctl.update_preview()
        assert not ctl.failure_threshold_exceeded()
        ctl.update_preview()
        assert ctl.failure_threshold_exceeded()
        assert ctl.gait_interface().failure_threshold_exceeded()

        monkeypatch.setattr(ctl.cps, "update", update)
        assert ctl.update_preview()
        assert ctl.nb_consecutive_failures == 0

    def test_counters_per_strategy(self, ctl, monkeypatch):
        ctl.run(observe(ctl))
        ctl.set_pattern_generation(WalkingPatternGeneration.HORIZONTAL_MPC)
        monkeypatch.setattr(ctl.hmpc, "update", lambda *args, **kwargs: None)
        ctl.run(observe(ctl))
        assert ctl.nb_hmpc_updates == 1
        assert ctl.nb_hmpc_failures == 1
        assert ctl.nb_cps_failures == 0
        assert ctl.preview.source == "CPS"

    def test_preview_shorter_than_update_period_rejected(self, ctl):
        ctl.set_pattern_generation(WalkingPatternGeneration.HORIZONTAL_MPC)
        assert ctl.run(observe(ctl))
        preview = ctl.preview
        # HMPC horizon (1.6 s)보다 긴 갱신 주기
        ctl.preview_update_period = 2.0
        assert ctl.update_preview() is False
        assert ctl.preview is preview
        assert ctl.nb_hmpc_updates == 2
        assert ctl.nb_hmpc_failures == 1
        assert ctl.nb_consecutive_failures == 1

    def test_short_cps_preview_counted_as_failure(self, ctl, monkeypatch):
        ctl.run(observe(ctl))
        preview = ctl.preview
        t = ctl.ctl_time
        samples = np.tile(ctl.pendulum.com, (2, 1))
        short = Preview(t, ctl.dt, samples, np.zeros_like(samples), samples, source="CPS")
        monkeypatch.setattr(ctl.cps, "update", lambda *args, **kwargs: short)

        assert ctl.update_preview() is False
        assert ctl.preview is preview
        assert ctl.nb_cps_failures == 1

    def test_stale_preview_returns_false_but_balances(self, ctl, commands):
        ctl.emergency_stop = True
        assert ctl.run(observe(ctl)) is False
        assert len(commands) == 1
        assert ctl.command is not None


class TestStrategySwitch:

    def test_switch_is_continuous(self, ctl):
        for _ in range(7):
            ctl.run(observe(ctl))
        com = ctl.pendulum.com.copy()
        comd = ctl.pendulum.comd.copy()
        t = ctl.ctl_time

        ctl.set_pattern_generation(WalkingPatternGeneration.HORIZONTAL_MPC)
        assert ctl.run(observe(ctl))

        assert ctl.preview.source == "HMPC"
        assert np.isclose(ctl.preview.start_time, t)
        first_com, first_comd, _ = ctl.preview.first_sample()
        np.testing.assert_allclose(first_com, com, atol=1e-12)
        np.testing.assert_allclose(first_comd, comd, atol=1e-12)

    def test_switch_back(self, ctl):
        ctl.set_pattern_generation(WalkingPatternGeneration.HORIZONTAL_MPC)
        for _ in range(3):
            ctl.run(observe(ctl))
        com = ctl.pendulum.com.copy()
        ctl.set_pattern_generation(WalkingPatternGeneration.CAPTURE_PROBLEM)
        ctl.run(observe(ctl))
        assert ctl.preview.source == "CPS"
        np.testing.assert_allclose(ctl.preview.first_sample()[0], com, atol=1e-12)


class TestPauseAndStop:

    def test_pause_keeps_balancing(self, ctl, commands):
        ctl.run(observe(ctl))
        nb_updates = ctl.nb_cps_updates
        ctl.pause_walking = True
        results = [ctl.run(observe(ctl)) for _ in range(100)]

        assert ctl.nb_cps_updates == nb_updates
        assert len(commands) == 101
        assert results[0] is True
        assert results[-1] is False
        vertices = support_hull(*ctl.ground_contacts())
        for command in commands:
            assert is_inside_polygon(command.zmp, vertices)

        # 재개 첫 주기에 새 preview로 복귀
        ctl.pause_walking = False
        assert ctl.run(observe(ctl)) is True
        assert ctl.nb_cps_updates == nb_updates + 1

    def test_plan_advance_suspended(self, ctl):
        gait = ctl.gait_interface()
        ctl.pause_walking = True
        assert gait.go_to_next_footstep() is False
        assert ctl.plan.target_index == 0
        ctl.pause_walking = False
        assert gait.go_to_next_footstep() is True
        assert ctl.plan.target_index == 1

    def test_emergency_stop_trigger(self, ctl):
        gait = ctl.gait_interface()
        gait.trigger_emergency_stop()
        assert ctl.emergency_stop
        assert gait.emergency_stop
        assert gait.restore_previous_footstep() is False


class TestGaitInterface:

    def test_contacts_and_last_phase_flags(self, ctl):
        gait = ctl.gait_interface()
        assert isinstance(gait, GaitInterface)
        for _ in range(8):
            assert not gait.is_last_ssp()
            assert not gait.is_last_dsp()
            assert gait.support_contact.id <= gait.target_contact.id <= gait.next_contact.id
            gait.go_to_next_footstep()
        assert gait.target_contact.id == len(ctl.plan.contacts) - 1

    def test_single_rewind(self, ctl):
        gait = ctl.gait_interface()
        gait.go_to_next_footstep()
        gait.go_to_next_footstep()
        assert gait.restore_previous_footstep()
        assert gait.support_contact.id == 0
        with pytest.raises(InvalidPlanTransition):
            gait.restore_previous_footstep()

    def test_double_support_override_is_one_shot(self, ctl):
        gait = ctl.gait_interface()
        gait.next_double_support_duration(0.43)
        assert gait.double_support_duration() == 0.4
        assert gait.double_support_duration() == 0.2

    def test_durations(self, ctl):
        gait = ctl.gait_interface()
        assert gait.single_support_duration() == 0.8
        assert gait.init_dsp_duration == 0.6
        assert gait.final_dsp_duration == 0.6

    def test_left_foot_ratio_clamped(self, ctl):
        gait = ctl.gait_interface()
        gait.left_foot_ratio = 1.5
        assert ctl.left_foot_ratio == 1.0
        gait.left_foot_ratio = -0.2
        assert ctl.left_foot_ratio == 0.0
        gait.left_foot_ratio = 0.3
        assert ctl.left_foot_ratio == 0.3


class TestSensing:

    def test_measured_left_foot_ratio(self, ctl):
        ctl.run(observe(ctl, left_fz=100.0, right_fz=300.0))
        assert np.isclose(ctl.measured_left_foot_ratio(), 0.25)
        assert np.isclose(ctl.gait_interface().measured_left_foot_ratio(), 0.25)
        np.testing.assert_allclose(ctl.measured_contact_wrench().force, [0.0, 0.0, 400.0])

    def test_update_robot_mass(self, ctl):
        ctl.update_robot_mass(40.0)
        assert ctl.robot_mass == 40.0
        assert ctl.stabilizer.mass == 40.0


class TestLogAndSnapshot:

    def test_log_segments(self, ctl):
        ctl.start_log_segment("walk")
        assert ctl.segment_name == "t_100_walk"
        ctl.start_log_segment("turn")
        assert ctl.segment_name == "t_101_turn"
        ctl.run(observe(ctl))
        assert ctl.snapshot().segment_name == "t_101_turn"
        ctl.stop_log_segment()
        assert ctl.segment_name == ""

    def test_snapshot_is_frozen_copy(self, ctl):
        ctl.run(observe(ctl))
        snapshot = ctl.snapshot()
        with pytest.raises(dataclasses.FrozenInstanceError):
            snapshot.time = 10.0
        assert snapshot.com is not ctl.pendulum.com
        np.testing.assert_allclose(snapshot.com, ctl.pendulum.com)
        assert snapshot.nb_cps_updates == 1

    def test_snapshot_from_other_thread(self, ctl):
        snapshots = []
        done = threading.Event()

        def reader():
            while not done.is_set():
                snapshots.append(ctl.snapshot())

        thread = threading.Thread(target=reader)
        thread.start()
        for _ in range(20):
            ctl.run(observe(ctl))
        done.set()
        thread.join()
        assert all(isinstance(s, ControllerSnapshot) for s in snapshots)
        assert np.isclose(ctl.snapshot().time, 20 * ctl.dt)

    def test_internal_reset(self, ctl):
        for _ in range(10):
            ctl.run(observe(ctl))
        ctl.gait_interface().go_to_next_footstep()
        ctl.internal_reset()
        assert ctl.ctl_time == 0.0
        assert ctl.preview is None
        assert ctl.nb_cps_updates == 0
        assert ctl.plan.target_index == 0
        assert ctl.phase is GaitPhase.STANDING
