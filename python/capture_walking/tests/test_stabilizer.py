"""Stabilizer: DCM 피드백, ZMP 포화, admittance, wrench 분배 테스트"""

import sys
import os
import numpy as np
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from capture_walking.config import DCM_INTEGRAL_LIMIT, GRAVITY
from capture_walking.contact import (
    Contact, LEFT_FOOT_SURFACE, RIGHT_FOOT_SURFACE, is_inside_polygon, support_hull,
)
from capture_walking.pendulum import Pendulum
from capture_walking.sensors import Wrench
from capture_walking.stabilizer import Stabilizer
from capture_walking.utils import make_pose

MASS = 38.0


def make_foot(x, y, contact_id, left):
    return Contact(
        pose=make_pose(translation=[x, y, 0.0]),
        surface=LEFT_FOOT_SURFACE if left else RIGHT_FOOT_SURFACE,
        id=contact_id,
        half_length=0.1,
        half_width=0.05,
    )


@pytest.fixture
def feet():
    return make_foot(0.0, 0.1, 0, True), make_foot(0.0, -0.1, 1, False)


@pytest.fixture
def pendulum():
    pendulum = Pendulum(com_height=0.78)
    pendulum.reset([0.0, 0.1, 0.78])
    return pendulum


@pytest.fixture
def stabilizer():
    return Stabilizer(mass=MASS, dt=0.02)


def weight_at(point):
    return Wrench.at_point([0.0, 0.0, MASS * GRAVITY], np.zeros(3), point)


class TestDCMFeedback:

    def test_no_error_keeps_reference(self, stabilizer, pendulum, feet):
        left, _ = feet
        command = stabilizer.run(pendulum, pendulum.com, pendulum.comd,
                                 weight_at([0.0, 0.1, 0.0]), left.vertices, [left])
        np.testing.assert_allclose(command.zmp[:2], pendulum.zmp[:2], atol=1e-12)
        np.testing.assert_allclose(command.comd[:2], np.zeros(2), atol=1e-9)
        np.testing.assert_allclose(command.dcm_error, np.zeros(2), atol=1e-12)
        assert not command.saturated

    def test_dcm_error_shifts_zmp(self, stabilizer, pendulum, feet):
        left, _ = feet
        com = pendulum.com + np.array([0.01, 0.0, 0.0])
        command = stabilizer.run(pendulum, com, np.zeros(3),
                                 weight_at([0.0, 0.1, 0.0]), left.vertices, [left])
        assert command.zmp[0] > pendulum.zmp[0]
        assert np.isclose(command.dcm_error[0], 0.01)

    def test_integral_anti_windup(self, stabilizer, pendulum, feet):
        left, _ = feet
        com = pendulum.com + np.array([0.05, -0.05, 0.0])
        for _ in range(500):
            stabilizer.run(pendulum, com, np.zeros(3),
                           weight_at([0.0, 0.1, 0.0]), left.vertices, [left])
        assert np.all(np.abs(stabilizer.dcm_error_sum) <= DCM_INTEGRAL_LIMIT + 1e-12)

    def test_reset_clears_integral(self, stabilizer, pendulum, feet):
        left, _ = feet
        stabilizer.run(pendulum, pendulum.com + 0.01, np.zeros(3),
                       weight_at([0.0, 0.1, 0.0]), left.vertices, [left])
        stabilizer.reset()
        np.testing.assert_allclose(stabilizer.dcm_error_sum, np.zeros(2))
        assert stabilizer.filtered_zmp is None


class TestZMPSaturation:

    def test_large_error_saturated_onto_polygon(self, stabilizer, pendulum, feet):
        left, _ = feet
        com = pendulum.com + np.array([0.3, 0.0, 0.0])
        command = stabilizer.run(pendulum, com, np.zeros(3),
                                 weight_at([0.0, 0.1, 0.0]), left.vertices, [left])
        assert command.saturated
        assert np.isclose(command.zmp[0], 0.1)
        assert is_inside_polygon(command.zmp, left.vertices)

    def test_commanded_zmp_always_inside(self, pendulum, feet):
        """임의의 관측 오차에도 명령 ZMP는 지지 다각형 안."""
        rng = np.random.default_rng(1)
        hull = support_hull(*feet)
        stabilizer = Stabilizer(mass=MASS, dt=0.02)
        for _ in range(200):
            com = pendulum.com + np.append(rng.uniform(-0.5, 0.5, 2), 0.0)
            comd = np.append(rng.uniform(-1.0, 1.0, 2), 0.0)
            for vertices, contacts in ((hull, list(feet)), (feet[0].vertices, [feet[0]])):
                command = stabilizer.run(pendulum, com, comd,
                                         weight_at([0.0, 0.0, 0.0]), vertices, contacts)
                assert is_inside_polygon(command.zmp, vertices, tol=1e-9)


class TestAdmittance:

    def test_in_the_air_skips_zmp_term(self, stabilizer, pendulum, feet):
        left, _ = feet
        command = stabilizer.run(pendulum, pendulum.com, pendulum.comd,
                                 Wrench(), left.vertices, [left])
        assert command.measured_zmp is None
        np.testing.assert_allclose(command.comd[:2], np.zeros(2), atol=1e-12)

    def test_com_error_feedback(self, stabilizer, pendulum, feet):
        left, _ = feet
        com = pendulum.com + np.array([0.0, -0.01, 0.0])
        comd = np.array([0.0, 0.0, 0.0])
        # ZMP 측정 = 명령이 되도록 해서 CoM 항만 남김
        stabilizer.k_zmp = 0.0
        command = stabilizer.run(pendulum, com, comd,
                                 weight_at([0.0, 0.1, 0.0]), left.vertices, [left])
        assert command.comd[1] > 0.0
        assert np.isclose(command.com[2], pendulum.com[2])


class TestWrenchDistribution:

    def test_single_support_all_on_support_foot(self, stabilizer, pendulum, feet):
        left, _ = feet
        command = stabilizer.run(pendulum, pendulum.com, pendulum.comd,
                                 weight_at([0.0, 0.1, 0.0]), left.vertices, [left])
        assert np.isclose(command.left_wrench.force[2], MASS * GRAVITY)
        np.testing.assert_allclose(command.right_wrench.force, np.zeros(3))

    def test_standing_uses_left_foot_ratio(self, stabilizer, feet):
        pendulum = Pendulum(com_height=0.78)
        pendulum.reset([0.0, 0.0, 0.78])
        command = stabilizer.run(pendulum, pendulum.com, pendulum.comd,
                                 weight_at([0.0, 0.0, 0.0]), support_hull(*feet),
                                 list(feet), left_foot_ratio=0.7)
        assert np.isclose(command.left_wrench.force[2], 0.7 * MASS * GRAVITY)
        assert np.isclose(command.right_wrench.force[2], 0.3 * MASS * GRAVITY)

    def test_pressure_ratio_follows_zmp(self, stabilizer, pendulum, feet):
        # ZMP가 왼발 중심 → 왼발이 전부 받음
        command = stabilizer.run(pendulum, pendulum.com, pendulum.comd,
                                 weight_at([0.0, 0.1, 0.0]), support_hull(*feet), list(feet))
        assert np.isclose(command.left_wrench.force[2], MASS * GRAVITY)
        assert np.isclose(command.right_wrench.force[2], 0.0)

    def test_update_robot_mass(self, stabilizer, pendulum, feet):
        left, _ = feet
        stabilizer.update_robot_mass(50.0)
        command = stabilizer.run(pendulum, pendulum.com, pendulum.comd,
                                 weight_at([0.0, 0.1, 0.0]), left.vertices, [left])
        assert np.isclose(command.left_wrench.force[2], 50.0 * GRAVITY)
