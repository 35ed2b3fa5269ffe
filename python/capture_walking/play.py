"""Capturability 보행 제어기 데모 (물리 시뮬레이션 없음)

  1. 직진 보행 plan 생성 (좌우 교대 footstep)
  2. 간단한 gait FSM: Standing → (DSP ↔ SSP)* → final DSP → Standing
  3. 이상적 observer: 이전 주기 BalanceCommand를 그대로 관측값으로 사용
  4. 요약 출력 + (선택) CoM/ZMP 궤적 플롯

사용:
  python play.py                 # CPS
  python play.py --hmpc --plot   # HMPC + 플롯
"""

import argparse
import os
import sys

import numpy as np
import matplotlib.pyplot as plt

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), ".."))
from capture_walking.config import DT, GRAVITY
from capture_walking.contact import LEFT_FOOT_SURFACE, RIGHT_FOOT_SURFACE
from capture_walking.controller import Controller, Observation, WalkingPatternGeneration
from capture_walking.pattern_generator import GaitPhase
from capture_walking.sensors import Wrench

N_STEPS = 4
STEP_LENGTH = 0.2
STEP_WIDTH = 0.18


def make_straight_plan(n_steps=N_STEPS, step_length=STEP_LENGTH, step_width=STEP_WIDTH):
    """C0 (왼발), C1 (오른발) 초기 자세 + n_steps 걸음 + 마지막 발 모으기."""
    contacts = []
    for i in range(n_steps + 3):
        is_left = (i % 2 == 0)
        x = step_length * max(0, min(i - 1, n_steps))
        y = step_width / 2 if is_left else -step_width / 2
        contacts.append({
            "pose": {"translation": [x, y, 0.0], "rotation": [0.0, 0.0, 0.0]},
            "surface": LEFT_FOOT_SURFACE if is_left else RIGHT_FOOT_SURFACE,
        })
    return {"name": "straight", "contacts": contacts}


class ReferenceGaitFSM:
    """GaitInterface만 사용하는 최소 보행 상태 기계."""

    def __init__(self, gait):
        self.gait = gait
        self.phase = GaitPhase.STANDING
        self.timer = 0.0
        self.walking = False
        self.nb_steps = 0

        # 초기 양발 지지: (C0, C1)
        self.gait.go_to_next_footstep()
        self.gait.start_phase(GaitPhase.STANDING)

    def start_walking(self):
        if not self.gait.go_to_next_footstep():
            return
        self.walking = True
        self._start(GaitPhase.DOUBLE_SUPPORT, self.gait.init_dsp_duration)

    def _start(self, phase, duration):
        self.phase = phase
        self.timer = duration
        self.gait.start_phase(phase, duration)

    def _plan_finished(self) -> bool:
        return self.gait.target_contact.id == self.gait.support_contact.id

    def step(self, dt):
        if self.gait.failure_threshold_exceeded():
            self.gait.trigger_emergency_stop()
        if not self.walking:
            return
        self.timer -= dt
        if self.timer > 1e-9:
            return

        if self.phase is GaitPhase.DOUBLE_SUPPORT:
            if self._plan_finished():
                self.walking = False
                self._start(GaitPhase.STANDING, 0.0)
            else:
                self._start(GaitPhase.SINGLE_SUPPORT, self.gait.single_support_duration())
        elif self.phase is GaitPhase.SINGLE_SUPPORT:
            if not self.gait.go_to_next_footstep():
                self.timer = 0.0   # 정지 중: 같은 위상 유지
                return
            self.nb_steps += 1
            if self._plan_finished():
                duration = self.gait.final_dsp_duration
            else:
                duration = self.gait.double_support_duration()
            self._start(GaitPhase.DOUBLE_SUPPORT, duration)


def ideal_observation(controller) -> Observation:
    """명령을 완벽히 추종한다고 가정한 관측값."""
    command = controller.command
    if command is None:
        pendulum = controller.pendulum
        half = 0.5 * controller.robot_mass * GRAVITY
        force = np.array([0.0, 0.0, half])
        contacts = controller.ground_contacts()
        wrenches = [Wrench.at_point(force, np.zeros(3), c.position) for c in contacts]
        left = sum((w for w, c in zip(wrenches, contacts) if c.is_left_foot), Wrench())
        right = sum((w for w, c in zip(wrenches, contacts) if not c.is_left_foot), Wrench())
        return Observation(com=pendulum.com.copy(), comd=pendulum.comd.copy(),
                           left_wrench=left, right_wrench=right)
    return Observation(com=command.com.copy(), comd=command.comd.copy(),
                       left_wrench=command.left_wrench, right_wrench=command.right_wrench)


def simulate(controller, fsm, duration, start_delay=0.5):
    log = {"t": [], "com": [], "zmp": [], "cmd_zmp": [], "phase": []}
    nb_cycles = int(round(duration / controller.dt))
    nb_errors = 0
    for k in range(nb_cycles):
        t = k * controller.dt
        if k == int(round(start_delay / controller.dt)):
            fsm.start_walking()
        if not controller.run(ideal_observation(controller)):
            nb_errors += 1
        fsm.step(controller.dt)

        log["t"].append(t)
        log["com"].append(controller.pendulum.com.copy())
        log["zmp"].append(controller.pendulum.zmp.copy())
        log["cmd_zmp"].append(controller.command.zmp.copy())
        log["phase"].append(fsm.phase)
    for key in ("t", "com", "zmp", "cmd_zmp"):
        log[key] = np.array(log[key])
    log["nb_errors"] = nb_errors
    return log


def plot_log(log, plan):
    t = log["t"]
    fig, axes = plt.subplots(1, 3, figsize=(16, 5))
    fig.suptitle(f"Capture walking ({plan.name})")

    ax = axes[0]
    ax.plot(t, log["com"][:, 0], 'b', label='CoM x')
    ax.plot(t, log["zmp"][:, 0], 'r--', label='ZMP x')
    ax.plot(t, log["cmd_zmp"][:, 0], 'k:', label='cmd ZMP x')
    ax.set_xlabel('time [s]')
    ax.set_ylabel('x [m]')
    ax.legend(fontsize=8)
    ax.grid(True, alpha=0.3)

    ax = axes[1]
    ax.plot(t, log["com"][:, 1], 'b', label='CoM y')
    ax.plot(t, log["zmp"][:, 1], 'r--', label='ZMP y')
    ax.plot(t, log["cmd_zmp"][:, 1], 'k:', label='cmd ZMP y')
    ax.set_xlabel('time [s]')
    ax.set_ylabel('y [m]')
    ax.legend(fontsize=8)
    ax.grid(True, alpha=0.3)

    ax = axes[2]
    for contact in plan.contacts:
        vertices = np.vstack([contact.vertices, contact.vertices[:1]])
        color = 'g' if contact.is_left_foot else 'm'
        ax.plot(vertices[:, 0], vertices[:, 1], color, alpha=0.6)
    ax.plot(log["com"][:, 0], log["com"][:, 1], 'b', label='CoM')
    ax.plot(log["zmp"][:, 0], log["zmp"][:, 1], 'r--', alpha=0.6, label='ZMP')
    ax.set_xlabel('x [m]')
    ax.set_ylabel('y [m]')
    ax.set_title('XY plane (top view)')
    ax.set_aspect('equal')
    ax.legend(fontsize=8)
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig('capture_walking.png', dpi=150)
    print("[플롯 저장] capture_walking.png")
    plt.show()


def main():
    parser = argparse.ArgumentParser(description="Capture walking demo")
    parser.add_argument("--hmpc", action="store_true", help="Horizontal MPC 사용")
    parser.add_argument("--steps", type=int, default=N_STEPS)
    parser.add_argument("--duration", type=float, default=8.0)
    parser.add_argument("--plot", action="store_true")
    args = parser.parse_args()

    plans = {"straight": make_straight_plan(args.steps)}
    controller = Controller(plans, dt=DT)
    if args.hmpc:
        controller.set_pattern_generation(WalkingPatternGeneration.HORIZONTAL_MPC)
    fsm = ReferenceGaitFSM(controller.gait_interface())

    controller.start_log_segment("walk")
    log = simulate(controller, fsm, args.duration)
    controller.stop_log_segment()

    snapshot = controller.snapshot()
    print(f"\n[결과] t={snapshot.time:.2f}s | 걸음 {fsm.nb_steps} | "
          f"support #{snapshot.support_index} → target #{snapshot.target_index}")
    print(f"  CPS  : updates={snapshot.nb_cps_updates}, failures={snapshot.nb_cps_failures}")
    print(f"  HMPC : updates={snapshot.nb_hmpc_updates}, failures={snapshot.nb_hmpc_failures}")
    print(f"  preview 만료 주기: {log['nb_errors']}")
    print(f"  최종 CoM: {snapshot.com}")

    if args.plot:
        plot_log(log, controller.plan)


if __name__ == "__main__":
    main()
