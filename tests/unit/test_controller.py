"""Controller, simulator and session tests without hardware."""

import asyncio
import logging

import pytest

from treadctrl.cli import Session
from treadctrl.controller import TreadmillController
from treadctrl.plan import WorkoutPlan
from treadctrl.protocol import (
    Idling,
    Running,
    SetSpeed,
    Start,
    Starting,
    Stop,
    Stopping,
    decode_command,
)
from treadctrl.segments import FixedSegment
from treadctrl.settings import UserProfile
from treadctrl.simulator import SimulatedTransport, build_hibernate_frame, build_status_frame
from treadctrl.transport import Transport, TransportError


def fast_simulator(**kwargs) -> SimulatedTransport:
    kwargs.setdefault("update_interval", 0.01)
    kwargs.setdefault("transition_delay", 0.02)
    kwargs.setdefault("seed", 7)
    return SimulatedTransport(**kwargs)


class FailingTransport(Transport):
    """Connected link whose every write fails."""

    @property
    def is_connected(self) -> bool:
        return True

    async def connect(self) -> bool:
        return True

    async def disconnect(self) -> None:
        pass

    async def send(self, data: bytes) -> None:
        raise TransportError("write failed")


def test_status_when_disconnected():
    controller = TreadmillController(fast_simulator())

    assert not controller.is_connected
    assert controller.get_status() == {
        "status": "DISCONNECTED",
        "speed": 0.0,
        "distance": 0.0,
        "steps": 0,
    }
    assert controller.current_speed == 0.0


@pytest.mark.asyncio
async def test_commands_need_connection():
    sim = fast_simulator()
    controller = TreadmillController(sim)

    assert not await controller.start()
    assert not await controller.set_speed(3.0)
    controller.send_command(Stop())
    await asyncio.sleep(0.01)
    assert sim.sent_frames == []


@pytest.mark.asyncio
async def test_start_run_and_stop():
    sim = fast_simulator()
    controller = TreadmillController(sim)
    states = []
    controller.add_state_listener(states.append)

    assert await controller.connect()
    assert controller.state == Idling()

    assert await controller.start()
    assert Starting() in states
    assert await controller.wait_until_running(timeout=2.0)

    status = controller.get_status()
    assert status["status"] == "RUNNING"
    assert abs(status["speed"] - 3.0) <= 0.21

    assert await controller.stop()
    await asyncio.sleep(0.1)
    assert any(isinstance(s, Stopping) for s in states)
    assert controller.state == Idling()

    await controller.disconnect()
    assert not controller.is_connected


@pytest.mark.asyncio
async def test_set_speed_range_checked():
    sim = fast_simulator()
    controller = TreadmillController(sim)
    await controller.connect()
    await controller.start()

    assert not await controller.set_speed(0.5)
    assert not await controller.set_speed(6.5)
    assert not await controller.set_speed(float("nan"))
    assert not await controller.set_speed(float("inf"))
    assert await controller.set_speed(4.0)

    sent = [decode_command(frame) for frame in sim.sent_frames]
    assert sent == [Start(), SetSpeed(4.0)]
    assert isinstance(controller.state, Running)
    assert abs(controller.current_speed - 4.0) <= 0.21

    await controller.disconnect()


@pytest.mark.asyncio
async def test_send_command_is_fire_and_forget():
    sim = fast_simulator()
    controller = TreadmillController(sim)
    await controller.connect()

    controller.send_command(Start())
    controller.send_command(SetSpeed(2.5))
    await asyncio.sleep(0.01)

    assert [decode_command(frame) for frame in sim.sent_frames] == [Start(), SetSpeed(2.5)]
    await controller.disconnect()


@pytest.mark.asyncio
async def test_transport_failure_is_logged(caplog):
    controller = TreadmillController(FailingTransport())

    with caplog.at_level(logging.ERROR):
        controller.send_command(Stop())
        await asyncio.sleep(0.01)
        assert not await controller.start()

    assert "Failed to send command" in caplog.text


@pytest.mark.asyncio
async def test_disconnect_callback_and_state_reset():
    sim = fast_simulator()
    controller = TreadmillController(sim)
    disconnected = []
    controller.set_on_disconnect(lambda: disconnected.append(True))

    await controller.connect()
    await controller.disconnect()

    assert disconnected == [True]
    assert controller.state.name == "UNKNOWN"


@pytest.mark.asyncio
async def test_updates_stream_yields_states():
    sim = fast_simulator()
    controller = TreadmillController(sim)
    await controller.connect()

    updates = controller.get_updates()
    first = await asyncio.wait_for(updates.__anext__(), timeout=1.0)
    assert first == Idling()

    sim._emit_frame(build_hibernate_frame())
    second = await asyncio.wait_for(updates.__anext__(), timeout=1.0)
    assert second.name == "HIBERNATED"

    await updates.aclose()
    await controller.disconnect()


@pytest.mark.asyncio
async def test_empty_notification_reads_as_idle():
    sim = fast_simulator()
    controller = TreadmillController(sim)
    states = []
    controller.add_state_listener(states.append)
    await controller.connect()

    sim._emit_frame(build_status_frame(2, 3.0, 1.0))
    assert isinstance(controller.state, Running)

    sim._emit_frame([])
    assert controller.state == Idling()
    assert states[-1] == Idling()
    assert controller.get_status()["status"] == "IDLING"

    await controller.disconnect()


@pytest.mark.asyncio
async def test_listener_errors_do_not_break_decoding():
    sim = fast_simulator()
    controller = TreadmillController(sim, stride_length_m=0.5)

    def broken(state):
        raise RuntimeError("boom")

    controller.add_state_listener(broken)
    await controller.connect()
    sim._emit_frame(build_status_frame(2, 3.0, 1.0))

    assert controller.get_status()["steps"] == 2000
    await controller.disconnect()


@pytest.mark.asyncio
async def test_simulator_rejects_unknown_frames():
    sim = fast_simulator()
    with pytest.raises(TransportError):
        await sim.send(Start().to_bytes())

    await sim.connect()
    with pytest.raises(TransportError):
        await sim.send(b"\x00\x01\x02")
    await sim.disconnect()


@pytest.mark.asyncio
async def test_session_runs_plan_on_simulator():
    sim = fast_simulator()
    session = Session(UserProfile(simulator_mode=True), transport=sim)
    done = asyncio.Event()
    session.executor.set_on_complete(lambda plan: done.set())

    plan = WorkoutPlan(
        name="Quick",
        segments=(FixedSegment(3.0, 12), FixedSegment(4.0, 12)),
    )
    await session.controller.connect()
    assert await session.start_plan(plan, start_timeout=2.0)
    await asyncio.wait_for(done.wait(), timeout=5.0)
    await asyncio.sleep(0.05)

    sent = [decode_command(frame) for frame in sim.sent_frames]
    assert sent[0] == Start()
    assert [c.speed for c in sent if isinstance(c, SetSpeed)] == [3.0, 4.0]
    assert sent[-1] == Stop()
    assert not session.executor.is_executing

    await session.controller.disconnect()


@pytest.mark.asyncio
async def test_resume_after_belt_stop_restores_plan_speed():
    sim = fast_simulator(default_speed=3.0)
    session = Session(UserProfile(simulator_mode=True), transport=sim)
    plan = WorkoutPlan(name="Steady", segments=(FixedSegment(5.0, 600),))

    await session.controller.connect()
    assert await session.start_plan(plan, start_timeout=2.0)
    await asyncio.sleep(0.1)
    assert abs(session.controller.current_speed - 5.0) <= 0.21

    assert await session.controller.stop()
    await asyncio.sleep(0.1)
    assert session.executor.is_paused

    assert await session.resume_plan(start_timeout=2.0)
    await asyncio.sleep(0.3)

    assert not session.executor.is_paused
    assert isinstance(session.controller.state, Running)
    assert abs(session.controller.current_speed - 5.0) <= 0.21
    speeds = [c.speed for c in map(decode_command, sim.sent_frames) if isinstance(c, SetSpeed)]
    assert speeds == [5.0, 5.0]

    session.executor.stop_execution()
    await session.controller.stop()
    await session.controller.disconnect()
