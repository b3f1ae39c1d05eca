#!/usr/bin/env python
"""Basic functionality test for REPL components without device."""

import pytest
from prompt_toolkit.application import create_app_session
from prompt_toolkit.buffer import Buffer
from prompt_toolkit.document import Document
from prompt_toolkit.input import create_pipe_input
from prompt_toolkit.output import DummyOutput
from rich.console import Console

from treadctrl.cli import Session, TreadCtrlREPL
from treadctrl.commands import COMMANDS, CommandCompleter, get_command, suggested_speeds
from treadctrl.display import DisplayManager
from treadctrl.executor import PlanExecutor
from treadctrl.library import get_plan, list_templates
from treadctrl.protocol import Idling, Running, RunningTelemetry
from treadctrl.session import SessionStats, WorkoutSession
from treadctrl.settings import UserProfile


class NullSink:
    def send_command(self, command) -> None:
        pass


def recording_display() -> DisplayManager:
    return DisplayManager(Console(record=True, width=120))


def test_display():
    """Test display functionality."""
    display = recording_display()

    display.print_banner(simulated=True)
    display.print_status({"status": "RUNNING", "speed": 4.5, "distance": 1.24, "steps": 1771})
    display.print_result("start", True)
    display.print_result("stop", False)
    display.print_info("This is an info message")
    display.print_error("This is an error message")
    display.print_help(COMMANDS)

    text = display.console.export_text()
    assert "TreadCtrl" in text
    assert "4.5 km/h" in text
    assert "1.24 km" in text
    assert "1,771" in text
    assert "start succeeded" in text
    assert "stop failed" in text


def test_format_functions():
    assert DisplayManager.format_time(125) == "2:05"
    assert DisplayManager.format_time(3725) == "1:02:05"
    assert DisplayManager.format_speed(4.5) == "4.5 km/h"
    assert DisplayManager.format_distance(0.45) == "450 m"
    assert DisplayManager.format_distance(2.5) == "2.50 km"
    assert DisplayManager.format_duration(None) == "∞"
    assert DisplayManager.format_duration(1230) == "20m 30s"
    assert DisplayManager.format_duration(1200) == "20m"


def test_plan_display():
    display = recording_display()
    display.print_plans(list_templates())
    display.print_plan(get_plan("brisk_intervals"))
    display.print_validation_errors("Broken", ["Plan has no segments"])

    text = display.console.export_text()
    assert "easy_20" in text
    assert "Brisk/Easy x6" in text
    assert "Plan has no segments" in text


def test_plan_status_panel():
    display = recording_display()
    executor = PlanExecutor(NullSink(), clock=lambda: 0.0)

    display.print_plan_status(executor.status())
    assert "No plan running" in display.console.export_text()


def test_live_mode_toggles():
    display = recording_display()

    assert display.toggle_live()
    display.update_live(Running(RunningTelemetry.create(3.2, 0.8)))
    assert display._live_data["speed"] == 3.2
    display.update_live(Idling())
    assert display._live_data["status"] == "IDLING"
    assert not display.toggle_live()


def test_commands():
    """Test command definitions."""
    for name in ["connect", "c", "speed", "sp", "run", "go", "help", "?"]:
        assert get_command(name) is not None
    assert get_command("nope") is None

    handlers = {cmd.handler for cmd in COMMANDS}
    assert "cmd_run" in handlers and "cmd_override" in handlers


def test_completer():
    completer = CommandCompleter(plans=["easy_20", "tabata"])

    names = [c.display_text for c in completer.get_completions(Document("ru"), None)]
    assert "(run)" in names

    plans = list(completer.get_completions(Document("run ta"), None))
    assert [c.text for c in plans] == ["tabata"]

    speeds = [c.display_text for c in completer.get_completions(Document("speed "), None)]
    assert speeds == suggested_speeds()
    assert speeds[0] == "1.0" and speeds[-1] == "6.0"


def test_completion_replaces_typed_prefix():
    completer = CommandCompleter(plans=["easy_20", "tabata"])

    buffer = Buffer(document=Document("run ta"))
    (completion,) = completer.get_completions(buffer.document, None)
    buffer.apply_completion(completion)
    assert buffer.text == "run tabata"

    buffer = Buffer(document=Document("sp"))
    completion = next(
        c for c in completer.get_completions(buffer.document, None) if c.text == "speed"
    )
    buffer.apply_completion(completion)
    assert buffer.text == "speed"

    buffer = Buffer(document=Document("speed 4."))
    completion = next(c for c in completer.get_completions(buffer.document, None) if c.text == "4.5")
    buffer.apply_completion(completion)
    assert buffer.text == "speed 4.5"


def test_status_table_with_workout_totals():
    display = recording_display()
    stats = SessionStats(
        active_time=1800.0,
        distance=2.0,
        steps=2857,
        calories=105,
        current_speed=4.0,
        max_speed=4.5,
        average_speed=4.0,
        average_pace=15.0,
    )

    display.print_status({"status": "RUNNING", "speed": 4.0, **stats.as_status()})
    display.print_summary(stats)

    text = display.console.export_text()
    assert "30:00" in text
    assert "105 kcal" in text
    assert "15:00 /km" in text
    assert "Workout Summary" in text
    assert "4.5 km/h" in text


def test_live_view_shows_workout_totals():
    display = recording_display()
    display.start_live()
    workout = WorkoutSession()
    workout.on_device_state(Running(RunningTelemetry.create(3.0, 0.4)))
    workout.reset()

    state = Running(RunningTelemetry.create(3.2, 0.5))
    workout.on_device_state(state)
    display.update_live(state, workout.stats())
    assert display._live_data["speed"] == 3.2
    assert display._live_data["distance"] == pytest.approx(0.1)
    assert display._live_data["max_speed"] == 3.2
    display.stop_live()


def test_format_pace():
    assert DisplayManager.format_pace(None) == "-"
    assert DisplayManager.format_pace(12.5) == "12:30 /km"


def test_repl_rejects_non_finite_speed():
    with create_pipe_input() as pipe, create_app_session(input=pipe, output=DummyOutput()):
        repl = TreadCtrlREPL(Session(UserProfile(simulator_mode=True)))
    repl.display = recording_display()

    assert repl._parse_speed(["nan"], "speed <km/h>") is None
    assert repl._parse_speed(["inf"], "speed <km/h>") is None
    assert repl._parse_speed(["-inf"], "speed <km/h>") is None
    assert repl._parse_speed(["4.5"], "speed <km/h>") == 4.5
    assert "Speed out of range" in repl.display.console.export_text()
