"""
Command definitions and auto-completion for REPL.

Defines all available commands with metadata and provides a completer
for prompt_toolkit auto-completion.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional

from prompt_toolkit.completion import Completer, Completion
from prompt_toolkit.document import Document

from .core import SPEED_MAX, SPEED_MIN
from .library import plan_keys


@dataclass
class Command:
    """Command definition with metadata."""

    name: str
    aliases: List[str]
    description: str
    usage: str
    handler: str


COMMANDS = [
    Command("connect", ["c"], "Connect to treadmill", "connect", "cmd_connect"),
    Command("disconnect", ["dc"], "Disconnect from device", "disconnect", "cmd_disconnect"),
    Command("start", ["s"], "Start the belt", "start", "cmd_start"),
    Command("stop", ["x"], "Stop the belt", "stop", "cmd_stop"),
    Command("speed", ["sp"], "Set belt speed in km/h", "speed <km/h>", "cmd_speed"),
    Command("status", ["st"], "Show device values and plan progress", "status", "cmd_status"),
    Command("live", ["l"], "Toggle live display mode", "live", "cmd_live"),
    Command("plans", ["ls"], "List built-in workout plans", "plans [key]", "cmd_plans"),
    Command("run", ["go"], "Start the belt and run a workout plan", "run <plan>", "cmd_run"),
    Command("pause", ["p"], "Pause the running plan", "pause", "cmd_pause"),
    Command("resume", ["r"], "Resume the paused plan", "resume", "cmd_resume"),
    Command("skip", ["n"], "Skip to the next plan segment", "skip", "cmd_skip"),
    Command("abort", ["a"], "Emergency stop: halt belt and plan", "abort", "cmd_abort"),
    Command(
        "override",
        ["o"],
        "Hold a speed until the current segment ends",
        "override <km/h>",
        "cmd_override",
    ),
    Command("info", ["i"], "Show device, profile and debug information", "info", "cmd_info"),
    Command("help", ["h", "?"], "Show all available commands", "help", "cmd_help"),
    Command("quit", ["q", "exit"], "Exit the REPL", "quit", "cmd_quit"),
]

SPEED_COMMANDS = ("speed", "sp", "override", "o")
PLAN_COMMANDS = ("run", "go", "plans", "ls")


def get_command(name: str) -> Optional[Command]:
    """Get command by name or alias.

    Args:
        name: Command name or alias

    Returns:
        Command object if found, None otherwise
    """
    for cmd in COMMANDS:
        if cmd.name == name or name in cmd.aliases:
            return cmd
    return None


def suggested_speeds() -> List[str]:
    """Speeds offered for completion, every 0.5 km/h across the belt's range."""
    speeds = []
    tenths = int(SPEED_MIN * 10)
    while tenths <= int(SPEED_MAX * 10):
        speeds.append(f"{tenths / 10:.1f}")
        tenths += 5
    return speeds


class CommandCompleter(Completer):
    """Auto-completion for commands and arguments."""

    def __init__(self, plans: Optional[Iterable[str]] = None) -> None:
        self._command_names = {cmd.name for cmd in COMMANDS}
        self._command_aliases = {alias for cmd in COMMANDS for alias in cmd.aliases}
        self._plans = sorted(plans if plans is not None else plan_keys())

    def get_completions(self, document: Document, complete_event) -> Any:  # type: ignore[no-untyped-def]
        """Get completion suggestions for current input.

        Args:
            document: Current input document
            complete_event: Completion event

        Yields:
            Completion objects for matching commands/arguments
        """
        text = document.text_before_cursor.lstrip()
        parts = text.split()

        if not text:
            return

        # Typing the command itself
        if len(parts) == 1 and not text.endswith(" "):
            partial_cmd = parts[0].lower()
            for name in sorted(self._command_names | self._command_aliases):
                if name.startswith(partial_cmd):
                    yield Completion(
                        name,
                        start_position=-len(partial_cmd),
                        display=f"({name})",
                    )
            return

        first_cmd = parts[0].lower()
        partial = "" if text.endswith(" ") else parts[-1].lower()

        if first_cmd in SPEED_COMMANDS:
            candidates = suggested_speeds()
        elif first_cmd in PLAN_COMMANDS:
            candidates = self._plans
        else:
            return

        for candidate in candidates:
            if candidate.startswith(partial):
                yield Completion(
                    candidate,
                    start_position=-len(partial),
                    display=candidate,
                )
