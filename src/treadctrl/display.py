"""
Display manager for Rich-based REPL output and live updates.

Renders device status, plan progress and the plan library, and keeps an
optional live view refreshed from device states and executor snapshots.
"""

import logging
from typing import Any, Iterable, List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from .executor import ExecutorStatus
from .library import PlanTemplate
from .plan import WorkoutPlan
from .protocol import DeviceState
from .session import SessionStats

logger = logging.getLogger(__name__)


class DisplayManager:
    """Manages console output with Rich library."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize display manager.

        Args:
            console: Rich Console instance (creates one if None)
        """
        self.console = console or Console()
        self.live_enabled = False
        self._live: Optional[Live] = None
        self._live_data: dict[str, Any] = {}
        self._plan_status: Optional[ExecutorStatus] = None

    def print_banner(self, simulated: bool = False) -> None:
        """Print startup banner."""
        mode = "  [yellow](simulator)[/yellow]" if simulated else ""
        panel = Panel(
            f"[bold cyan]TreadCtrl - Treadmill Workout Control[/bold cyan]{mode}\n"
            "[dim]Type 'help' for commands, 'quit' to exit[/dim]",
            expand=False,
        )
        self.console.print(panel)

    def print_status(self, data: dict) -> None:
        """Display one-time device status table.

        Args:
            data: Dictionary with status, speed, distance (km) and steps
        """
        self.console.print(self.format_status_table(data))

    def print_result(self, cmd: str, ok: bool) -> None:
        """Display command result.

        Args:
            cmd: Command name
            ok: Whether the command took effect
        """
        if ok:
            self.console.print(f"[green]✓[/green] {cmd} succeeded", highlight=False)
        else:
            self.console.print(f"[red]✗[/red] {cmd} failed", highlight=False)

    def print_error(self, message: str) -> None:
        self.console.print(f"[red]Error:[/red] {message}", highlight=False)

    def print_info(self, message: str) -> None:
        self.console.print(f"[cyan]Info:[/cyan] {message}", highlight=False)

    def print_help(self, commands: list) -> None:
        """Display command reference.

        Args:
            commands: List of Command objects
        """
        table = Table(title="Available Commands", show_header=True)
        table.add_column("Command", style="cyan")
        table.add_column("Aliases", style="magenta")
        table.add_column("Description", style="white")
        table.add_column("Usage", style="yellow")

        for cmd in commands:
            aliases = ", ".join(cmd.aliases) if cmd.aliases else "-"
            table.add_row(cmd.name, aliases, cmd.description, cmd.usage)

        self.console.print(table)
        self.console.print("[dim]Keyboard shortcuts: Ctrl+C to interrupt, Ctrl+D to exit[/dim]")

    # ========== Plans ==========

    def print_plans(self, templates: Iterable[PlanTemplate]) -> None:
        """List built-in plans with their estimated length and speed range."""
        table = Table(title="Workout Plans", show_header=True, header_style="bold cyan")
        table.add_column("Key", style="cyan")
        table.add_column("Name", style="white")
        table.add_column("Category", style="magenta")
        table.add_column("Duration", style="yellow")
        table.add_column("Speed", style="yellow")

        for template in templates:
            plan = template.build()
            low, high = plan.speed_range
            table.add_row(
                template.key,
                plan.name,
                template.category,
                self.format_duration(plan.estimated_duration),
                f"{low:.1f}-{high:.1f} km/h",
            )
        self.console.print(table)

    def print_plan(self, plan: WorkoutPlan) -> None:
        """Show one plan segment by segment."""
        table = Table(title=plan.name, show_header=True, header_style="bold cyan")
        table.add_column("#", style="dim")
        table.add_column("Segment", style="white")
        table.add_column("Type", style="magenta")
        table.add_column("Duration", style="yellow")
        table.add_column("Speed", style="yellow")

        for index, segment in enumerate(plan.segments):
            speeds = segment.speed_range()
            speed_text = (
                f"{min(speeds):.1f}-{max(speeds):.1f} km/h"
                if len(set(speeds)) > 1
                else self.format_speed(speeds[0]) if speeds else "-"
            )
            table.add_row(
                str(index + 1),
                plan.segment_name(index),
                segment.type.display_name,
                self.format_duration(segment.estimated_duration()),
                speed_text,
            )
        self.console.print(table)
        if plan.description:
            self.console.print(f"[dim]{plan.description}[/dim]")
        distance = plan.estimated_distance_km
        if distance is not None:
            self.console.print(f"[dim]Estimated distance: {distance:.2f} km[/dim]")

    def print_validation_errors(self, plan_name: str, errors: List[str]) -> None:
        self.print_error(f"Plan '{plan_name}' is not valid:")
        for error in errors:
            self.console.print(f"  [red]•[/red] {error}", highlight=False)

    def print_plan_status(self, status: ExecutorStatus) -> None:
        self.console.print(self.format_plan_panel(status))

    def format_plan_panel(self, status: ExecutorStatus) -> Panel:
        """Create a panel describing the executing plan.

        Args:
            status: Executor snapshot

        Returns:
            Rich Panel object
        """
        if not status.is_executing:
            return Panel("[dim]No plan running[/dim]", title="Plan", expand=False)

        table = Table(show_header=False, box=None)
        table.add_column("Field", style="cyan")
        table.add_column("Value", style="yellow")

        state = "[yellow]PAUSED[/yellow]" if status.is_paused else "[green]RUNNING[/green]"
        table.add_row("State", state)
        table.add_row(
            "Segment",
            f"{status.current_segment_index + 1}/{status.segment_count}: "
            f"{status.current_segment_name or '-'}",
        )
        table.add_row("Now", status.display_text or "-")
        if status.current_target_speed is not None:
            table.add_row("Target", self.format_speed(status.current_target_speed))
        table.add_row("Segment progress", f"{int(status.segment_progress * 100)}%")
        table.add_row("Overall progress", f"{int(status.overall_progress * 100)}%")
        table.add_row("Elapsed", self.format_time(status.elapsed_time))
        if status.estimated_remaining_time is not None:
            table.add_row("Remaining", self.format_time(status.estimated_remaining_time))

        return Panel(table, title=status.plan_name or "Plan", expand=False)

    # ========== Live ==========

    def start_live(self) -> None:
        """Start live display refresh mode."""
        if self.live_enabled:
            return

        self.live_enabled = True
        self._live_data = {
            "status": "Waiting...",
            "speed": 0.0,
            "distance": 0.0,
            "steps": 0,
        }
        self._live = Live(self._create_live_view(), console=self.console, refresh_per_second=2)
        self._live.start()
        self.console.print("[dim]Live display enabled ['live' to disable][/dim]")

    def stop_live(self) -> None:
        """Stop live display refresh mode."""
        if not self.live_enabled:
            return

        self.live_enabled = False
        if self._live is not None:
            self._live.stop()
            self._live = None

    def toggle_live(self) -> bool:
        """Toggle live display on/off.

        Returns:
            New live display state (True = on, False = off)
        """
        if self.live_enabled:
            self.stop_live()
        else:
            self.start_live()
        return self.live_enabled

    def update_live(self, state: DeviceState, stats: Optional[SessionStats] = None) -> None:
        """Update live display with a freshly decoded device state.

        Args:
            state: Latest device state
            stats: Workout totals, shown in place of the device counters
        """
        telemetry = state.telemetry
        self._live_data["status"] = state.name
        if telemetry is not None:
            self._live_data["speed"] = telemetry.speed
            self._live_data["distance"] = telemetry.distance
            self._live_data["steps"] = telemetry.steps
        if stats is not None:
            self._live_data.update(stats.as_status())
        self._refresh_live()

    def update_plan(self, status: ExecutorStatus) -> None:
        """Update live display with an executor snapshot."""
        self._plan_status = status if status.is_executing else None
        self._refresh_live()

    def _refresh_live(self) -> None:
        if not self.live_enabled or self._live is None:
            return
        try:
            self._live.update(self._create_live_view())
        except Exception as e:
            logger.error(f"Live update error: {e}")

    def _create_live_view(self) -> Any:
        table = self.format_status_table(self._live_data)
        if self._plan_status is None:
            return table
        return Group(table, self.format_plan_panel(self._plan_status))

    def format_status_table(self, data: dict) -> Table:
        """Create Rich Table for device values.

        Args:
            data: Dictionary with status, speed, distance (km) and steps,
                plus time, calories, avg_speed and pace when a workout is tracked

        Returns:
            Rich Table object
        """
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="yellow")

        table.add_row("Status", data.get("status", "UNKNOWN"))
        table.add_row("Speed", self.format_speed(data.get("speed", 0.0)))
        table.add_row("Distance", self.format_distance(data.get("distance", 0.0)))
        if "time" in data:
            table.add_row("Time", self.format_time(data["time"]))
        table.add_row("Steps", f"{data.get('steps', 0):,}")
        if "avg_speed" in data:
            table.add_row("Avg speed", self.format_speed(data["avg_speed"]))
        if "pace" in data:
            table.add_row("Pace", self.format_pace(data["pace"]))
        if "calories" in data:
            table.add_row("Calories", self.format_energy(data["calories"]))

        return table

    def print_summary(self, stats: SessionStats) -> None:
        """Print workout totals after a run."""
        table = Table(title="Workout Summary", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="yellow")

        table.add_row("Active time", self.format_time(stats.active_time))
        table.add_row("Distance", self.format_distance(stats.distance))
        table.add_row("Steps", f"{stats.steps:,}")
        table.add_row("Avg speed", self.format_speed(stats.average_speed))
        table.add_row("Max speed", self.format_speed(stats.max_speed))
        table.add_row("Pace", self.format_pace(stats.average_pace))
        table.add_row("Calories", self.format_energy(stats.calories))
        self.console.print(table)

    # ========== Formatting ==========

    @staticmethod
    def format_time(seconds: float) -> str:
        """Convert seconds to M:SS (or H:MM:SS past an hour).

        Args:
            seconds: Number of seconds

        Returns:
            Formatted time string
        """
        total = int(seconds)
        hours, rest = divmod(total, 3600)
        mins, secs = divmod(rest, 60)
        if hours:
            return f"{hours}:{mins:02d}:{secs:02d}"
        return f"{mins}:{secs:02d}"

    @staticmethod
    def format_duration(seconds: Optional[float]) -> str:
        """Format a plan length, or an infinity mark for open-ended plans."""
        if seconds is None:
            return "∞"
        minutes = int(seconds) // 60
        secs = int(seconds) % 60
        if secs:
            return f"{minutes}m {secs}s"
        return f"{minutes}m"

    @staticmethod
    def format_speed(km_h: float) -> str:
        return f"{km_h:.1f} km/h"

    @staticmethod
    def format_distance(km: float) -> str:
        """Format distance value intelligently.

        Args:
            km: Distance in kilometres

        Returns:
            Formatted distance (km from 1 km, otherwise m)
        """
        if km >= 1.0:
            return f"{km:.2f} km"
        return f"{int(round(km * 1000))} m"

    @staticmethod
    def format_pace(min_per_km: Optional[float]) -> str:
        if min_per_km is None:
            return "-"
        return f"{DisplayManager.format_time(min_per_km * 60)} /km"

    @staticmethod
    def format_energy(kcal: int) -> str:
        return f"{kcal} kcal"
