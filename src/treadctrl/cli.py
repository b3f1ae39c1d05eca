"""
Main REPL application for treadmill workout control.

Interactive command loop with async support, auto-completion, live device
display and workout plan execution.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import FormattedText
from prompt_toolkit.history import InMemoryHistory

from .commands import COMMANDS, CommandCompleter, get_command
from .controller import TreadmillController
from .core import SIMULATOR_ACCELERATION, is_valid_speed
from .display import DisplayManager
from .executor import ExecutorStatus, PlanExecutor
from .library import get_plan, list_templates
from .plan import WorkoutPlan, validate_plan
from .protocol import Running
from .session import WorkoutSession
from .settings import SettingsStore, UserProfile, clear_address_cache
from .simulator import SimulatedTransport
from .transport import BleakTransport, Transport

logger = logging.getLogger(__name__)


def build_transport(profile: UserProfile, simulate: bool) -> Transport:
    if simulate or profile.simulator_mode:
        return SimulatedTransport(default_speed=profile.default_speed)
    return BleakTransport()


class Session:
    """Controller and plan executor wired together for one device."""

    def __init__(
        self,
        profile: Optional[UserProfile] = None,
        simulate: bool = False,
        transport: Optional[Transport] = None,
    ) -> None:
        self.profile = profile or UserProfile()
        self.simulated = simulate or self.profile.simulator_mode
        self.controller = TreadmillController(
            transport or build_transport(self.profile, simulate),
            stride_length_m=self.profile.stride_length_m,
        )
        acceleration = SIMULATOR_ACCELERATION if self.simulated else 1.0
        self.executor = PlanExecutor(self.controller, acceleration_factor=acceleration)
        self.workout = WorkoutSession(weight_kg=self.profile.weight_kg, time_scale=acceleration)
        self.controller.add_state_listener(self.workout.on_device_state)
        self.controller.add_state_listener(self.executor.on_device_state)

    def status(self) -> dict:
        """Device status with the workout totals merged in."""
        status = self.controller.get_status()
        status.update(self.workout.stats().as_status())
        return status

    async def start_plan(self, plan: WorkoutPlan, start_timeout: float = 10.0) -> bool:
        """Start the belt if needed, then execute the plan.

        Args:
            plan: Validated plan
            start_timeout: Seconds to wait for the belt to run

        Returns:
            True if execution started
        """
        if not isinstance(self.controller.state, Running):
            if not await self.controller.start():
                return False
            if not await self.controller.wait_until_running(timeout=start_timeout):
                return False
        if not self.executor.start_execution(plan):
            return False
        self.workout.reset()
        return True

    async def resume_plan(self, start_timeout: float = 10.0) -> bool:
        if not self.executor.is_paused:
            return False
        if not isinstance(self.controller.state, Running):
            if not await self.controller.start():
                return False
            if not await self.controller.wait_until_running(timeout=start_timeout):
                return False
        # A belt restart may already have auto-resumed the plan
        if not self.executor.is_paused:
            return True
        return self.executor.resume_execution()


class TreadCtrlREPL:
    """Interactive REPL for treadmill control and workout plans."""

    def __init__(self, session: Session, store: Optional[SettingsStore] = None) -> None:
        """Initialize REPL around a controller/executor session.

        Args:
            session: Wired controller and executor
            store: Settings store shown by ``info``
        """
        self.session = session
        self.controller = session.controller
        self.executor = session.executor
        self.store = store
        self.display = DisplayManager()
        self.running = False

        self.controller.set_on_disconnect(self._on_device_disconnect)
        self.executor.set_on_update(self._on_plan_update)
        self.executor.set_on_complete(self._on_plan_complete)

        self.prompt: PromptSession = PromptSession(
            completer=CommandCompleter(),
            history=InMemoryHistory(),
            enable_history_search=True,
        )

        self._update_task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        """Run the main REPL loop."""
        self.running = True
        self.display.print_banner(simulated=self.session.simulated)

        self.display.console.print(f"Attempting to connect to {self.controller.device_name}...")
        if await self.controller.connect():
            self.display.console.print("✓ Connected successfully\n")
            self._start_update_loop()
        else:
            self.display.console.print(
                "⚠ Could not connect to device. Use 'connect' command to retry.\n"
            )

        try:
            while self.running:
                try:
                    text = await self.prompt.prompt_async(self._get_prompt())
                    if text.strip():
                        await self._handle_input(text.strip())
                except KeyboardInterrupt:
                    self.display.console.print()
                    continue
        except EOFError:
            await self.cmd_quit([])
        finally:
            self.running = False
            await self._stop_update_loop()

    def _get_prompt(self) -> FormattedText:
        if not self.controller.is_connected:
            return FormattedText([("class:prompt", "[disconnected] > ")])
        plan = ""
        if self.executor.is_executing:
            plan = " paused" if self.executor.is_paused else f" {self.executor.progress_display_text}"
        return FormattedText([("class:prompt", f"[{self.controller.device_name}{plan}] > ")])

    async def _handle_input(self, text: str) -> None:
        """Parse and dispatch command.

        Args:
            text: Raw user input text
        """
        parts = text.split(maxsplit=1)
        cmd_name = parts[0].lower()
        args = parts[1].split() if len(parts) > 1 else []

        cmd = get_command(cmd_name)
        if not cmd:
            self.display.print_error(
                f"Unknown command: {cmd_name}. Type 'help' for available commands."
            )
            return

        handler = getattr(self, cmd.handler, None)
        if handler is None:
            self.display.print_error(f"Handler not found: {cmd.handler}")
            return

        try:
            await handler(args)
        except Exception as e:
            self.display.print_error(f"Command failed: {e}")
            logger.exception("Command exception")

    def _start_update_loop(self) -> None:
        if self._update_task is None or self._update_task.done():
            self._update_task = asyncio.create_task(self._update_loop())

    async def _stop_update_loop(self) -> None:
        task, self._update_task = self._update_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _update_loop(self) -> None:
        """Background task feeding device states to the live display."""
        try:
            async for state in self.controller.get_updates():
                if self.display.live_enabled:
                    self.display.update_live(state, self.session.workout.stats())
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Update loop error: {e}")

    def _on_plan_update(self, status: ExecutorStatus) -> None:
        if self.display.live_enabled:
            self.display.update_plan(status)

    def _on_plan_complete(self, plan: WorkoutPlan) -> None:
        if self.display.live_enabled:
            self.display.update_plan(self.executor.status())
        self.display.print_info(f"Plan '{plan.name}' completed")
        self.display.print_summary(self.session.workout.stats())

    def _on_device_disconnect(self) -> None:
        if self.executor.is_executing:
            self.executor.stop_execution()
            self.display.print_error("Device disconnected; plan stopped")
        if self.display.live_enabled:
            self.display.stop_live()
        self.display.print_info("Device disconnected")

    def _require_connection(self) -> bool:
        if not self.controller.is_connected:
            self.display.print_error("Not connected. Use 'connect' first.")
            return False
        return True

    def _parse_speed(self, args: list, usage: str) -> Optional[float]:
        if not args:
            self.display.print_error(f"Usage: {usage}")
            self.display.print_info(
                f"Range: {self.controller.SPEED_MIN}-{self.controller.SPEED_MAX} km/h"
            )
            return None
        try:
            speed = float(args[0])
        except ValueError:
            self.display.print_error(f"Invalid speed: {args[0]}")
            return None
        if not is_valid_speed(speed):
            self.display.print_error(
                f"Speed out of range. Must be "
                f"{self.controller.SPEED_MIN}-{self.controller.SPEED_MAX} km/h"
            )
            return None
        return speed

    # ========== Command Handlers ==========

    async def cmd_connect(self, args: list) -> None:
        """Connect to treadmill."""
        if self.controller.is_connected:
            self.display.print_info("Already connected")
            return

        self.display.print_info(f"Connecting to {self.controller.device_name}...")
        if not await self.controller.connect():
            self.display.print_error("Device not found. Make sure it's powered on and in range.")
            return

        self.display.print_info(f"Connected to {self.controller.device_name}")
        self._start_update_loop()

    async def cmd_disconnect(self, args: list) -> None:
        if not self.controller.is_connected:
            self.display.print_info("Not connected")
            return

        if self.executor.is_executing:
            self.executor.stop_execution()
        if self.display.live_enabled:
            self.display.stop_live()

        await self.controller.disconnect()
        await self._stop_update_loop()
        self.display.print_info("Disconnected")

    async def cmd_start(self, args: list) -> None:
        """Start the belt."""
        if not self._require_connection():
            return
        self.display.print_result("start", await self.controller.start())

    async def cmd_stop(self, args: list) -> None:
        """Stop the belt. A running plan pauses when the belt stops."""
        if not self._require_connection():
            return
        self.display.print_result("stop", await self.controller.stop())
        if self.executor.is_executing:
            self.display.print_info("Plan will pause; use 'resume' to continue")

    async def cmd_speed(self, args: list) -> None:
        """Set belt speed in km/h."""
        if not self._require_connection():
            return
        speed = self._parse_speed(args, "speed <km/h>")
        if speed is None:
            return
        if self.executor.is_executing:
            self.display.print_info("A plan is running; use 'override' to hold a speed")
            return
        if await self.controller.set_speed(speed):
            self.display.print_info(f"Speed set to {speed:.1f} km/h")
        else:
            self.display.print_result("speed", False)

    async def cmd_status(self, args: list) -> None:
        """Show current device values and plan progress."""
        self.display.print_status(self.session.status())
        if self.executor.is_executing:
            self.display.print_plan_status(self.executor.status())

    async def cmd_live(self, args: list) -> None:
        """Toggle live display mode."""
        if self.display.toggle_live():
            self.display.update_live(self.controller.state, self.session.workout.stats())
            self.display.update_plan(self.executor.status())
        else:
            self.display.print_info("Live display disabled")

    async def cmd_plans(self, args: list) -> None:
        """List built-in plans, or show one in detail."""
        if not args:
            self.display.print_plans(list_templates())
            return
        plan = get_plan(args[0])
        if plan is None:
            self.display.print_error(f"Unknown plan: {args[0]}")
            return
        self.display.print_plan(plan)

    async def cmd_run(self, args: list) -> None:
        """Start the belt and execute a plan."""
        if not self._require_connection():
            return
        if not args:
            self.display.print_error("Usage: run <plan>")
            return
        if self.executor.is_executing:
            self.display.print_error("A plan is already running. Use 'abort' first.")
            return

        plan = get_plan(args[0])
        if plan is None:
            self.display.print_error(f"Unknown plan: {args[0]}. Use 'plans' to list them.")
            return
        errors = validate_plan(plan)
        if errors:
            self.display.print_validation_errors(plan.name, errors)
            return

        self.display.print_info(f"Starting '{plan.name}'...")
        if await self.session.start_plan(plan):
            self.display.print_plan(plan)
        else:
            self.display.print_error("Could not start plan (belt did not start)")

    async def cmd_pause(self, args: list) -> None:
        """Pause the running plan and stop the belt."""
        if not self.executor.pause_execution():
            self.display.print_error("No running plan to pause")
            return
        if self.controller.is_connected:
            await self.controller.stop()
        self.display.print_info("Plan paused")

    async def cmd_resume(self, args: list) -> None:
        """Restart the belt and resume the paused plan."""
        if not self._require_connection():
            return
        if not self.executor.is_paused:
            self.display.print_error("No paused plan to resume")
            return
        self.display.print_result("resume", await self.session.resume_plan())

    async def cmd_skip(self, args: list) -> None:
        if self.executor.skip_current_segment():
            if self.executor.is_executing:
                self.display.print_info(
                    f"Now on {self.executor.current_segment_display_text}"
                )
        else:
            self.display.print_error("No running plan segment to skip")

    async def cmd_abort(self, args: list) -> None:
        """Emergency stop: halt the belt and abandon the plan."""
        if self.executor.emergency_stop():
            self.display.print_info("Plan aborted")
            return
        if self.controller.is_connected:
            self.display.print_result("stop", await self.controller.stop())

    async def cmd_override(self, args: list) -> None:
        """Hold a speed until the current segment ends."""
        if not self.executor.is_executing:
            self.display.print_error("No plan is running. Use 'speed' instead.")
            return
        speed = self._parse_speed(args, "override <km/h>")
        if speed is None:
            return
        self.display.print_result("override", self.executor.override_speed(speed))

    async def cmd_info(self, args: list) -> None:
        """Show device, profile and debug information."""
        console = self.display.console
        profile = self.session.profile

        console.print("[bold cyan]Device[/bold cyan]")
        console.print(f"  Name: {self.controller.device_name}")
        console.print(f"  Connected: {self.controller.is_connected}")
        console.print(f"  State: {self.controller.state.name}")
        console.print(f"  Simulated: {self.session.simulated}")

        console.print()
        console.print("[bold cyan]Speed Settings[/bold cyan]")
        console.print(f"  Range: {self.controller.SPEED_MIN}-{self.controller.SPEED_MAX} km/h")
        console.print(f"  Step: {self.controller.SPEED_STEP} km/h")

        console.print()
        console.print("[bold cyan]Profile[/bold cyan]")
        console.print(f"  Weight: {profile.weight_kg} kg")
        console.print(f"  Stride length: {profile.stride_length_m} m")
        console.print(f"  Default speed: {profile.default_speed} km/h")
        if self.store is not None:
            console.print(f"  Settings file: {self.store.path}")

        console.print()
        console.print("[bold cyan]Debug Information[/bold cyan]")
        console.print(f"  Live enabled: {self.display.live_enabled}")
        console.print(f"  Time acceleration: {self.executor.acceleration_factor:g}x")
        console.print(f"  Plan executing: {self.executor.is_executing}")
        if self.executor.is_executing:
            console.print(f"  Segment: {self.executor.current_segment_display_text}")
            console.print(f"  Remaining: {self.executor.remaining_time_display_text}")

    async def cmd_help(self, args: list) -> None:
        self.display.print_help(COMMANDS)

    async def cmd_quit(self, args: list) -> None:
        """Exit the REPL."""
        if self.display.live_enabled:
            self.display.stop_live()

        if self.executor.is_executing:
            self.executor.stop_execution()

        if self.controller.is_connected:
            self.display.print_info("Disconnecting...")
            await self.controller.disconnect()

        self.display.console.print("[cyan]Goodbye![/cyan]")
        self.running = False


async def run_plan_to_completion(session: Session, plan: WorkoutPlan, display: DisplayManager) -> bool:
    """Execute a plan and wait until it completes or the belt is lost."""
    done = asyncio.Event()
    session.executor.set_on_complete(lambda _plan: done.set())
    session.executor.set_on_update(display.update_plan)

    if not await session.start_plan(plan):
        display.print_error("Could not start plan (belt did not start)")
        return False

    display.print_plan(plan)
    display.start_live()
    session.controller.add_state_listener(
        lambda state: display.update_live(state, session.workout.stats())
    )
    try:
        while not done.is_set():
            if not session.controller.is_connected or not session.executor.is_executing:
                break
            try:
                await asyncio.wait_for(done.wait(), timeout=1.0)
            except asyncio.TimeoutError:
                continue
    finally:
        display.stop_live()
        if session.executor.is_executing:
            session.executor.emergency_stop()
    return done.is_set()


async def run_cli_command(command: str, session: Session, argument: Optional[str] = None) -> int:
    """Run a single CLI command and return the exit code."""
    display = DisplayManager()
    controller = session.controller

    plan: Optional[WorkoutPlan] = None
    if command == "run":
        plan = get_plan(argument or "")
        if plan is None:
            display.print_error(f"Unknown plan: {argument}")
            return 1
        errors = validate_plan(plan)
        if errors:
            display.print_validation_errors(plan.name, errors)
            return 1

    display.print_info("Connecting to device...")
    if not await controller.connect():
        display.print_error("Failed to connect to device")
        return 1

    try:
        if command == "start":
            ok = await controller.start()
            display.print_result("start", ok)

        elif command == "stop":
            ok = await controller.stop()
            display.print_result("stop", ok)

        elif command == "speed":
            ok = await controller.set_speed(float(argument or 0))
            display.print_result("speed", ok)

        elif command == "status":
            # Give the device a moment to report
            await asyncio.sleep(1)
            display.print_status(session.status())
            ok = True

        elif command == "run" and plan is not None:
            ok = await run_plan_to_completion(session, plan, display)
            display.print_result(f"run {argument}", ok)
            display.print_summary(session.workout.stats())

        else:
            display.print_error(f"Unknown command: {command}")
            ok = False

        return 0 if ok else 1
    finally:
        if controller.is_connected:
            await controller.disconnect()


def main() -> None:
    """Entry point for the REPL application."""
    parser = argparse.ArgumentParser(
        description="Treadmill workout control",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  treadctrl                     # Start interactive REPL
  treadctrl --simulate          # REPL against the built-in simulator
  treadctrl --start             # Start the belt (auto-connects)
  treadctrl --speed 3.5         # Set belt speed
  treadctrl --run easy_20       # Run a built-in plan to completion
  treadctrl --status            # Get device status
  treadctrl --stop              # Stop the belt
  treadctrl --clear-cache       # Clear cached device address
        """,
    )

    parser.add_argument("--start", action="store_true", help="Start the belt")
    parser.add_argument("--stop", action="store_true", help="Stop the belt")
    parser.add_argument("--status", action="store_true", help="Show device status")
    parser.add_argument("--speed", type=float, metavar="KMH", help="Set belt speed in km/h")
    parser.add_argument("--run", metavar="PLAN", help="Run a built-in workout plan")
    parser.add_argument("--clear-cache", action="store_true", help="Clear cached device address")
    parser.add_argument("--simulate", action="store_true", help="Use the simulated treadmill")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(message)s",
    )

    if args.clear_cache:
        clear_address_cache()
        print("Cleared cached device address")
        return

    commands = []
    argument: Optional[str] = None
    if args.start:
        commands.append("start")
    if args.stop:
        commands.append("stop")
    if args.status:
        commands.append("status")
    if args.speed is not None:
        commands.append("speed")
        argument = str(args.speed)
    if args.run:
        commands.append("run")
        argument = args.run

    store = SettingsStore()
    session = Session(store.load(), simulate=args.simulate)

    if not commands:
        try:
            asyncio.run(TreadCtrlREPL(session, store).run())
        except KeyboardInterrupt:
            print("\nInterrupted")
            sys.exit(0)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        return

    if len(commands) > 1:
        print("Error: Only one command can be specified at a time", file=sys.stderr)
        sys.exit(1)

    try:
        sys.exit(asyncio.run(run_cli_command(commands[0], session, argument)))
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(1)


if __name__ == "__main__":
    main()
