"""
Workout plan execution engine.

Drives the segments of a ``WorkoutPlan`` against a clock, dispatching speed
commands through a command sink. A ``Ticker`` re-evaluates the current
segment periodically; all state mutation happens on the ticker's event loop,
the same loop that delivers device frames, so no locking is needed.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from .core import SPEED_HYSTERESIS, TICK_INTERVAL
from .plan import PauseBehavior, WorkoutPlan
from .protocol import Command, DeviceState, Hibernated, Idling, Running, SetSpeed, Stop, Stopping
from .segments import ExecutionContext, SegmentExecution, WorkoutSegment

logger = logging.getLogger(__name__)

# Float slack so that e.g. 1.2 - 1.1 still counts as a 0.1 km/h change
_HYSTERESIS_EPSILON = 1e-9


class CommandSink(Protocol):
    """Anything that accepts outbound commands without blocking."""

    def send_command(self, command: Command) -> None: ...


# ========== Ticker ==========


class Ticker(ABC):
    """Scheduled task that calls back at a fixed period until stopped."""

    @property
    @abstractmethod
    def is_running(self) -> bool: ...

    @abstractmethod
    def start(self, callback: Callable[[], None]) -> None:
        """Start (or restart) periodic callbacks."""

    @abstractmethod
    def stop(self) -> None:
        """Stop callbacks. No callback runs after this returns, even when
        called from inside a callback."""


class AsyncioTicker(Ticker):
    """Ticker backed by a task on the running asyncio loop."""

    def __init__(self, interval: float = TICK_INTERVAL) -> None:
        self.interval = interval
        self._task: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, callback: Callable[[], None]) -> None:
        self.stop()
        self._generation += 1
        self._task = asyncio.create_task(self._run(self._generation, callback))

    def stop(self) -> None:
        # Bumping the generation invalidates the loop before any await
        self._generation += 1
        task, self._task = self._task, None
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()

    async def _run(self, generation: int, callback: Callable[[], None]) -> None:
        try:
            while generation == self._generation:
                await asyncio.sleep(self.interval)
                if generation != self._generation:
                    break
                try:
                    callback()
                except Exception:
                    logger.exception("Tick callback failed")
        except asyncio.CancelledError:
            pass


# ========== Executor ==========


@dataclass(frozen=True)
class ExecutorStatus:
    """Snapshot of the engine published after each evaluation."""

    plan_name: Optional[str]
    is_executing: bool
    is_paused: bool
    current_segment_index: int
    segment_count: int
    current_segment_name: Optional[str]
    segment_progress: float
    overall_progress: float
    elapsed_time: float
    segment_elapsed_time: float
    estimated_remaining_time: Optional[float]
    current_target_speed: Optional[float]
    next_transition: Optional[float]
    display_text: str


UpdateCallback = Callable[[ExecutorStatus], None]
CompleteCallback = Callable[[WorkoutPlan], None]


class PlanExecutor:
    """Executes one workout plan at a time.

    Invalid operations (starting twice, pausing when idle, skipping while
    paused) are logged and ignored; every public operation returns whether it
    took effect.
    """

    def __init__(
        self,
        sink: CommandSink,
        ticker: Optional[Ticker] = None,
        clock: Callable[[], float] = time.monotonic,
        acceleration_factor: float = 1.0,
    ) -> None:
        """Initialize an idle executor.

        Args:
            sink: Receives Start/SetSpeed/Stop commands (fire-and-forget)
            ticker: Periodic scheduler (defaults to an asyncio ticker at 100ms)
            clock: Monotonic time source in seconds
            acceleration_factor: Time compression for simulation (1.0 = real time)
        """
        self._sink = sink
        self._ticker = ticker or AsyncioTicker()
        self._clock = clock
        self.acceleration_factor = acceleration_factor

        self._on_update: Optional[UpdateCallback] = None
        self._on_complete: Optional[CompleteCallback] = None
        self._last_device_state: Optional[DeviceState] = None

        self._reset()

    # ---------- state ----------

    def _reset(self) -> None:
        self.current_plan: Optional[WorkoutPlan] = None
        self.is_executing = False
        self.is_paused = False
        self.current_segment_index = 0
        self.current_segment_name: Optional[str] = None
        self.segment_progress = 0.0
        self.overall_progress = 0.0
        self.elapsed_time = 0.0
        self.segment_elapsed_time = 0.0
        self.estimated_remaining_time: Optional[float] = None
        self.current_target_speed: Optional[float] = None
        self.next_transition: Optional[float] = None
        self.display_text = ""

        self._plan_start_time: Optional[float] = None
        self._segment_start_time: Optional[float] = None
        self._pause_start_time: Optional[float] = None
        self.total_pause_time = 0.0
        self._completed_duration = 0.0
        self._override_speed: Optional[float] = None
        self._auto_paused = False

    def set_on_update(self, callback: UpdateCallback) -> None:
        """Set callback receiving a status snapshot after each evaluation."""
        self._on_update = callback

    def set_on_complete(self, callback: CompleteCallback) -> None:
        """Set callback fired once when a plan runs to completion."""
        self._on_complete = callback

    @property
    def current_segment(self) -> Optional[WorkoutSegment]:
        plan = self.current_plan
        if plan is None or self.current_segment_index >= len(plan.segments):
            return None
        return plan.segments[self.current_segment_index]

    def status(self) -> ExecutorStatus:
        plan = self.current_plan
        return ExecutorStatus(
            plan_name=plan.name if plan else None,
            is_executing=self.is_executing,
            is_paused=self.is_paused,
            current_segment_index=self.current_segment_index,
            segment_count=len(plan.segments) if plan else 0,
            current_segment_name=self.current_segment_name,
            segment_progress=self.segment_progress,
            overall_progress=self.overall_progress,
            elapsed_time=self.elapsed_time,
            segment_elapsed_time=self.segment_elapsed_time,
            estimated_remaining_time=self.estimated_remaining_time,
            current_target_speed=self.current_target_speed,
            next_transition=self.next_transition,
            display_text=self.display_text,
        )

    # ---------- lifecycle ----------

    def start_execution(self, plan: WorkoutPlan) -> bool:
        """Begin executing a plan from its first segment.

        Args:
            plan: Plan to run (borrowed read-only for the run)

        Returns:
            True if execution started
        """
        if self.is_executing:
            logger.warning(f"Cannot start '{plan.name}': a plan is already executing")
            return False
        if not plan.segments:
            logger.warning(f"Cannot start '{plan.name}': plan has no segments")
            return False

        self._reset()
        now = self._clock()
        self.current_plan = plan
        self.is_executing = True
        self._plan_start_time = now
        self.estimated_remaining_time = plan.estimated_duration

        logger.info(f"Starting plan execution: {plan.name}")
        if self.acceleration_factor > 1.0:
            logger.info(f"Simulator mode: {self.acceleration_factor:g}x time acceleration")

        self._start_current_segment()
        self._ticker.start(self.tick)
        return True

    def pause_execution(self) -> bool:
        if not self.is_executing or self.is_paused:
            logger.warning("Cannot pause: no running plan")
            return False

        self.is_paused = True
        self._pause_start_time = self._clock()
        self._ticker.stop()
        logger.info("Plan execution paused")
        self._publish()
        return True

    def resume_execution(self) -> bool:
        if not self.is_executing or not self.is_paused:
            logger.warning("Cannot resume: no paused plan")
            return False

        now = self._clock()
        paused_for = now - (self._pause_start_time or now)
        behavior = self.current_plan.global_settings.pause_behavior  # type: ignore[union-attr]

        if behavior is not PauseBehavior.CONTINUE_TIMER:
            self.total_pause_time += paused_for * self.acceleration_factor

        self.is_paused = False
        self._auto_paused = False
        self._pause_start_time = None
        # A restarted belt runs at its own default speed
        self.current_target_speed = None

        if behavior is PauseBehavior.RESET_SEGMENT:
            self._start_current_segment()
        elif self._segment_start_time is not None:
            # Segment time excludes the pause
            self._segment_start_time += paused_for

        self._ticker.start(self.tick)
        logger.info("Plan execution resumed")
        return True

    def stop_execution(self) -> bool:
        """Tear down the timer and return to idle. Safe to call from a tick."""
        if not self.is_executing:
            logger.warning("Cannot stop: no plan is executing")
            return False

        self._ticker.stop()
        self._reset()
        logger.info("Plan execution stopped")
        return True

    def skip_current_segment(self) -> bool:
        if not self.is_executing or self.is_paused:
            logger.warning("Cannot skip: plan is not running")
            return False
        if self.current_segment is None:
            return False

        logger.info(f"Skipping segment {self.current_segment_index + 1}")
        self._advance_segment()
        return True

    def override_speed(self, speed: float) -> bool:
        """Hold a user-chosen speed until the current segment ends."""
        if not self.is_executing:
            logger.warning("Cannot override speed: no plan is executing")
            return False
        if not self.current_plan.global_settings.allow_manual_override:  # type: ignore[union-attr]
            logger.warning(f"Plan '{self.current_plan.name}' does not allow manual override")  # type: ignore[union-attr]
            return False

        self._override_speed = speed
        logger.info(f"Manual speed override: {speed:.1f} km/h")
        self._update_speed(speed)
        return True

    def emergency_stop(self) -> bool:
        if not self.is_executing:
            return False

        if self.current_plan.global_settings.emergency_stop_enabled:  # type: ignore[union-attr]
            self._sink.send_command(Stop())
        logger.warning("Emergency stop")
        return self.stop_execution()

    def on_device_state(self, state: DeviceState) -> None:
        """Follow belt edges: pause when the belt stops under a running plan,
        resume when it runs again after such a pause."""
        previous, self._last_device_state = self._last_device_state, state
        if not self.is_executing:
            return

        was_running = isinstance(previous, Running)
        if was_running and isinstance(state, (Stopping, Idling, Hibernated)):
            if not self.is_paused:
                logger.info(f"Belt left running state ({state.name}); pausing plan")
                if self.pause_execution():
                    self._auto_paused = True
        elif isinstance(state, Running) and not was_running:
            if self.is_paused and self._auto_paused:
                logger.info("Belt running again; resuming plan")
                self.resume_execution()

    # ---------- evaluation ----------

    def tick(self) -> None:
        """Evaluate the current segment once."""
        if not self.is_executing or self.is_paused:
            return
        plan = self.current_plan
        segment = self.current_segment
        if plan is None or segment is None:
            return
        if self._plan_start_time is None or self._segment_start_time is None:
            return

        now = self._clock()
        self.elapsed_time = (
            now - self._plan_start_time
        ) * self.acceleration_factor - self.total_pause_time
        self.segment_elapsed_time = (now - self._segment_start_time) * self.acceleration_factor

        execution = segment.execute(self.segment_elapsed_time, self._context(now))
        self._apply(execution)

        speed = self._override_speed if self._override_speed is not None else execution.current_speed
        self._update_speed(speed)
        self._update_overall_progress(segment, execution)
        self._publish()

        max_duration = plan.global_settings.max_duration
        if execution.is_complete:
            logger.info(
                f"Completed segment {self.current_segment_index + 1}/{len(plan.segments)}"
            )
            self._advance_segment()
        elif max_duration is not None and self.elapsed_time >= max_duration:
            logger.info(f"Plan reached its maximum duration ({max_duration:.0f}s)")
            self._complete_plan()

    def _context(self, now: float) -> ExecutionContext:
        return ExecutionContext(
            plan_start_time=self._plan_start_time or now,
            current_time=now,
            elapsed_time=self.elapsed_time,
            total_pause_time=self.total_pause_time,
            current_segment_index=self.current_segment_index,
            device_state=self._last_device_state,
        )

    def _apply(self, execution: SegmentExecution) -> None:
        self.segment_progress = execution.progress
        self.next_transition = execution.next_transition
        self.display_text = execution.display_text

    def _start_current_segment(self) -> None:
        plan = self.current_plan
        segment = self.current_segment
        if plan is None or segment is None:
            return

        now = self._clock()
        self._segment_start_time = now
        self._override_speed = None
        self.segment_elapsed_time = 0.0
        self.segment_progress = 0.0
        self.current_segment_name = plan.segment_name(self.current_segment_index)

        execution = segment.execute(0.0, self._context(now))
        self._apply(execution)
        self._update_speed(execution.current_speed)

        logger.info(
            f"Started segment {self.current_segment_index + 1}/{len(plan.segments)}: "
            f"{self.current_segment_name} ({execution.current_speed:.1f} km/h)"
        )

    def _advance_segment(self) -> None:
        segment = self.current_segment
        if segment is not None:
            self._completed_duration += segment.estimated_duration() or 0.0

        self.current_segment_index += 1
        if self.current_plan is None or self.current_segment_index >= len(
            self.current_plan.segments
        ):
            self._complete_plan()
        else:
            self._start_current_segment()

    def _complete_plan(self) -> None:
        plan = self.current_plan
        if plan is None:
            return

        logger.info(f"Plan completed: {plan.name}")
        self.overall_progress = 1.0

        settings = plan.global_settings
        if settings.auto_stop_on_completion:
            self._sink.send_command(Stop())
        elif settings.cooldown_speed is not None:
            self._sink.send_command(SetSpeed(settings.cooldown_speed))

        self.stop_execution()
        if self._on_complete:
            try:
                self._on_complete(plan)
            except Exception as e:
                logger.error(f"Completion callback error: {e}")

    def _update_speed(self, speed: float) -> None:
        last = self.current_target_speed
        if last is not None and abs(speed - last) < SPEED_HYSTERESIS - _HYSTERESIS_EPSILON:
            logger.debug(f"Speed unchanged: target={speed:.2f}, current={last:.2f}")
            return

        self.current_target_speed = speed
        self._sink.send_command(SetSpeed(speed))
        logger.debug(f"Updated speed to {speed:.2f} km/h")

    def _update_overall_progress(
        self, segment: WorkoutSegment, execution: SegmentExecution
    ) -> None:
        plan = self.current_plan
        total = plan.estimated_duration if plan else None
        if not total:
            return

        segment_duration = segment.estimated_duration() or 0.0
        done = self._completed_duration + execution.progress * segment_duration
        self.overall_progress = min(done / total, 1.0)
        self.estimated_remaining_time = max(total - done, 0.0)

    def _publish(self) -> None:
        if self._on_update is None:
            return
        try:
            self._on_update(self.status())
        except Exception as e:
            logger.error(f"Update callback error: {e}")

    # ---------- display ----------

    @property
    def current_segment_display_text(self) -> str:
        plan = self.current_plan
        if plan is None or self.current_segment is None:
            return ""
        number = self.current_segment_index + 1
        name = self.current_segment_name or f"Segment {number}"
        return f"{number}/{len(plan.segments)}: {name}"

    @property
    def progress_display_text(self) -> str:
        return f"{int(self.segment_progress * 100)}%"

    @property
    def remaining_time_display_text(self) -> str:
        remaining = self.estimated_remaining_time
        if remaining is None:
            return ""
        minutes = int(remaining) // 60
        seconds = int(remaining) % 60
        if minutes > 0:
            return f"{minutes}m {seconds}s remaining"
        return f"{seconds}s remaining"
