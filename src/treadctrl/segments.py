"""
Workout segment variants.

A segment is a pure function of elapsed time: ``execute`` maps seconds since
the segment started to a ``SegmentExecution`` describing the speed to command,
progress and time to the next transition. The variant set is closed:
``FixedSegment``, ``IntervalSegment`` and ``RampSegment``.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union
from uuid import uuid4

from .core import SPEED_MAX, SPEED_MIN, is_valid_speed
from .protocol import DeviceState


def _new_id() -> str:
    return str(uuid4())


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, value))


class SegmentType(str, Enum):
    FIXED = "fixed"
    INTERVAL = "interval"
    RAMP = "ramp"

    @property
    def display_name(self) -> str:
        return {
            SegmentType.FIXED: "Fixed Speed",
            SegmentType.INTERVAL: "Interval",
            SegmentType.RAMP: "Speed Ramp",
        }[self]


class TransitionType(str, Enum):
    IMMEDIATE = "immediate"
    GRADUAL = "gradual"
    USER_PACED = "userPaced"

    @property
    def display_name(self) -> str:
        return {
            TransitionType.IMMEDIATE: "Immediate",
            TransitionType.GRADUAL: "Gradual",
            TransitionType.USER_PACED: "User Paced",
        }[self]

    @property
    def transition_duration(self) -> float:
        """Seconds the speed change is spread over (user-paced waits on the engine)."""
        return 5.0 if self is TransitionType.GRADUAL else 0.0


class RampType(str, Enum):
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    LOGARITHMIC = "logarithmic"
    SMOOTH_STEP = "smoothStep"
    EASE_IN_OUT = "easeInOut"

    @property
    def display_name(self) -> str:
        return {
            RampType.LINEAR: "Linear",
            RampType.EXPONENTIAL: "Exponential (Slow → Fast)",
            RampType.LOGARITHMIC: "Logarithmic (Fast → Slow)",
            RampType.SMOOTH_STEP: "Smooth Step",
            RampType.EASE_IN_OUT: "Ease In-Out",
        }[self]

    @property
    def description(self) -> str:
        return {
            RampType.LINEAR: "Constant rate of speed change",
            RampType.EXPONENTIAL: "Gradual acceleration, then rapid",
            RampType.LOGARITHMIC: "Rapid change, then gradual",
            RampType.SMOOTH_STEP: "Very smooth S-curve transition",
            RampType.EASE_IN_OUT: "Slow start and end, fast middle",
        }[self]

    def factor(self, progress: float) -> float:
        """Map ramp progress in [0, 1] to the fraction of the speed change applied."""
        p = _clamp_unit(progress)
        if self is RampType.EXPONENTIAL:
            return p * p
        if self is RampType.LOGARITHMIC:
            return math.log(1 + p * (math.e - 1)) if p > 0 else 0.0
        if self is RampType.SMOOTH_STEP:
            return p * p * (3.0 - 2.0 * p)
        if self is RampType.EASE_IN_OUT:
            if p < 0.5:
                return 2.0 * p * p
            return 1.0 - ((-2.0 * p + 2.0) ** 2) / 2.0
        return p


@dataclass(frozen=True)
class ExecutionContext:
    """Engine-side facts available to a segment while it is evaluated.

    Times are seconds on the engine clock; elapsed values are already scaled
    by the engine's acceleration factor.
    """

    plan_start_time: float = 0.0
    current_time: float = 0.0
    elapsed_time: float = 0.0
    total_pause_time: float = 0.0
    current_segment_index: int = 0
    device_state: Optional[DeviceState] = None


@dataclass(frozen=True)
class SegmentExecution:
    """Result of evaluating a segment at one instant."""

    target_speed: float
    current_speed: float
    progress: float
    is_complete: bool
    display_text: str
    next_transition: Optional[float] = None
    metadata: Dict[str, str] = field(default_factory=dict)


def _format_remaining(seconds: float) -> str:
    minutes = int(seconds) // 60
    secs = int(seconds) % 60
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


# ========== Fixed ==========


@dataclass(frozen=True)
class FixedSegment:
    """Constant speed for a fixed duration."""

    speed: float
    duration: float
    transition_type: TransitionType = TransitionType.IMMEDIATE
    name: Optional[str] = None
    id: str = field(default_factory=_new_id)

    type = SegmentType.FIXED

    def execute(
        self, elapsed: float, context: Optional[ExecutionContext] = None
    ) -> SegmentExecution:
        progress = _clamp_unit(elapsed / self.duration) if self.duration > 0 else 1.0
        is_complete = elapsed >= self.duration
        remaining = max(0.0, self.duration - elapsed)

        if is_complete:
            text = f"Completed: {self.speed:.1f} km/h"
        elif remaining < 60:
            text = f"Fixed {self.speed:.1f} km/h ({int(remaining)}s left)"
        else:
            text = f"Fixed {self.speed:.1f} km/h ({int(remaining) // 60}m left)"

        # The belt ramps physically, so current speed is the target
        return SegmentExecution(
            target_speed=self.speed,
            current_speed=self.speed,
            progress=progress,
            is_complete=is_complete,
            next_transition=None if is_complete else remaining,
            display_text=text,
            metadata={
                "type": self.type.value,
                "targetSpeed": f"{self.speed}",
                "duration": f"{self.duration}",
                "remaining": f"{remaining}",
                "transitionType": self.transition_type.value,
            },
        )

    def estimated_duration(self) -> Optional[float]:
        return self.duration

    def speed_range(self) -> List[float]:
        return [self.speed]

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not is_valid_speed(self.speed):
            errors.append(
                f"Speed {self.speed} km/h is outside the valid range "
                f"({SPEED_MIN}-{SPEED_MAX} km/h)"
            )
        if self.duration < 10:
            errors.append(f"Duration {int(self.duration)} seconds is too short")
        if self.duration > 3600:
            errors.append(f"Duration {int(self.duration / 60)} minutes is very long")
        return errors


# ========== Ramp ==========


@dataclass(frozen=True)
class RampSegment:
    """Speed moves from ``start_speed`` to ``end_speed`` along a ramp curve."""

    start_speed: float
    end_speed: float
    duration: float
    ramp_type: RampType = RampType.LINEAR
    name: Optional[str] = None
    id: str = field(default_factory=_new_id)

    type = SegmentType.RAMP

    @property
    def direction(self) -> str:
        return "increasing" if self.end_speed > self.start_speed else "decreasing"

    def speed_at(self, progress: float) -> float:
        return self.start_speed + (self.end_speed - self.start_speed) * self.ramp_type.factor(
            progress
        )

    def execute(
        self, elapsed: float, context: Optional[ExecutionContext] = None
    ) -> SegmentExecution:
        progress = _clamp_unit(elapsed / self.duration) if self.duration > 0 else 1.0
        speed = self.speed_at(progress)
        is_complete = elapsed >= self.duration
        remaining = max(0.0, self.duration - elapsed)

        arrow = "↗" if self.end_speed > self.start_speed else "↘"
        left = _format_remaining(self.duration * (1.0 - progress))
        text = f"{arrow} {speed:.1f} km/h ({int(progress * 100)}%) - {left}"

        return SegmentExecution(
            target_speed=speed,
            current_speed=speed,
            progress=progress,
            is_complete=is_complete,
            next_transition=None if is_complete else remaining,
            display_text=text,
            metadata={
                "type": self.type.value,
                "startSpeed": f"{self.start_speed:.1f}",
                "endSpeed": f"{self.end_speed:.1f}",
                "currentSpeed": f"{speed:.1f}",
                "rampType": self.ramp_type.value,
                "progress": f"{progress * 100:.1f}",
                "remaining": str(int(remaining)),
                "direction": self.direction,
            },
        )

    def estimated_duration(self) -> Optional[float]:
        return self.duration

    def speed_range(self) -> List[float]:
        return [min(self.start_speed, self.end_speed), max(self.start_speed, self.end_speed)]

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not is_valid_speed(self.start_speed):
            errors.append(
                f"Start speed {self.start_speed} km/h is outside valid range "
                f"({SPEED_MIN}-{SPEED_MAX} km/h)"
            )
        if not is_valid_speed(self.end_speed):
            errors.append(
                f"End speed {self.end_speed} km/h is outside valid range "
                f"({SPEED_MIN}-{SPEED_MAX} km/h)"
            )
        if self.duration < 30:
            errors.append(
                f"Ramp duration {int(self.duration)} seconds is too short "
                "for smooth transition"
            )
        if self.duration > 1800:
            errors.append(f"Ramp duration {int(self.duration / 60)} minutes is very long")
        return errors


# ========== Interval ==========


@dataclass(frozen=True)
class IntervalStep:
    speed: float
    duration: float
    transition_type: TransitionType = TransitionType.IMMEDIATE
    name: Optional[str] = None


@dataclass(frozen=True)
class RepeatCount:
    """How an interval pattern repeats: ``count``, ``duration`` or ``indefinite``."""

    kind: str
    value: Optional[float] = None

    @classmethod
    def count(cls, n: int) -> "RepeatCount":
        return cls("count", n)

    @classmethod
    def duration(cls, total_seconds: float) -> "RepeatCount":
        return cls("duration", total_seconds)

    @classmethod
    def indefinite(cls) -> "RepeatCount":
        return cls("indefinite")

    def __post_init__(self) -> None:
        if self.kind not in ("count", "duration", "indefinite"):
            raise ValueError(f"Unknown repeat count type: {self.kind}")
        if self.kind != "indefinite" and self.value is None:
            raise ValueError(f"Repeat count '{self.kind}' requires a value")


@dataclass(frozen=True)
class CycleInfo:
    current_cycle: int
    total_cycles: Optional[int]
    step_index: int
    step_progress: float
    overall_progress: float
    is_complete: bool
    time_to_next_transition: Optional[float]
    is_in_rest: bool


@dataclass(frozen=True)
class IntervalSegment:
    """A pattern of steps repeated under a ``RepeatCount`` policy."""

    pattern: Tuple[IntervalStep, ...]
    repeat_count: RepeatCount
    rest_between_sets: Optional[float] = None
    name: Optional[str] = None
    id: str = field(default_factory=_new_id)

    type = SegmentType.INTERVAL

    @property
    def cycle_time(self) -> float:
        return sum(step.duration for step in self.pattern)

    @property
    def rest_time(self) -> float:
        return self.rest_between_sets or 0.0

    def execute(
        self, elapsed: float, context: Optional[ExecutionContext] = None
    ) -> SegmentExecution:
        if not self.pattern or self.cycle_time <= 0:
            return SegmentExecution(
                target_speed=0.0,
                current_speed=0.0,
                progress=1.0,
                is_complete=True,
                display_text="Empty interval",
                metadata={"type": self.type.value},
            )

        info = self.cycle_at(elapsed)
        total_cycles = str(info.total_cycles) if info.total_cycles else "∞"

        if info.is_in_rest:
            return SegmentExecution(
                target_speed=0.0,
                current_speed=0.0,
                progress=info.overall_progress,
                is_complete=info.is_complete,
                next_transition=info.time_to_next_transition,
                display_text=self._display_text(info),
                metadata={
                    "type": self.type.value,
                    "currentCycle": str(info.current_cycle + 1),
                    "totalCycles": total_cycles,
                    "phase": "rest",
                    "remaining": str(int(info.time_to_next_transition or 0)),
                },
            )

        step = self.pattern[info.step_index]
        if step.transition_type is TransitionType.GRADUAL and info.step_progress < 0.1:
            # Ramp up from standstill over the first 10% of the step
            current_speed = step.speed * (info.step_progress / 0.1)
        else:
            current_speed = step.speed

        return SegmentExecution(
            target_speed=step.speed,
            current_speed=current_speed,
            progress=info.overall_progress,
            is_complete=info.is_complete,
            next_transition=info.time_to_next_transition,
            display_text=self._display_text(info),
            metadata={
                "type": self.type.value,
                "currentCycle": str(info.current_cycle + 1),
                "totalCycles": total_cycles,
                "currentStep": step.name or f"Step {info.step_index + 1}",
                "stepProgress": f"{info.step_progress * 100:.1f}",
                "targetSpeed": str(step.speed),
                "stepRemaining": str(int(info.time_to_next_transition or 0)),
            },
        )

    def cycle_at(self, elapsed: float) -> CycleInfo:
        """Resolve cycle, step and rest phase at ``elapsed`` seconds."""
        cycle_time = self.cycle_time
        rest_time = self.rest_time
        total_cycle_time = cycle_time + rest_time

        if self.repeat_count.kind == "count":
            total_cycles = max(1, int(self.repeat_count.value or 1))
            current_cycle = min(int(elapsed // total_cycle_time), total_cycles - 1)
            in_cycle = elapsed - current_cycle * total_cycle_time
            last_cycle = current_cycle >= total_cycles - 1

            # No rest after the final set
            if in_cycle >= cycle_time and rest_time > 0 and not last_cycle:
                rest_progress = (in_cycle - cycle_time) / rest_time
                return CycleInfo(
                    current_cycle=current_cycle,
                    total_cycles=total_cycles,
                    step_index=0,
                    step_progress=0.0,
                    overall_progress=_clamp_unit(
                        (current_cycle + rest_progress) / total_cycles
                    ),
                    is_complete=False,
                    time_to_next_transition=rest_time - (in_cycle - cycle_time),
                    is_in_rest=True,
                )

            located = self._locate_step(in_cycle)
            if located is None:
                return CycleInfo(
                    current_cycle=current_cycle,
                    total_cycles=total_cycles,
                    step_index=len(self.pattern) - 1,
                    step_progress=1.0,
                    overall_progress=1.0,
                    is_complete=True,
                    time_to_next_transition=None,
                    is_in_rest=False,
                )
            index, step_progress, step_remaining = located
            return CycleInfo(
                current_cycle=current_cycle,
                total_cycles=total_cycles,
                step_index=index,
                step_progress=step_progress,
                overall_progress=(current_cycle + in_cycle / cycle_time) / total_cycles,
                is_complete=False,
                time_to_next_transition=step_remaining,
                is_in_rest=False,
            )

        in_cycle = elapsed % total_cycle_time
        current_cycle = int(elapsed // total_cycle_time)

        cycles: Optional[int] = None
        is_complete = False
        overall = 0.0
        if self.repeat_count.kind == "duration":
            total = float(self.repeat_count.value or 0.0)
            overall = _clamp_unit(elapsed / total) if total > 0 else 1.0
            cycles = int(total // total_cycle_time) + 1
            is_complete = elapsed >= total

        located = self._locate_step(in_cycle)
        if located is None:
            return CycleInfo(
                current_cycle=current_cycle,
                total_cycles=cycles,
                step_index=0,
                step_progress=0.0,
                overall_progress=overall,
                is_complete=is_complete,
                time_to_next_transition=rest_time - (in_cycle - cycle_time),
                is_in_rest=True,
            )
        index, step_progress, step_remaining = located
        return CycleInfo(
            current_cycle=current_cycle,
            total_cycles=cycles,
            step_index=index,
            step_progress=step_progress,
            overall_progress=overall,
            is_complete=is_complete,
            time_to_next_transition=step_remaining,
            is_in_rest=False,
        )

    def _locate_step(self, in_cycle: float) -> Optional[Tuple[int, float, float]]:
        step_start = 0.0
        for index, step in enumerate(self.pattern):
            if in_cycle < step_start + step.duration:
                offset = in_cycle - step_start
                return index, offset / step.duration, step.duration - offset
            step_start += step.duration
        return None

    def _display_text(self, info: CycleInfo) -> str:
        remaining = int(info.time_to_next_transition or 0)
        if info.is_in_rest:
            return f"Rest - {remaining}s remaining"

        step = self.pattern[info.step_index]
        step_name = step.name or f"Step {info.step_index + 1}"
        text = f"{step_name}: {step.speed:.1f} km/h - {remaining}s"
        if info.total_cycles:
            text += f" (Cycle {info.current_cycle + 1}/{info.total_cycles})"
        return text

    def estimated_duration(self) -> Optional[float]:
        if self.repeat_count.kind == "count":
            n = int(self.repeat_count.value or 0)
            return self.cycle_time * n + self.rest_time * max(n - 1, 0)
        if self.repeat_count.kind == "duration":
            return float(self.repeat_count.value or 0.0)
        return None

    def speed_range(self) -> List[float]:
        return [step.speed for step in self.pattern]

    def validate(self) -> List[str]:
        errors: List[str] = []
        if not self.pattern:
            errors.append("Interval pattern cannot be empty")
        for index, step in enumerate(self.pattern, start=1):
            if not is_valid_speed(step.speed):
                errors.append(f"Step {index} speed {step.speed} km/h is outside valid range")
            if step.duration < 5:
                errors.append(f"Step {index} duration is too short")
        if self.repeat_count.kind == "count" and int(self.repeat_count.value or 0) < 1:
            errors.append("Repeat count must be at least 1")
        if self.repeat_count.kind == "duration" and (self.repeat_count.value or 0) <= 0:
            errors.append("Repeat duration must be positive")
        if self.rest_between_sets is not None and self.rest_between_sets < 0:
            errors.append("Rest between sets cannot be negative")
        return errors


WorkoutSegment = Union[FixedSegment, IntervalSegment, RampSegment]
