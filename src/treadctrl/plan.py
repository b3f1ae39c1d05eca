"""Workout plan model and plan-level validation."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple
from uuid import uuid4

from .core import SPEED_MAX, SPEED_MIN, is_valid_speed
from .segments import WorkoutSegment


class PauseBehavior(str, Enum):
    HOLD_POSITION = "holdPosition"
    CONTINUE_TIMER = "continueTimer"
    RESET_SEGMENT = "resetSegment"

    @property
    def display_name(self) -> str:
        return {
            PauseBehavior.HOLD_POSITION: "Hold Position",
            PauseBehavior.CONTINUE_TIMER: "Continue Timer",
            PauseBehavior.RESET_SEGMENT: "Reset Segment",
        }[self]


@dataclass(frozen=True)
class GlobalPlanSettings:
    max_duration: Optional[float] = None
    auto_stop_on_completion: bool = True
    allow_manual_override: bool = True
    pause_behavior: PauseBehavior = PauseBehavior.HOLD_POSITION
    warmup_speed: Optional[float] = None
    cooldown_speed: Optional[float] = None
    emergency_stop_enabled: bool = True

    def validate(self) -> List[str]:
        errors: List[str] = []
        if self.max_duration is not None and self.max_duration <= 0:
            errors.append("Maximum duration must be positive")
        for label, speed in (
            ("Warmup", self.warmup_speed),
            ("Cooldown", self.cooldown_speed),
        ):
            if speed is not None and not is_valid_speed(speed):
                errors.append(
                    f"{label} speed {speed} km/h is outside valid range "
                    f"({SPEED_MIN}-{SPEED_MAX} km/h)"
                )
        return errors


@dataclass(frozen=True)
class WorkoutPlan:
    name: str
    segments: Tuple[WorkoutSegment, ...] = ()
    global_settings: GlobalPlanSettings = field(default_factory=GlobalPlanSettings)
    description: Optional[str] = None
    tags: Tuple[str, ...] = ()
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def estimated_duration(self) -> Optional[float]:
        """Total seconds, or None when any segment is unbounded."""
        total = 0.0
        for segment in self.segments:
            duration = segment.estimated_duration()
            if duration is None:
                return None
            total += duration
        return total

    @property
    def speed_range(self) -> Tuple[float, float]:
        speeds = [speed for segment in self.segments for speed in segment.speed_range()]
        if not speeds:
            return SPEED_MIN, SPEED_MAX
        return min(speeds), max(speeds)

    @property
    def estimated_distance_km(self) -> Optional[float]:
        duration = self.estimated_duration
        if duration is None:
            return None
        low, high = self.speed_range
        average_speed = low + (high - low) / 2
        return average_speed * (duration / 3600)

    def segment_name(self, index: int) -> str:
        segment = self.segments[index]
        return segment.name or f"Segment {index + 1}"


def validate_plan(plan: WorkoutPlan) -> List[str]:
    """Collect every diagnostic for a plan; an empty list means it can run."""
    errors: List[str] = []
    if not plan.segments:
        errors.append("Plan has no segments")
    for segment in plan.segments:
        errors.extend(segment.validate())
    errors.extend(plan.global_settings.validate())
    return errors
