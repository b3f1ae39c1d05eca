"""Built-in walking plans for the 1.0-6.0 km/h walking pad."""

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .plan import GlobalPlanSettings, PauseBehavior, WorkoutPlan
from .segments import (
    FixedSegment,
    IntervalSegment,
    IntervalStep,
    RampSegment,
    RampType,
    RepeatCount,
    TransitionType,
)


@dataclass(frozen=True)
class PlanTemplate:
    key: str
    name: str
    category: str
    build: Callable[[], WorkoutPlan]


def _easy_walk() -> WorkoutPlan:
    return WorkoutPlan(
        name="Easy Walk 20",
        description="Gentle warmup, steady walk, cooldown",
        tags=("easy", "steady"),
        segments=(
            RampSegment(1.5, 3.0, 180, RampType.SMOOTH_STEP, name="Warmup"),
            FixedSegment(3.5, 840, name="Steady Walk"),
            RampSegment(3.0, 1.5, 180, RampType.SMOOTH_STEP, name="Cooldown"),
        ),
    )


def _brisk_intervals() -> WorkoutPlan:
    return WorkoutPlan(
        name="Brisk Intervals",
        description="Six rounds of two minutes brisk, one minute easy",
        tags=("intervals",),
        segments=(
            RampSegment(2.0, 3.5, 300, RampType.LINEAR, name="Warmup"),
            IntervalSegment(
                pattern=(
                    IntervalStep(5.5, 120, TransitionType.GRADUAL, name="Brisk"),
                    IntervalStep(3.0, 60, name="Easy"),
                ),
                repeat_count=RepeatCount.count(6),
                name="Brisk/Easy x6",
            ),
            RampSegment(3.5, 1.5, 240, RampType.EASE_IN_OUT, name="Cooldown"),
        ),
    )


def _pyramid() -> WorkoutPlan:
    return WorkoutPlan(
        name="Speed Pyramid 30",
        description="Climb to top speed in steps and back down",
        tags=("pyramid",),
        segments=(
            FixedSegment(2.5, 180, name="Warmup"),
            FixedSegment(3.5, 240, TransitionType.GRADUAL, name="Step 1"),
            FixedSegment(4.5, 240, TransitionType.GRADUAL, name="Step 2"),
            FixedSegment(5.5, 240, TransitionType.GRADUAL, name="Peak"),
            FixedSegment(4.5, 240, TransitionType.GRADUAL, name="Step 2"),
            FixedSegment(3.5, 240, TransitionType.GRADUAL, name="Step 1"),
            RampSegment(3.0, 1.5, 420, RampType.LOGARITHMIC, name="Cooldown"),
        ),
    )


def _desk_walk() -> WorkoutPlan:
    return WorkoutPlan(
        name="Desk Walk 60",
        description="Hour-long easy pace for walking while working",
        tags=("desk", "long"),
        global_settings=GlobalPlanSettings(
            auto_stop_on_completion=False,
            cooldown_speed=2.0,
            pause_behavior=PauseBehavior.CONTINUE_TIMER,
        ),
        segments=(
            RampSegment(1.5, 2.5, 300, RampType.LINEAR, name="Settle In"),
            FixedSegment(2.8, 3000, name="Work Pace"),
            RampSegment(2.8, 2.0, 300, RampType.LINEAR, name="Wind Down"),
        ),
    )


def _fat_burn() -> WorkoutPlan:
    return WorkoutPlan(
        name="Fat Burn 45",
        description="Sustained moderate pace bracketed by long ramps",
        tags=("endurance",),
        global_settings=GlobalPlanSettings(max_duration=2700),
        segments=(
            RampSegment(2.0, 4.5, 600, RampType.EXPONENTIAL, name="Build"),
            FixedSegment(4.5, 1500, name="Fat Burn Zone"),
            RampSegment(4.5, 2.0, 600, RampType.LOGARITHMIC, name="Ease Off"),
        ),
    )


def _tabata_walk() -> WorkoutPlan:
    return WorkoutPlan(
        name="Walking Tabata",
        description="Eight 20/10 rounds at top speed, rest between sets",
        tags=("intervals", "hard"),
        segments=(
            FixedSegment(3.0, 300, name="Warmup"),
            IntervalSegment(
                pattern=(
                    IntervalStep(6.0, 20, name="Push"),
                    IntervalStep(2.0, 10, name="Recover"),
                ),
                repeat_count=RepeatCount.count(8),
                rest_between_sets=None,
                name="Tabata 20/10",
            ),
            FixedSegment(2.5, 300, name="Cooldown"),
        ),
    )


def _free_walk() -> WorkoutPlan:
    return WorkoutPlan(
        name="Open-Ended Shuffle",
        description="Alternating pace with no fixed end; stop when done",
        tags=("open",),
        segments=(
            IntervalSegment(
                pattern=(
                    IntervalStep(3.0, 300, name="Cruise"),
                    IntervalStep(4.0, 120, TransitionType.GRADUAL, name="Lift"),
                ),
                repeat_count=RepeatCount.indefinite(),
                name="Cruise/Lift",
            ),
        ),
    )


TEMPLATES: Tuple[PlanTemplate, ...] = (
    PlanTemplate("easy_20", "Easy Walk 20", "Easy", _easy_walk),
    PlanTemplate("brisk_intervals", "Brisk Intervals", "Intervals", _brisk_intervals),
    PlanTemplate("pyramid_30", "Speed Pyramid 30", "Intervals", _pyramid),
    PlanTemplate("desk_60", "Desk Walk 60", "Endurance", _desk_walk),
    PlanTemplate("fat_burn_45", "Fat Burn 45", "Endurance", _fat_burn),
    PlanTemplate("tabata", "Walking Tabata", "Intervals", _tabata_walk),
    PlanTemplate("open", "Open-Ended Shuffle", "Open", _free_walk),
)


def list_templates() -> Tuple[PlanTemplate, ...]:
    return TEMPLATES


def plan_keys() -> Tuple[str, ...]:
    return tuple(template.key for template in TEMPLATES)


def get_plan(key: str) -> Optional[WorkoutPlan]:
    """Build a fresh plan from a built-in template.

    Args:
        key: Template key (e.g. ``easy_20``)

    Returns:
        New plan instance, or None for an unknown key
    """
    template = next((item for item in TEMPLATES if item.key == key), None)
    if template is None:
        return None
    return template.build()
