"""Plan aggregates, validation and the built-in library."""

import pytest

from treadctrl.library import get_plan, list_templates, plan_keys
from treadctrl.plan import GlobalPlanSettings, PauseBehavior, WorkoutPlan, validate_plan
from treadctrl.segments import (
    FixedSegment,
    IntervalSegment,
    IntervalStep,
    RampSegment,
    RepeatCount,
)


def test_estimated_duration_sums_segments():
    plan = WorkoutPlan(
        name="Sum",
        segments=(FixedSegment(2.0, 30), RampSegment(2.0, 4.0, 60), FixedSegment(4.0, 30)),
    )
    assert plan.estimated_duration == 120


def test_estimated_duration_unbounded():
    plan = WorkoutPlan(
        name="Open",
        segments=(
            FixedSegment(2.0, 30),
            IntervalSegment((IntervalStep(3.0, 30),), RepeatCount.indefinite()),
        ),
    )
    assert plan.estimated_duration is None
    assert plan.estimated_distance_km is None


def test_speed_range():
    assert WorkoutPlan(name="Empty").speed_range == (1.0, 6.0)
    plan = WorkoutPlan(
        name="Range",
        segments=(FixedSegment(2.5, 60), RampSegment(5.5, 3.0, 60)),
    )
    assert plan.speed_range == (2.5, 5.5)


def test_estimated_distance_uses_mid_range_speed():
    plan = WorkoutPlan(name="Distance", segments=(FixedSegment(2.0, 1800), FixedSegment(4.0, 1800)))
    assert plan.estimated_distance_km == pytest.approx(3.0)


def test_segment_name_falls_back_to_position():
    plan = WorkoutPlan(name="Names", segments=(FixedSegment(3.0, 60, name="Warmup"), FixedSegment(3.0, 60)))
    assert plan.segment_name(0) == "Warmup"
    assert plan.segment_name(1) == "Segment 2"


def test_validate_plan():
    assert validate_plan(WorkoutPlan(name="Empty")) == ["Plan has no segments"]

    plan = WorkoutPlan(
        name="Bad",
        segments=(FixedSegment(8.0, 60),),
        global_settings=GlobalPlanSettings(max_duration=0, cooldown_speed=0.2),
    )
    errors = validate_plan(plan)
    assert len(errors) == 3
    assert "Maximum duration must be positive" in errors


def test_default_settings():
    settings = GlobalPlanSettings()
    assert settings.auto_stop_on_completion
    assert settings.allow_manual_override
    assert settings.emergency_stop_enabled
    assert settings.pause_behavior is PauseBehavior.HOLD_POSITION
    assert settings.validate() == []


@pytest.mark.parametrize("key", plan_keys())
def test_library_plans_are_valid(key):
    plan = get_plan(key)
    assert plan is not None
    assert validate_plan(plan) == []


def test_library_builds_fresh_plans():
    assert len(list_templates()) == len(set(plan_keys()))
    assert get_plan("easy_20").id != get_plan("easy_20").id
    assert get_plan("no_such_plan") is None
