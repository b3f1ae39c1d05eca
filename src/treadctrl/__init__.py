"""
TreadCtrl - Treadmill Workout Control Library

Drives a BLE walking treadmill over its proprietary byte protocol and runs
multi-segment workout plans against it.
"""

from .core import __description__, __version__
from .controller import TreadmillController
from .executor import PlanExecutor
from .plan import GlobalPlanSettings, PauseBehavior, WorkoutPlan, validate_plan
from .protocol import SetSpeed, Start, Stop, parse_frame
from .segments import FixedSegment, IntervalSegment, IntervalStep, RampSegment, RepeatCount
from .session import SessionStats, WorkoutSession

__all__ = [
    "__description__",
    "__version__",
    "FixedSegment",
    "GlobalPlanSettings",
    "IntervalSegment",
    "IntervalStep",
    "PauseBehavior",
    "PlanExecutor",
    "RampSegment",
    "RepeatCount",
    "SessionStats",
    "SetSpeed",
    "Start",
    "Stop",
    "TreadmillController",
    "WorkoutPlan",
    "WorkoutSession",
    "parse_frame",
    "validate_plan",
]
