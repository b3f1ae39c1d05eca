"""
Workout totals accumulated from the device state stream.

The treadmill restarts its distance counter each time the belt stops, so the
totals carry earlier runs forward and add the live counter on top.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .protocol import DeviceState, Running, RunningTelemetry

logger = logging.getLogger(__name__)

# kcal per kg of body weight per km walked
CALORIES_PER_KG_KM = 0.75


@dataclass(frozen=True)
class SessionStats:
    """Snapshot of the workout totals."""

    active_time: float  # seconds on a running belt
    distance: float  # km
    steps: int
    calories: int
    current_speed: float  # km/h
    max_speed: float
    average_speed: float
    average_pace: Optional[float]  # min/km

    def as_status(self) -> dict:
        """Fields merged over the device status for display."""
        return {
            "time": self.active_time,
            "distance": self.distance,
            "steps": self.steps,
            "calories": self.calories,
            "avg_speed": self.average_speed,
            "max_speed": self.max_speed,
            "pace": self.average_pace,
        }


class WorkoutSession:
    """Accumulate distance, steps and active time across belt stops.

    Register ``on_device_state`` as a controller state listener.
    """

    def __init__(self, weight_kg: float = 70.0, time_scale: float = 1.0) -> None:
        """
        Args:
            weight_kg: Body weight used for the calorie estimate
            time_scale: Multiplier for active time (the simulator runs fast)
        """
        self.weight_kg = weight_kg
        self.time_scale = time_scale
        self.current_speed = 0.0
        self._last: Optional[RunningTelemetry] = None
        self._last_running_at: Optional[datetime] = None
        self.reset()

    def reset(self) -> None:
        """Zero the totals. A belt already running keeps feeding them."""
        self.active_time = 0.0
        self.max_speed = self.current_speed
        # Totals start from the current device counters
        self._distance_before = -self._last.distance if self._last is not None else 0.0
        self._steps_before = -self._last.steps if self._last is not None else 0

    def on_device_state(self, state: DeviceState) -> None:
        telemetry = state.telemetry
        if telemetry is None:
            self.current_speed = 0.0
            self._last_running_at = None
            return

        if self._last is not None and telemetry.distance < self._last.distance:
            self._carry_forward(self._last)
        self._last = telemetry

        if not isinstance(state, Running):
            self.current_speed = 0.0
            self._last_running_at = None
            return

        if self._last_running_at is not None:
            delta = (telemetry.timestamp - self._last_running_at).total_seconds()
            if delta > 0:
                self.active_time += delta * self.time_scale
        self._last_running_at = telemetry.timestamp
        self.current_speed = telemetry.speed
        self.max_speed = max(self.max_speed, telemetry.speed)

    def _carry_forward(self, telemetry: RunningTelemetry) -> None:
        self._distance_before += telemetry.distance
        self._steps_before += telemetry.steps
        logger.debug(
            f"Device counters restarted; carrying {telemetry.distance:.2f} km forward "
            f"(total {self._distance_before:.2f} km)"
        )

    @property
    def distance(self) -> float:
        live = self._last.distance if self._last is not None else 0.0
        return self._distance_before + live

    @property
    def steps(self) -> int:
        live = self._last.steps if self._last is not None else 0
        return self._steps_before + live

    @property
    def calories(self) -> int:
        return int(self.distance * self.weight_kg * CALORIES_PER_KG_KM)

    @property
    def average_speed(self) -> float:
        if self.active_time <= 0:
            return 0.0
        return self.distance / (self.active_time / 3600.0)

    @property
    def average_pace(self) -> Optional[float]:
        """Minutes per km, None before any distance is covered."""
        if self.distance <= 0:
            return None
        return (self.active_time / 60.0) / self.distance

    def stats(self) -> SessionStats:
        return SessionStats(
            active_time=self.active_time,
            distance=self.distance,
            steps=self.steps,
            calories=self.calories,
            current_speed=self.current_speed,
            max_speed=self.max_speed,
            average_speed=self.average_speed,
            average_pace=self.average_pace,
        )
