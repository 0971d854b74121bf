from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from shared.models import FEATURE_COUNT, TouchAction, TouchSample, Window

from .base import finite_vector, population_std, register_extractor, safe_mean

TAP_MAX_DURATION_MS = 200
LONG_TAP_MAX_DURATION_MS = 500
TAP_MAX_PATH_PX = 50.0
SWIPE_MIN_DIRECT_PX = 100.0
SWIPE_MIN_VELOCITY = 500.0
DRAW_MIN_PATH_PX = 200.0
DRAW_MAX_LINEARITY = 0.3

TOUCH_FEATURE_NAMES: Tuple[str, ...] = (
    "tap_count",
    "tap_rate_per_min",
    "tap_duration_mean",
    "tap_duration_std",
    "tap_pressure_mean",
    "tap_pressure_std",
    "swipe_count",
    "swipe_velocity_mean",
    "swipe_length_mean",
    "swipe_linearity",
    *(f"zone_{i}" for i in range(9)),
    "center_of_mass_x",
    "center_of_mass_y",
    "inter_tap_mean",
    "inter_tap_std",
    "session_duration",
)

ZONE_OFFSET = 10

_START_ACTIONS = (TouchAction.DOWN, TouchAction.POINTER_DOWN)
_END_ACTIONS = (TouchAction.UP, TouchAction.POINTER_UP)


class GestureKind(str, Enum):
    TAP = "tap"
    LONG_TAP = "long_tap"
    SWIPE = "swipe"
    DRAW = "draw"
    DRAG = "drag"


@dataclass(frozen=True)
class Gesture:
    """One finger's DOWN .. UP run of touch events."""

    samples: Tuple[TouchSample, ...]
    finger_id: int

    @property
    def start_ms(self) -> int:
        return self.samples[0].timestamp_ms

    @property
    def end_ms(self) -> int:
        return self.samples[-1].timestamp_ms

    @property
    def duration_ms(self) -> int:
        return self.end_ms - self.start_ms

    @property
    def path_length(self) -> float:
        total = 0.0
        for prev, cur in zip(self.samples, self.samples[1:]):
            total += math.hypot(cur.x - prev.x, cur.y - prev.y)
        return total

    @property
    def direct_distance(self) -> float:
        first, last = self.samples[0], self.samples[-1]
        return math.hypot(last.x - first.x, last.y - first.y)

    @property
    def velocity(self) -> float:
        """Average speed along the path in px/s."""
        if self.duration_ms <= 0:
            return 0.0
        return self.path_length / (self.duration_ms / 1000.0)

    @property
    def linearity(self) -> float:
        path = self.path_length
        if path <= 0:
            return 0.0
        return self.direct_distance / path

    @property
    def mean_pressure(self) -> float:
        return float(np.mean([s.pressure for s in self.samples]))

    @property
    def kind(self) -> GestureKind:
        duration = self.duration_ms
        path = self.path_length
        direct = self.direct_distance
        if duration < TAP_MAX_DURATION_MS and path < TAP_MAX_PATH_PX:
            return GestureKind.TAP
        if duration < LONG_TAP_MAX_DURATION_MS and path < TAP_MAX_PATH_PX:
            return GestureKind.LONG_TAP
        if direct > SWIPE_MIN_DIRECT_PX and self.velocity > SWIPE_MIN_VELOCITY:
            return GestureKind.SWIPE
        if path > DRAW_MIN_PATH_PX and direct < DRAW_MAX_LINEARITY * path:
            return GestureKind.DRAW
        return GestureKind.DRAG


def build_gestures(samples: Iterable[TouchSample]) -> List[Gesture]:
    """
    Group touch events into per-finger gestures.

    A start action opens a gesture for its finger (replacing any open one),
    MOVE appends, an end action closes it, and CANCEL drops it. Gestures are
    returned in the order they finished.
    """
    open_gestures: Dict[int, List[TouchSample]] = {}
    finished: List[Gesture] = []
    for sample in samples:
        action = sample.action
        if action in _START_ACTIONS:
            open_gestures[sample.finger_id] = [sample]
        elif action == TouchAction.MOVE:
            events = open_gestures.get(sample.finger_id)
            if events is not None:
                events.append(sample)
        elif action in _END_ACTIONS:
            events = open_gestures.pop(sample.finger_id, None)
            if events is not None:
                events.append(sample)
                finished.append(Gesture(samples=tuple(events), finger_id=sample.finger_id))
        elif action == TouchAction.CANCEL:
            open_gestures.pop(sample.finger_id, None)
    return finished


@register_extractor
class TouchFeatureExtractor:
    name = "touch"

    @property
    def feature_names(self) -> Sequence[str]:
        return TOUCH_FEATURE_NAMES

    def extract(self, window: Window, duration_ms: Optional[float] = None) -> np.ndarray:
        features = np.zeros(FEATURE_COUNT, dtype=np.float32)
        samples = [s for s in window.samples if isinstance(s, TouchSample)]
        if not samples:
            return features

        if duration_ms is None:
            duration_ms = float(samples[-1].timestamp_ms - samples[0].timestamp_ms)
        duration_s = max(0.0, float(duration_ms)) / 1000.0

        gestures = build_gestures(samples)
        taps = [g for g in gestures if g.kind in (GestureKind.TAP, GestureKind.LONG_TAP)]
        swipes = [g for g in gestures if g.kind == GestureKind.SWIPE]

        features[0] = len(taps)
        features[1] = len(taps) * 60.0 / duration_s if duration_s > 0 else 0.0
        if taps:
            durations = np.array([g.duration_ms for g in taps], dtype=np.float64)
            pressures = np.array([g.mean_pressure for g in taps], dtype=np.float64)
            features[2] = safe_mean(durations)
            features[3] = population_std(durations)
            features[4] = safe_mean(pressures)
            features[5] = population_std(pressures)

        features[6] = len(swipes)
        if swipes:
            features[7] = safe_mean(np.array([g.velocity for g in swipes]))
            features[8] = safe_mean(np.array([g.path_length for g in swipes]))
            features[9] = safe_mean(np.array([g.linearity for g in swipes]))

        downs = [s for s in samples if s.action == TouchAction.DOWN]
        zone_counts = np.zeros(9, dtype=np.float64)
        for sample in downs:
            zone_counts[sample.zone] += 1
        features[ZONE_OFFSET : ZONE_OFFSET + 9] = zone_counts / max(1, len(downs))

        if downs:
            features[19] = safe_mean(np.array([s.normalized_x for s in downs]))
            features[20] = safe_mean(np.array([s.normalized_y for s in downs]))
        else:
            features[19] = 0.5
            features[20] = 0.5

        if len(taps) > 1:
            gaps = np.array(
                [cur.start_ms - prev.end_ms for prev, cur in zip(taps, taps[1:])],
                dtype=np.float64,
            )
            gaps = gaps[gaps > 0]
            if gaps.size:
                features[21] = safe_mean(gaps)
                features[22] = population_std(gaps)

        features[23] = duration_s
        return finite_vector(features)


__all__ = [
    "Gesture",
    "GestureKind",
    "TOUCH_FEATURE_NAMES",
    "TouchFeatureExtractor",
    "build_gestures",
]
