from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

from .models import AggregationStrategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineSettings:
    window_size: int = 50
    window_step: int = 25
    inference_interval_s: float = 0.5
    extractor: str = "motion"
    model_dir: str = "models"
    model_name: str = "personal_har_model"
    model_format: str = "binary"
    aggregation_strategy: AggregationStrategy = AggregationStrategy.RECENT_WEIGHTED
    history_size: int = 10
    stability_threshold: int = 3
    confidence_threshold: float = 0.6
    recency_decay: float = 0.8

    def __post_init__(self) -> None:
        if self.window_size <= 0:
            raise ValueError("window_size must be positive")
        if not 0 < self.window_step <= self.window_size:
            raise ValueError("window_step must be between 1 and window_size")
        if self.inference_interval_s <= 0:
            raise ValueError("inference_interval_s must be positive")
        if self.model_format not in ("binary", "text"):
            raise ValueError("model_format must be 'binary' or 'text'")
        if not isinstance(self.aggregation_strategy, AggregationStrategy):
            object.__setattr__(self, "aggregation_strategy", AggregationStrategy(self.aggregation_strategy))
        if self.history_size <= 0:
            raise ValueError("history_size must be positive")
        if self.stability_threshold <= 0:
            raise ValueError("stability_threshold must be positive")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be within [0, 1]")
        if not 0.0 < self.recency_decay <= 1.0:
            raise ValueError("recency_decay must be within (0, 1]")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["aggregation_strategy"] = self.aggregation_strategy.value
        return data


class SettingsPersistence(Protocol):
    def load(self) -> Mapping[str, Any]:
        ...

    def save(self, values: Mapping[str, Any]) -> None:
        ...


class InMemoryPersistence:
    """Persistence that lives only for the process; the default for tests and headless runs."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(initial or {})

    def load(self) -> Mapping[str, Any]:
        return dict(self._values)

    def save(self, values: Mapping[str, Any]) -> None:
        self._values = dict(values)


class JsonFilePersistence:
    """Stores settings as a JSON object; writes go through a temp file and an atomic rename."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Mapping[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            logger.warning("Failed to read settings from %s: %s", self._path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring settings file %s: expected an object", self._path)
            return {}
        return data

    def save(self, values: Mapping[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(dict(values), f, indent=2)
        os.replace(tmp, self._path)


def _coerce(name: str, raw: Any, default: Any) -> Any:
    if isinstance(default, bool):
        return bool(int(raw)) if isinstance(raw, str) else bool(raw)
    if isinstance(default, AggregationStrategy):
        return AggregationStrategy(raw)
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    return str(raw)


class EngineSettingsStore:
    """Thread-safe settings store for engine-wide preferences."""

    def __init__(self, persistence: Optional[SettingsPersistence] = None) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[int, Callable[[EngineSettings], None]] = {}
        self._next_token = 0
        self._persistence: SettingsPersistence = persistence or InMemoryPersistence()
        self._settings = self._load_settings()

    def _load_settings(self) -> EngineSettings:
        stored = self._persistence.load()
        defaults = EngineSettings()
        values: Dict[str, Any] = {}
        for f in fields(EngineSettings):
            default = getattr(defaults, f.name)
            if f.name not in stored:
                continue
            try:
                values[f.name] = _coerce(f.name, stored[f.name], default)
            except (TypeError, ValueError) as exc:
                logger.debug("Ignoring stored setting %s=%r: %s", f.name, stored[f.name], exc)
        try:
            return EngineSettings(**values)
        except ValueError as exc:
            logger.warning("Stored settings rejected, using defaults: %s", exc)
            return defaults

    def get(self) -> EngineSettings:
        with self._lock:
            return self._settings

    def update(self, **kwargs) -> EngineSettings:
        with self._lock:
            new_settings = replace(self._settings, **kwargs)
            self._settings = new_settings
            callbacks = list(self._subscribers.values())
            try:
                self._persistence.save(new_settings.to_dict())
            except OSError as exc:
                logger.warning("Failed to persist settings: %s", exc)
        for callback in callbacks:
            try:
                callback(new_settings)
            except Exception as exc:
                logger.debug("Settings subscriber callback failed: %s", exc)
                continue
        return new_settings

    def subscribe(self, callback: Callable[[EngineSettings], None], *, replay: bool = True) -> Callable[[], None]:
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._subscribers[token] = callback
            snapshot = self._settings
        if replay:
            callback(snapshot)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.pop(token, None)

        return unsubscribe


__all__ = [
    "EngineSettings",
    "EngineSettingsStore",
    "InMemoryPersistence",
    "JsonFilePersistence",
    "SettingsPersistence",
]
