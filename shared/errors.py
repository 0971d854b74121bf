from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    """Failure categories surfaced to callers as values rather than exceptions."""

    INSUFFICIENT_DATA = "insufficient_data"
    CLASS_BALANCE = "class_balance"
    CORRUPT_MODEL = "corrupt_model"
    INVALID_INPUT = "invalid_input"
    CANCELLED = "cancelled"
    BUSY = "busy"
    NOT_TRAINED = "not_trained"
    INTERNAL = "internal"


@dataclass(frozen=True)
class EngineError:
    """Structured failure: a kind callers can branch on plus a human-readable message."""

    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.message}"


def insufficient_data(message: str) -> EngineError:
    return EngineError(ErrorKind.INSUFFICIENT_DATA, message)


def class_balance(message: str) -> EngineError:
    return EngineError(ErrorKind.CLASS_BALANCE, message)


def invalid_input(message: str) -> EngineError:
    return EngineError(ErrorKind.INVALID_INPUT, message)


__all__ = [
    "ErrorKind",
    "EngineError",
    "insufficient_data",
    "class_balance",
    "invalid_input",
]
