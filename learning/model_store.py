"""
On-disk persistence for trained classifiers.

Two formats are supported:

* ``binary``: big-endian float32 words in the order means, stds, W1, b1, W2,
  b2, W3, b3 (matrices row-major), preceded by a small header carrying the
  magic ``CTNN``, a format version and the four layer sizes. Files without the
  header are accepted when the caller supplies the layer sizes and the byte
  count matches exactly.
* ``text``: line 1 class count, line 2 comma-joined labels, line 3 epoch
  count, then W1 rows, b1, W2 rows, b2, W3 rows and b3 as comma-separated
  floats, optionally followed by the normalization means and stds lines.

Labels, epochs and accuracy for binary models live in a JSON sidecar that is
written next to every model file.
"""

from __future__ import annotations

import json
import logging
import math
import os
import struct
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from shared.errors import EngineError, ErrorKind
from shared.models import NormalizationParams

from .network import HIDDEN1_SIZE, HIDDEN2_SIZE, INPUT_SIZE, ModelSnapshot, NetworkParameters

logger = logging.getLogger(__name__)

MAGIC = b"CTNN"
FORMAT_VERSION = 1
_HEADER = struct.Struct(">4sHIIII")
_FLOAT = np.dtype(">f4")

FORMATS = ("binary", "text")
_SUFFIX = {"binary": ".bin", "text": ".txt"}

Dims = Tuple[int, int, int, int]


def _word_count(dims: Dims) -> int:
    f, h1, h2, c = dims
    return 2 * f + f * h1 + h1 + h1 * h2 + h2 + h2 * c + c


def _default_labels(n: int) -> Tuple[str, ...]:
    return tuple(f"class_{i}" for i in range(n))


# ----------------------------
# Binary codec
# ----------------------------

def encode_binary(snapshot: ModelSnapshot, *, header: bool = True) -> bytes:
    params = snapshot.parameters
    parts = [snapshot.normalization.means, snapshot.normalization.stds, *params.arrays()]
    body = np.concatenate([np.asarray(p, dtype=np.float32).reshape(-1) for p in parts]).astype(_FLOAT)
    if not header:
        return body.tobytes()
    return _HEADER.pack(MAGIC, FORMAT_VERSION, *params.dims) + body.tobytes()


def decode_binary(
    data: bytes,
    *,
    labels: Optional[Sequence[str]] = None,
    epochs: int = 0,
    accuracy: float = 0.0,
    dims: Optional[Dims] = None,
) -> Optional[ModelSnapshot]:
    """Parse a binary model; returns None when the payload does not validate."""
    if data[:4] == MAGIC:
        if len(data) < _HEADER.size:
            logger.warning("Binary model truncated inside header (%d bytes)", len(data))
            return None
        _, version, f, h1, h2, c = _HEADER.unpack_from(data)
        if version != FORMAT_VERSION:
            logger.warning("Unsupported binary model version %d", version)
            return None
        header_dims: Dims = (f, h1, h2, c)
        if dims is not None and tuple(dims) != header_dims:
            logger.warning("Binary model dims %s do not match expected %s", header_dims, tuple(dims))
            return None
        dims = header_dims
        payload = data[_HEADER.size :]
    else:
        if dims is None:
            logger.warning("Headerless binary model needs explicit layer sizes")
            return None
        payload = data

    if min(dims) <= 0:
        logger.warning("Binary model has non-positive layer sizes %s", dims)
        return None
    expected = _word_count(dims) * _FLOAT.itemsize
    if len(payload) != expected:
        logger.warning("Binary model has %d payload bytes, expected %d", len(payload), expected)
        return None

    words = np.frombuffer(payload, dtype=_FLOAT).astype(np.float32)
    f, h1, h2, c = dims
    shapes = [(f,), (f,), (f, h1), (h1,), (h1, h2), (h2,), (h2, c), (c,)]
    arrays: List[np.ndarray] = []
    offset = 0
    for shape in shapes:
        n = int(np.prod(shape))
        arrays.append(words[offset : offset + n].reshape(shape).copy())
        offset += n

    label_tuple = tuple(labels) if labels is not None else _default_labels(c)
    if len(label_tuple) != c:
        logger.warning("Binary model has %d classes but %d labels", c, len(label_tuple))
        return None
    try:
        return ModelSnapshot(
            parameters=NetworkParameters(*arrays[2:]),
            normalization=NormalizationParams(means=arrays[0], stds=arrays[1]),
            labels=label_tuple,
            epochs=int(epochs),
            accuracy=float(accuracy),
        )
    except ValueError as exc:
        logger.warning("Binary model rejected: %s", exc)
        return None


# ----------------------------
# Text codec
# ----------------------------

def _format_row(values: np.ndarray) -> str:
    return ",".join(repr(float(v)) for v in np.asarray(values, dtype=np.float32).reshape(-1))


def encode_text(snapshot: ModelSnapshot, *, include_normalization: bool = True) -> str:
    p = snapshot.parameters
    lines = [str(len(snapshot.labels)), ",".join(snapshot.labels), str(snapshot.epochs)]
    lines.extend(_format_row(row) for row in p.w1)
    lines.append(_format_row(p.b1))
    lines.extend(_format_row(row) for row in p.w2)
    lines.append(_format_row(p.b2))
    lines.extend(_format_row(row) for row in p.w3)
    lines.append(_format_row(p.b3))
    if include_normalization:
        lines.append(_format_row(snapshot.normalization.means))
        lines.append(_format_row(snapshot.normalization.stds))
    return "\n".join(lines) + "\n"


class _TextFormatError(ValueError):
    pass


def _parse_row(line: str, width: int) -> np.ndarray:
    try:
        values = [float(tok) for tok in line.split(",")]
    except ValueError as exc:
        raise _TextFormatError(f"unparseable row: {exc}") from None
    if len(values) != width:
        raise _TextFormatError(f"row has {len(values)} values, expected {width}")
    return np.asarray(values, dtype=np.float32)


def decode_text(
    text: str,
    *,
    input_size: int = INPUT_SIZE,
    hidden1: int = HIDDEN1_SIZE,
    hidden2: int = HIDDEN2_SIZE,
    accuracy: float = 0.0,
) -> Optional[ModelSnapshot]:
    """Parse a text model; returns None when any line fails validation."""
    lines = [line.strip() for line in text.splitlines()]
    while lines and not lines[-1]:
        lines.pop()
    try:
        if len(lines) < 3:
            raise _TextFormatError("missing header lines")
        try:
            n_classes = int(lines[0])
            epochs = int(lines[2])
        except ValueError:
            raise _TextFormatError("class count and epochs must be integers") from None
        if n_classes <= 0 or epochs < 0:
            raise _TextFormatError("class count must be positive and epochs non-negative")
        labels = tuple(lines[1].split(",")) if lines[1] else ()
        if len(labels) != n_classes:
            raise _TextFormatError(f"{len(labels)} labels for {n_classes} classes")

        body = lines[3:]
        weight_lines = input_size + 1 + hidden1 + 1 + hidden2 + 1
        if len(body) not in (weight_lines, weight_lines + 2):
            raise _TextFormatError(f"{len(body)} parameter lines, expected {weight_lines} or {weight_lines + 2}")

        cursor = iter(body)
        w1 = np.stack([_parse_row(next(cursor), hidden1) for _ in range(input_size)])
        b1 = _parse_row(next(cursor), hidden1)
        w2 = np.stack([_parse_row(next(cursor), hidden2) for _ in range(hidden1)])
        b2 = _parse_row(next(cursor), hidden2)
        w3 = np.stack([_parse_row(next(cursor), n_classes) for _ in range(hidden2)])
        b3 = _parse_row(next(cursor), n_classes)
        if len(body) == weight_lines + 2:
            normalization = NormalizationParams(
                means=_parse_row(next(cursor), input_size),
                stds=_parse_row(next(cursor), input_size),
            )
        else:
            normalization = NormalizationParams.identity(input_size)

        return ModelSnapshot(
            parameters=NetworkParameters(w1=w1, b1=b1, w2=w2, b2=b2, w3=w3, b3=b3),
            normalization=normalization,
            labels=labels,
            epochs=epochs,
            accuracy=float(accuracy),
        )
    except ValueError as exc:
        logger.warning("Text model rejected: %s", exc)
        return None


# ----------------------------
# Store
# ----------------------------

@dataclass(frozen=True)
class ModelInfo:
    exists: bool
    path: str
    fmt: str
    labels: Tuple[str, ...] = ()
    epochs: int = 0
    accuracy: float = 0.0
    architecture: str = ""
    saved_at: Optional[float] = None
    size_bytes: int = 0


def _architecture(dims: Dims) -> str:
    return " -> ".join(str(d) for d in dims)


def _discard(tmp_name: str) -> None:
    try:
        os.unlink(tmp_name)
    except OSError:
        pass


def _stage(path: Path, payload: bytes) -> str:
    """Write payload to a synced temp file beside path; returns the temp name."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(payload)
            fh.flush()
            os.fsync(fh.fileno())
    except BaseException:
        _discard(tmp_name)
        raise
    return tmp_name


def _atomic_write(path: Path, payload: bytes) -> None:
    tmp_name = _stage(path, payload)
    try:
        os.replace(tmp_name, path)
    except BaseException:
        _discard(tmp_name)
        raise


def _finite_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _clean_metadata(data: Any) -> Dict[str, Any]:
    """Keep only sidecar fields whose JSON types are usable."""
    if not isinstance(data, dict):
        return {}
    meta: Dict[str, Any] = {}
    labels = data.get("labels")
    if isinstance(labels, list) and all(isinstance(label, str) for label in labels):
        meta["labels"] = labels
    epochs = data.get("epochs")
    if isinstance(epochs, int) and not isinstance(epochs, bool) and epochs >= 0:
        meta["epochs"] = epochs
    for key in ("accuracy", "saved_at"):
        number = _finite_number(data.get(key))
        if number is not None:
            meta[key] = number
    for key in ("architecture", "format"):
        if isinstance(data.get(key), str):
            meta[key] = data[key]
    dropped = sorted(set(data) - set(meta))
    if dropped:
        logger.debug("Ignoring malformed metadata fields: %s", ", ".join(dropped))
    return meta


class ModelStore:
    """Loads and saves one named model inside a directory."""

    def __init__(
        self,
        directory: str | Path,
        name: str = "personal_har_model",
        fmt: str = "binary",
        *,
        dims: Optional[Dims] = None,
    ) -> None:
        if fmt not in FORMATS:
            raise ValueError(f"Unsupported model format {fmt!r}")
        if not name or os.sep in name:
            raise ValueError("model name must be a plain file name")
        self._directory = Path(directory)
        self._name = name
        self._fmt = fmt
        self._dims = dims
        self._last_error: Optional[EngineError] = None

    @property
    def last_error(self) -> Optional[EngineError]:
        """CORRUPT_MODEL when the last load found an unusable file, else None."""
        return self._last_error

    @property
    def path(self) -> Path:
        return self._directory / f"{self._name}{_SUFFIX[self._fmt]}"

    @property
    def metadata_path(self) -> Path:
        return self._directory / f"{self._name}.json"

    @property
    def fmt(self) -> str:
        return self._fmt

    def exists(self) -> bool:
        return self.path.is_file()

    def save(self, snapshot: ModelSnapshot) -> bool:
        if self._fmt == "binary":
            payload = encode_binary(snapshot)
        else:
            payload = encode_text(snapshot).encode("utf-8")
        metadata = {
            "labels": list(snapshot.labels),
            "epochs": snapshot.epochs,
            "accuracy": snapshot.accuracy,
            "architecture": _architecture(snapshot.parameters.dims),
            "format": self._fmt,
            "saved_at": time.time(),
        }
        staged: List[str] = []
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            staged.append(_stage(self.path, payload))
            staged.append(_stage(self.metadata_path, json.dumps(metadata, indent=2).encode("utf-8")))
            previous = self.path.read_bytes() if self.path.is_file() else None
            os.replace(staged[0], self.path)
            try:
                os.replace(staged[1], self.metadata_path)
            except OSError:
                self._roll_back(previous)
                raise
        except OSError as exc:
            for tmp_name in staged:
                _discard(tmp_name)
            logger.warning("Failed to save model to %s: %s", self.path, exc)
            return False
        self._last_error = None
        logger.info("Saved model %s (%s, %d epochs)", self.path, metadata["architecture"], snapshot.epochs)
        return True

    def _roll_back(self, previous: Optional[bytes]) -> None:
        """Put back the model file that matches the sidecar still on disk."""
        try:
            if previous is None:
                self.path.unlink()
            else:
                _atomic_write(self.path, previous)
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to restore previous model %s: %s", self.path, exc)

    def _read_metadata(self) -> Dict[str, Any]:
        try:
            with self.metadata_path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable model metadata %s: %s", self.metadata_path, exc)
            return {}
        return _clean_metadata(data)

    def _corrupt(self, message: str) -> None:
        self._last_error = EngineError(ErrorKind.CORRUPT_MODEL, message)
        logger.warning("Model %s is corrupt; treating as untrained (%s)", self.path, message)

    def load(self) -> Optional[ModelSnapshot]:
        self._last_error = None
        if not self.exists():
            return None
        try:
            data = self.path.read_bytes()
        except OSError as exc:
            self._corrupt(f"unreadable: {exc}")
            return None
        meta = self._read_metadata()
        accuracy = meta.get("accuracy", 0.0)
        if self._fmt == "binary":
            snapshot = decode_binary(
                data,
                labels=meta.get("labels"),
                epochs=meta.get("epochs", 0),
                accuracy=accuracy,
                dims=self._dims,
            )
        else:
            try:
                text = data.decode("utf-8")
            except UnicodeDecodeError as exc:
                self._corrupt(f"not valid UTF-8: {exc}")
                return None
            f, h1, h2 = (self._dims[:3] if self._dims else (INPUT_SIZE, HIDDEN1_SIZE, HIDDEN2_SIZE))
            snapshot = decode_text(text, input_size=f, hidden1=h1, hidden2=h2, accuracy=accuracy)
        if snapshot is None:
            self._corrupt("payload failed validation")
            return None
        logger.info("Loaded model %s (%d epochs)", self.path, snapshot.epochs)
        return snapshot

    def delete(self) -> bool:
        removed = False
        for target in (self.path, self.metadata_path):
            try:
                target.unlink()
                removed = removed or target == self.path
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("Failed to delete %s: %s", target, exc)
                return False
        if removed:
            logger.info("Deleted model %s", self.path)
        return removed

    def info(self) -> ModelInfo:
        if not self.exists():
            return ModelInfo(exists=False, path=str(self.path), fmt=self._fmt)
        meta = self._read_metadata()
        try:
            size = self.path.stat().st_size
        except OSError:
            size = 0
        return ModelInfo(
            exists=True,
            path=str(self.path),
            fmt=self._fmt,
            labels=tuple(meta.get("labels", ())),
            epochs=meta.get("epochs", 0),
            accuracy=meta.get("accuracy", 0.0),
            architecture=meta.get("architecture", ""),
            saved_at=meta.get("saved_at"),
            size_bytes=size,
        )


__all__ = [
    "FORMATS",
    "FORMAT_VERSION",
    "MAGIC",
    "ModelInfo",
    "ModelStore",
    "decode_binary",
    "decode_text",
    "encode_binary",
    "encode_text",
]
