"""Headless command-line entry point: train, replay, inspect and delete models."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from core.session import ClassificationSession
from features.windowing import build_training_windows
from learning.model_store import ModelStore
from learning.trainer import TrainingConfig
from recording.csv_store import read_labeled_samples
from shared.app_settings import EngineSettings, EngineSettingsStore, JsonFilePersistence
from shared.errors import EngineError

logger = logging.getLogger("costrack")


def _settings(args: argparse.Namespace) -> EngineSettings:
    store = EngineSettingsStore(JsonFilePersistence(args.settings)) if args.settings else EngineSettingsStore()
    overrides = {"model_dir": args.model_dir, "model_name": args.model_name, "model_format": args.format}
    return store.update(**{k: v for k, v in overrides.items() if v is not None})


def _store(settings: EngineSettings) -> ModelStore:
    return ModelStore(Path(settings.model_dir), settings.model_name, settings.model_format)


def _cmd_train(args: argparse.Namespace) -> int:
    settings = _settings(args)
    records = read_labeled_samples(args.data)
    windows = build_training_windows(records, settings.window_size, settings.window_step)
    labels = [w.label or "" for w in windows]
    config = TrainingConfig(
        epochs=args.epochs,
        learning_rate=args.lr,
        seed=args.seed,
        early_stopping=not args.no_early_stopping,
    )

    def progress(fraction: float, accuracy: float) -> None:
        logger.info("progress %3.0f%%  val_acc=%.3f", fraction * 100.0, accuracy)

    session = ClassificationSession(settings)
    try:
        result = session.train(windows, labels, config, on_progress=progress)
    finally:
        session.close()
    if not result.success:
        print(f"training failed: {result.error}", file=sys.stderr)
        return 1
    print(
        f"trained on {result.training_samples} windows "
        f"(validated on {result.validation_samples}): accuracy={result.accuracy:.3f} "
        f"epochs={result.epochs} best_epoch={result.best_epoch} "
        f"early_stopped={result.early_stopped} saved={result.saved}"
    )
    return 0


def _cmd_classify(args: argparse.Namespace) -> int:
    settings = _settings(args)
    session = ClassificationSession(settings)
    try:
        if not session.has_trained_model():
            print("no trained model found", file=sys.stderr)
            return 1
        last_label: Optional[str] = None
        for record in sorted(read_labeled_samples(args.data), key=lambda r: r.timestamp_ns):
            if not session.push_sample(record.to_motion_sample()):
                continue
            update = session.classify_latest()
            if isinstance(update, EngineError):
                logger.debug("skipped window: %s", update)
                continue
            if update.stable_label is not None and update.stable_label != last_label:
                last_label = update.stable_label
                print(f"{record.timestamp_ns}\t{update.stable_label}\t{update.aggregated.confidence:.3f}")
    finally:
        session.close()
    return 0


def _cmd_info(args: argparse.Namespace) -> int:
    info = _store(_settings(args)).info()
    if not info.exists:
        print(f"no model at {info.path}")
        return 1
    print(f"path:         {info.path}")
    print(f"format:       {info.fmt}")
    print(f"architecture: {info.architecture}")
    print(f"labels:       {', '.join(info.labels)}")
    print(f"epochs:       {info.epochs}")
    print(f"accuracy:     {info.accuracy:.3f}")
    return 0


def _cmd_delete(args: argparse.Namespace) -> int:
    store = _store(_settings(args))
    if store.delete():
        print(f"deleted {store.path}")
        return 0
    print(f"no model at {store.path}")
    return 1


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="costrack", description="On-device activity classifier tools")
    ap.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    ap.add_argument("--settings", type=str, default=None, help="JSON settings file")
    ap.add_argument("--model-dir", type=str, default=None)
    ap.add_argument("--model-name", type=str, default=None)
    ap.add_argument("--format", choices=("binary", "text"), default=None)
    sub = ap.add_subparsers(dest="command", required=True)

    train = sub.add_parser("train", help="train a motion model from a labeled CSV")
    train.add_argument("--data", type=str, required=True)
    train.add_argument("--epochs", type=int, default=100)
    train.add_argument("--lr", type=float, default=0.01)
    train.add_argument("--seed", type=int, default=42)
    train.add_argument("--no-early-stopping", action="store_true")
    train.set_defaults(func=_cmd_train)

    classify = sub.add_parser("classify", help="replay a CSV stream and print stable labels")
    classify.add_argument("--data", type=str, required=True)
    classify.set_defaults(func=_cmd_classify)

    info = sub.add_parser("info", help="show the stored model")
    info.set_defaults(func=_cmd_info)

    delete = sub.add_parser("delete", help="delete the stored model")
    delete.set_defaults(func=_cmd_delete)
    return ap


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
