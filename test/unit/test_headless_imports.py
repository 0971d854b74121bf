"""Verify the engine and CLI import without any GUI or plotting toolkit.

The engine runs as a headless library and command-line tool.
"""
from __future__ import annotations

import importlib
import sys

import pytest

GUI_MODULES = ("PySide6", "PySide6.QtCore", "PySide6.QtWidgets", "pyqtgraph")
ENGINE_MODULES = (
    "shared.app_settings",
    "features",
    "learning",
    "aggregation",
    "core.session",
    "recording.csv_store",
    "costrack.main",
)


class TestHeadlessImports:
    @pytest.mark.parametrize("module_name", ENGINE_MODULES)
    def test_imports_with_gui_blocked(self, monkeypatch, module_name):
        for cached in [k for k in sys.modules if k == module_name or k.startswith(module_name + ".")]:
            monkeypatch.delitem(sys.modules, cached, raising=False)
        for blocked in GUI_MODULES:
            monkeypatch.setitem(sys.modules, blocked, None)

        module = importlib.import_module(module_name)

        assert module is not None

    def test_session_builds_with_in_memory_settings(self, tmp_path):
        from core.session import ClassificationSession
        from shared.app_settings import EngineSettingsStore, InMemoryPersistence

        store = EngineSettingsStore(InMemoryPersistence({"model_dir": str(tmp_path)}))
        session = ClassificationSession(settings_store=store)
        try:
            assert not session.has_trained_model()
        finally:
            session.close()
