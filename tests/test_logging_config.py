from __future__ import annotations

import logging
from pathlib import Path

import pytest

from thistracker import logging_config


@pytest.fixture
def fresh_logging(monkeypatch):
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    monkeypatch.setattr(logging_config, "_LOG_PATH", None)
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_configure_logging_writes_to_file(fresh_logging, tmp_path: Path) -> None:
    path = tmp_path / "logs" / "tracker.log"

    assert logging_config.configure_logging("debug", path) == path
    logging.getLogger("thistracker.test").warning("sync finished")
    for handler in fresh_logging.handlers:
        handler.flush()

    assert "[WARNING] thistracker.test: sync finished" in path.read_text(encoding="utf-8")


def test_configure_logging_is_idempotent(fresh_logging, tmp_path: Path) -> None:
    first = logging_config.configure_logging(logging.INFO, tmp_path / "a.log")
    second = logging_config.configure_logging(logging.INFO, tmp_path / "b.log")

    assert first == second == logging_config.get_log_path()
    file_handlers = [h for h in fresh_logging.handlers if isinstance(h, logging.FileHandler)]
    assert sum(1 for h in file_handlers if h.baseFilename == str(first.resolve())) == 1
