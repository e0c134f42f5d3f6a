"""Unit tests for taskbench.utils and logging setup."""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from taskbench.logging_config import setup_logging
from taskbench.utils import expand_env_vars, slugify


@pytest.mark.parametrize(
    ("title", "expected"),
    [
        ("Fix login (OAuth)!", "fix-login-oauth"),
        ("  spaced   out  ", "spaced-out"),
        ("!!!", "task"),
        ("a" * 60, "a" * 40),
    ],
)
def test_slugify(title, expected):
    assert slugify(title) == expected


def test_expand_env_vars_nested(monkeypatch):
    monkeypatch.setenv("TB_HOME", "/opt/tb")

    result = expand_env_vars({"paths": ["${TB_HOME}/a", "${TB_UNSET_VAR}/b"], "n": 3})

    assert result == {"paths": ["/opt/tb/a", "${TB_UNSET_VAR}/b"], "n": 3}


def test_setup_logging_is_idempotent_and_adds_file_handler(tmp_path, monkeypatch):
    monkeypatch.delenv("TASKBENCH_LOG_LEVEL", raising=False)
    root = logging.getLogger()
    original_level = root.level
    log_file = tmp_path / "logs" / "taskbench.log"
    try:
        setup_logging(level="debug", log_file=str(log_file))
        setup_logging(level="debug", log_file=str(log_file))

        ours = [h for h in root.handlers if getattr(h, "_taskbench", False)]
        assert len(ours) == 2
        assert any(isinstance(h, RotatingFileHandler) for h in ours)
        assert root.level == logging.DEBUG

        logging.getLogger("taskbench.test").debug("hello %s", "file")
        for handler in ours:
            handler.flush()
        assert "hello file" in log_file.read_text()
    finally:
        for handler in [h for h in root.handlers if getattr(h, "_taskbench", False)]:
            root.removeHandler(handler)
            handler.close()
        root.setLevel(original_level)
