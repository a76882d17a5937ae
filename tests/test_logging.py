import json
import logging
from pathlib import Path

import pytest

from warden.utils.logging import JsonFormatter, configure_logging


def test_json_formatter_includes_context() -> None:
    record = logging.LogRecord("warden.test", logging.INFO, __file__, 1, "granted %s", ("x",), None)
    record.principal_id = "p1"
    record.node = "admin.kick"
    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "granted x"
    assert payload["principal_id"] == "p1"
    assert payload["node"] == "admin.kick"
    assert "group" not in payload


def test_configure_logging_writes_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("WARDEN_RICH", "0")
    root = logging.getLogger()
    previous_handlers, previous_level = list(root.handlers), root.level
    try:
        configure_logging(level="DEBUG", log_dir=tmp_path / "logs")
        logging.getLogger("warden.test").info("hello", extra={"group": "admin"})
        for handler in root.handlers:
            handler.flush()
        lines = (tmp_path / "logs" / "warden.log").read_text(encoding="utf-8").splitlines()
        assert json.loads(lines[-1])["group"] == "admin"
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
            handler.close()
        for handler in previous_handlers:
            root.addHandler(handler)
        root.setLevel(previous_level)
