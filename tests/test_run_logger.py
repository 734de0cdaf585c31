import json
from pathlib import Path

from agentic_bridge.config import LoggingSettings
from agentic_bridge.run_logger import REDACTED, RunLogger, redact


def test_redact_nested_secrets():
    data = {
        "headers": {"Authorization": "Bearer abc", "x-api-key": "k"},
        "items": [{"api_key": "secret", "model": "m"}],
        "prompt": "keep me",
    }
    assert redact(data) == {
        "headers": {"Authorization": REDACTED, "x-api-key": REDACTED},
        "items": [{"api_key": REDACTED, "model": "m"}],
        "prompt": "keep me",
    }


def test_disabled_logger_writes_nothing(tmp_path):
    rl = RunLogger(LoggingSettings(enabled=False, root_dir=str(tmp_path)))
    assert rl.start_run("s") == ""
    assert rl.write_json("turns/x.json", {"a": 1}) == ""
    assert list(tmp_path.iterdir()) == []


def test_run_tree_and_redaction(tmp_path):
    rl = RunLogger(LoggingSettings(enabled=True, root_dir=str(tmp_path), redact=True))
    run_dir = Path(rl.start_run("weird/session"))
    assert run_dir.name.endswith("_weird_session")
    for sub in ("turns", "errors", "meta"):
        assert (run_dir / sub).is_dir()

    path = rl.write_json("turns/turn_001_request.json", {"apikey": "sk-1", "payload": {"model": "m"}})
    assert json.loads(Path(path).read_text()) == {"apikey": REDACTED, "payload": {"model": "m"}}
    meta = json.loads((run_dir / "meta" / "run_meta.json").read_text())
    assert meta["session_id"] == "weird/session"
    assert rl.write_text("errors/trace.txt", "boom").endswith("trace.txt")
