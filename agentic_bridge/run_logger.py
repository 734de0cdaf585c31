from __future__ import annotations

import datetime as _dt
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from .config import LoggingSettings

logger = logging.getLogger(__name__)

SECRET_KEYS = {
    "api_key",
    "apikey",
    "authorization",
    "x-api-key",
    "gemini_api_key",
    "anthropic_api_key",
    "groq_api_key",
    "openai_api_key",
    "openrouter_api_key",
    "supabase_service_role_key",
    "pexels_api_key",
}
REDACTED = "***REDACTED***"


def redact(data: Any) -> Any:
    """Key-based redaction of secrets in nested dicts/lists."""
    if isinstance(data, dict):
        return {k: (REDACTED if str(k).lower() in SECRET_KEYS else redact(v)) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [redact(x) for x in data]
    return data


class RunLogger:
    """Per-run JSON artefacts for agent sessions.

    Usage:
      rl = RunLogger(config.logging)
      rl.start_run(session_id)
      rl.write_json("turns/turn_001_request.json", payload)
    """

    def __init__(self, settings: Optional[LoggingSettings] = None) -> None:
        self.settings = settings or LoggingSettings()
        self.enabled = bool(self.settings.enabled)
        self.root_dir = Path(self.settings.root_dir).resolve()
        self.redact_enabled = bool(self.settings.redact)
        self.run_dir: Optional[Path] = None

    def _now_ts(self) -> str:
        return _dt.datetime.now(_dt.timezone.utc).strftime("%Y%m%d-%H%M%S")

    def start_run(self, session_id: str) -> str:
        if not self.enabled:
            self.run_dir = None
            return ""
        ts = self._now_ts()
        # Keep path separators out of the directory name
        sid_raw = str(session_id or "session")
        sid = sid_raw.replace(os.sep, "_").replace("/", "_").replace("\\", "_").strip("_.")[:32] or "session"
        run_dir = self.root_dir / f"{ts}_{sid}"
        for sub in ("turns", "errors", "meta"):
            (run_dir / sub).mkdir(parents=True, exist_ok=True)
        self.run_dir = run_dir
        self.write_json("meta/run_meta.json", {"run_dir": str(run_dir), "created_utc": ts, "session_id": sid_raw})
        logger.debug("run logging to %s", run_dir)
        return str(run_dir)

    def write_json(self, rel_path: str, data: Any) -> str:
        if not self.run_dir:
            return ""
        payload = redact(data) if self.redact_enabled else data
        return self._write(rel_path, json.dumps(payload, indent=2, default=str))

    def write_text(self, rel_path: str, content: str) -> str:
        if not self.run_dir:
            return ""
        return self._write(rel_path, content)

    def _write(self, rel_path: str, content: str) -> str:
        path = self.run_dir / rel_path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
        except OSError as exc:
            # Transcripts are best-effort; a full disk must not kill the session.
            logger.warning("could not write run artefact %s: %s", path, exc)
            return ""
        return str(path)


__all__ = ["REDACTED", "RunLogger", "SECRET_KEYS", "redact"]
