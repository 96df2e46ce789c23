from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from simops.core.config import get_settings


_RESERVED = set(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}


class JsonLineFormatter(logging.Formatter):
    # One JSON object per line; `extra=` fields are merged at the top level.
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, sort_keys=True)


def configure_logging(level: str | None = None, *, json_lines: bool | None = None) -> None:
    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()
    use_json = settings.log_json if json_lines is None else json_lines

    handler = logging.StreamHandler()
    if use_json:
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))

    root = logging.getLogger()
    # Replace handlers so repeated calls (tests, scripts) don't duplicate output.
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(resolved_level)
    # httpx logs every request at INFO, including token endpoint URLs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
