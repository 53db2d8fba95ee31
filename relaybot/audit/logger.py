"""Audit logger: one JSONL record per handled request."""

import json
import time
from pathlib import Path

from loguru import logger

MAX_FIELD_LENGTH = 500


def _truncate(text: str | None, limit: int = MAX_FIELD_LENGTH) -> str | None:
    if text is None or len(text) <= limit:
        return text
    return text[:limit] + "..."


class AuditLogger:
    """Append-only audit trail written to a JSONL file."""

    def __init__(self, path: Path):
        self.path = path

    def log(
        self,
        user_id: int,
        username: str,
        message_type: str,
        content: str,
        response: str | None = None,
    ) -> None:
        """Record a handled message and the backend's response."""
        self._write({
            "event": "message",
            "user_id": user_id,
            "username": username,
            "message_type": message_type,
            "content": _truncate(content),
            "response": _truncate(response),
        })

    def log_rate_limit(self, user_id: int, username: str, retry_after: float) -> None:
        """Record a throttled request."""
        self._write({
            "event": "rate_limit",
            "user_id": user_id,
            "username": username,
            "retry_after": round(retry_after, 1),
        })

    def _write(self, entry: dict) -> None:
        entry = {"timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"), **entry}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(entry, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.error(f"Failed to write audit record: {e}")
