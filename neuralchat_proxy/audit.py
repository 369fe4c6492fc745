from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any

from neuralchat_proxy.models import ProxyOutcome


def attempt_chain_record(outcome: ProxyOutcome, request_id: str) -> dict[str, Any]:
    record: dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "request_id": request_id,
        "status": outcome.status_code,
        "model": outcome.model,
        "attempts": [attempt.as_dict() for attempt in outcome.attempts],
    }
    if outcome.status_code == 500 and isinstance(outcome.content, dict):
        record["last_error"] = outcome.content.get("details")
    return record


class AttemptChainLog:
    def __init__(self, path: str, enabled: bool = True) -> None:
        self.enabled = enabled
        self.path = Path(path)
        self._lock = Lock()
        if self.enabled:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    def record(self, outcome: ProxyOutcome, request_id: str) -> None:
        if not self.enabled:
            return
        line = json.dumps(
            attempt_chain_record(outcome, request_id),
            ensure_ascii=True,
            separators=(",", ":"),
            default=str,
        )
        with self._lock, self.path.open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")
