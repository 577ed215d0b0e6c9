from __future__ import annotations

import copy
import json
import logging
import random
from typing import Any, Dict

from ..core.ports import DecisionLogSink

_REDACTED = "[REDACTED]"


class DecisionLogger(DecisionLogSink):
    """Audit sink for check decisions.

    Options:
      - ``sample_rate``: fraction of decisions to log (0.0..1.0). Decisions
        carrying a diagnostic (cycle, depth, deadline) are always logged.
      - ``as_json``: emit a compact JSON document instead of a ``key=value`` line.
      - ``redact_users``: replace the user of the tuple key with a placeholder.
    """

    def __init__(
        self,
        *,
        sample_rate: float = 1.0,
        level: int = logging.INFO,
        as_json: bool = False,
        logger_name: str = "relcheck.audit",
        redact_users: bool = False,
    ) -> None:
        self.sample_rate = max(0.0, min(1.0, float(sample_rate)))
        self.level = level
        self.as_json = as_json
        self.redact_users = redact_users
        self.logger = logging.getLogger(logger_name)

    def log(self, payload: Dict[str, Any]) -> None:
        if "diagnostic" not in payload and not self._sampled():
            return
        data = self._prepare(payload)
        if self.as_json:
            msg = json.dumps(data, separators=(",", ":"), sort_keys=True, default=str)
        else:
            msg = self._as_text(data)
        self.logger.log(self.level, msg)

    # ------------- helpers -------------

    def _sampled(self) -> bool:
        if self.sample_rate >= 1.0:
            return True
        if self.sample_rate <= 0.0:
            return False
        return random.random() < self.sample_rate

    def _prepare(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.redact_users:
            return payload
        data = copy.deepcopy(payload)
        key = data.get("tuple_key")
        if isinstance(key, dict) and "user" in key:
            key["user"] = _REDACTED
        return data

    @staticmethod
    def _as_text(data: Dict[str, Any]) -> str:
        key = data.get("tuple_key") or {}
        parts = [
            f"decision={data.get('decision')}",
            f"store={data.get('store_id')}",
            f"model={data.get('authorization_model_id')}",
            f"object={key.get('object')}",
            f"relation={key.get('relation')}",
            f"user={key.get('user')}",
        ]
        if "duration_ms" in data:
            parts.append(f"duration_ms={data['duration_ms']}")
        diag = data.get("diagnostic")
        if isinstance(diag, dict):
            parts.append(f"diagnostic={diag.get('code')}")
        return "relcheck.decision " + " ".join(parts)


__all__ = ["DecisionLogger"]
