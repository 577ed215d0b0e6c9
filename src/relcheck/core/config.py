from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Mapping, Optional

from .evaluator import DEFAULT_MAX_DEPTH

_TRUE = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ServiceConfig:
    """Tunables of :class:`relcheck.core.service.AuthorizationService`."""

    max_depth: int = DEFAULT_MAX_DEPTH
    deadline_ms: Optional[int] = None  # per check; None disables the deadline
    strict_writes: bool = False  # duplicate write / absent delete raise instead of no-op
    max_tuples_per_write: int = 100
    default_page_size: int = 50
    max_page_size: int = 100

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, prefix: str = "RELCHECK_") -> "ServiceConfig":
        """Build a config from ``RELCHECK_*`` variables, e.g. ``RELCHECK_MAX_DEPTH=10``."""
        env = os.environ if environ is None else environ
        kwargs: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(prefix + f.name.upper())
            if raw is None or raw == "":
                continue
            if f.name == "strict_writes":
                kwargs[f.name] = raw.strip().lower() in _TRUE
            elif f.name == "deadline_ms" and raw.strip().lower() in ("none", "off"):
                kwargs[f.name] = None
            else:
                try:
                    kwargs[f.name] = int(raw)
                except ValueError:
                    raise ValueError(f"{prefix}{f.name.upper()} must be an integer, got {raw!r}") from None
        return cls(**kwargs)  # type: ignore[arg-type]


__all__ = ["ServiceConfig"]
