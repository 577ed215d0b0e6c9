from __future__ import annotations

from .memory import InMemoryModelStore, InMemoryTupleStore, TupleView

__all__ = ["InMemoryModelStore", "InMemoryTupleStore", "TupleView"]
