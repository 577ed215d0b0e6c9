from __future__ import annotations

from .core.config import ServiceConfig
from .core.errors import (
    AlreadyExistsError,
    CheckCancelledError,
    CycleDetectedError,
    DeadlineExceededError,
    DepthExceededError,
    EvaluationLimitError,
    NotFoundError,
    RelCheckError,
    ValidationError,
)
from .core.evaluator import RewriteEvaluator, evaluate
from .core.model import (
    AuthorizationModel,
    CheckResult,
    ComputedUserset,
    Exclusion,
    Intersection,
    ReadFilter,
    RelationReference,
    Store,
    This,
    TupleKey,
    TupleToUserset,
    TypeDefinition,
    Union,
)
from .core.schema import dump_model, parse_model
from .core.service import AuthorizationService

__version__ = "0.1.0"

__all__ = [
    "AuthorizationService",
    "ServiceConfig",
    "RewriteEvaluator",
    "evaluate",
    "AuthorizationModel",
    "TypeDefinition",
    "RelationReference",
    "This",
    "ComputedUserset",
    "TupleToUserset",
    "Union",
    "Intersection",
    "Exclusion",
    "TupleKey",
    "ReadFilter",
    "Store",
    "CheckResult",
    "parse_model",
    "dump_model",
    "RelCheckError",
    "ValidationError",
    "NotFoundError",
    "AlreadyExistsError",
    "CheckCancelledError",
    "EvaluationLimitError",
    "CycleDetectedError",
    "DepthExceededError",
    "DeadlineExceededError",
    "__version__",
]
