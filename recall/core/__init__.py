"""
Core Module - Shared scheduling models and errors.

All scheduling and persistence modules import their domain types from
recall.core rather than redefining them.
"""

from recall.core.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    PredictorUnavailableError,
    SchedulingError,
)
from recall.core.models import (
    AlgorithmMode,
    AlgorithmUsed,
    Item,
    LearnerSettings,
    ReviewRecord,
    parse_mode,
    utc_now,
)

__all__ = [
    # Errors
    "SchedulingError",
    "NotFoundError",
    "ConflictError",
    "InvalidStateError",
    "PredictorUnavailableError",
    "PersistenceError",
    # Models
    "AlgorithmMode",
    "AlgorithmUsed",
    "Item",
    "LearnerSettings",
    "ReviewRecord",
    "parse_mode",
    "utc_now",
]
