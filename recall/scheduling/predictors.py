"""
Learned interval predictors.

The trained model is a black box: the core never trains, it only calls
``predict_interval(features) -> days``. Model variants form a closed set:

- LinearIntervalModel: weights . features + bias, optionally in log space
- ScoringFunctionModel: any callable with the right signature
- EnsembleIntervalModel: weighted mean of other variants

LearnedPredictor wraps a model with input validation, an optional timeout,
and output clamping, and turns every failure into PredictorUnavailableError
so the orchestrator can fall back to the baseline.

Model documents (JSON) look like:

    {"kind": "linear", "weights": [8 floats], "bias": 0.4, "log_space": true}
    {"kind": "ensemble", "members": [{...}, {...}], "weights": [0.7, 0.3]}
"""

from __future__ import annotations

import json
import math
import queue
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import numpy as np
from loguru import logger

from recall.core.errors import PredictorUnavailableError
from recall.core.models import MIN_INTERVAL_DAYS, clamp
from recall.scheduling.features import FEATURE_COUNT

DEFAULT_MAX_INTERVAL = 365.0


class IntervalModel(Protocol):
    """Capability shared by every model variant."""

    def predict_interval(self, features: np.ndarray) -> float: ...


# =============================================================================
# Model Variants
# =============================================================================


@dataclass
class LinearIntervalModel:
    """
    Linear scoring over the feature vector.

    With ``log_space`` the score is a log-interval, so the prediction is
    ``exp(w . x + b)`` and always positive.
    """

    weights: np.ndarray
    bias: float = 0.0
    log_space: bool = True

    def __post_init__(self) -> None:
        self.weights = np.asarray(self.weights, dtype=np.float64)
        if self.weights.shape != (FEATURE_COUNT,):
            raise ValueError(
                f"Linear model needs {FEATURE_COUNT} weights, got shape {self.weights.shape}"
            )

    def predict_interval(self, features: np.ndarray) -> float:
        score = float(np.dot(self.weights, features) + self.bias)
        if self.log_space:
            # Cap the exponent; the result is clamped by LearnedPredictor anyway
            return math.exp(min(score, 50.0))
        return score


@dataclass
class ScoringFunctionModel:
    """Adapter for a plain scoring function."""

    fn: Callable[[np.ndarray], float]

    def predict_interval(self, features: np.ndarray) -> float:
        return self.fn(features)


@dataclass
class EnsembleIntervalModel:
    """Weighted mean of several models' predictions."""

    members: Sequence[IntervalModel]
    weights: Sequence[float] | None = None

    def __post_init__(self) -> None:
        if not self.members:
            raise ValueError("Ensemble needs at least one member")
        if self.weights is None:
            self.weights = [1.0] * len(self.members)
        if len(self.weights) != len(self.members):
            raise ValueError("Ensemble weights and members differ in length")
        if sum(self.weights) <= 0:
            raise ValueError("Ensemble weights must sum to a positive value")

    def predict_interval(self, features: np.ndarray) -> float:
        predictions = [float(m.predict_interval(features)) for m in self.members]
        return float(np.average(predictions, weights=self.weights))


# =============================================================================
# Predictor Wrapper
# =============================================================================


class LearnedPredictor:
    """
    Validated, clamped, optionally time-bounded access to a model.

    Example:
        >>> predictor = LearnedPredictor(LinearIntervalModel(weights, bias=0.5))
        >>> predictor.predict_interval(features)  # days, in [1, max_interval]
    """

    def __init__(
        self,
        model: IntervalModel,
        max_interval: float = DEFAULT_MAX_INTERVAL,
        timeout_seconds: float | None = None,
        name: str = "learned",
    ):
        self.model = model
        self.max_interval = max_interval
        self.timeout_seconds = timeout_seconds
        self.name = name

    def predict_interval(self, features: np.ndarray) -> float:
        """
        Predict the next interval in days.

        Raises:
            PredictorUnavailableError: malformed input, model failure,
                timeout, or a non-finite prediction
        """
        vector = self._validate(features)
        raw = self._invoke(vector)

        try:
            value = float(raw)
        except (TypeError, ValueError) as e:
            raise PredictorUnavailableError(
                f"Predictor '{self.name}' returned a non-numeric value: {raw!r}"
            ) from e

        if not math.isfinite(value):
            raise PredictorUnavailableError(f"Predictor '{self.name}' returned {value}")

        return clamp(value, MIN_INTERVAL_DAYS, self.max_interval)

    def _validate(self, features: np.ndarray) -> np.ndarray:
        try:
            vector = np.array(features, dtype=np.float64)
        except (TypeError, ValueError) as e:
            raise PredictorUnavailableError(f"Malformed feature vector: {e}") from e

        if vector.shape != (FEATURE_COUNT,):
            raise PredictorUnavailableError(
                f"Feature vector must have shape ({FEATURE_COUNT},), got {vector.shape}"
            )
        if not np.all(np.isfinite(vector)):
            raise PredictorUnavailableError("Feature vector contains non-finite values")

        vector.setflags(write=False)
        return vector

    def _invoke(self, vector: np.ndarray) -> Any:
        if self.timeout_seconds is None:
            try:
                return self.model.predict_interval(vector)
            except Exception as e:  # Model is opaque; any failure means unavailable
                raise PredictorUnavailableError(f"Predictor '{self.name}' failed: {e}") from e

        # One daemon thread per call: an abandoned call never delays later
        # calls and never keeps the interpreter alive at exit
        outcome: queue.Queue[tuple[bool, Any]] = queue.Queue(maxsize=1)

        def run() -> None:
            try:
                outcome.put((True, self.model.predict_interval(vector)))
            except Exception as e:  # Forwarded to the caller below
                outcome.put((False, e))

        worker = threading.Thread(target=run, name=f"predictor-{self.name}", daemon=True)
        worker.start()
        try:
            succeeded, value = outcome.get(timeout=self.timeout_seconds)
        except queue.Empty as e:
            logger.warning(
                f"Predictor '{self.name}' gave no answer within {self.timeout_seconds}s; "
                "abandoning the call"
            )
            raise PredictorUnavailableError(
                f"Predictor '{self.name}' timed out after {self.timeout_seconds}s"
            ) from e

        if not succeeded:
            raise PredictorUnavailableError(f"Predictor '{self.name}' failed: {value}") from value
        return value

    def __repr__(self) -> str:
        return f"LearnedPredictor(name={self.name!r}, model={type(self.model).__name__})"


# =============================================================================
# Loading
# =============================================================================


def model_from_document(document: dict[str, Any]) -> IntervalModel:
    """Build a model variant from its JSON document."""
    kind = document.get("kind")
    if kind == "linear":
        return LinearIntervalModel(
            weights=document["weights"],
            bias=float(document.get("bias", 0.0)),
            log_space=bool(document.get("log_space", True)),
        )
    if kind == "ensemble":
        members = [model_from_document(member) for member in document["members"]]
        return EnsembleIntervalModel(members=members, weights=document.get("weights"))
    raise ValueError(f"Unknown model kind: {kind!r}")


def load_predictor(
    model_ref: str | Path,
    max_interval: float = DEFAULT_MAX_INTERVAL,
    timeout_seconds: float | None = None,
) -> LearnedPredictor:
    """
    Load a predictor from a JSON model document.

    Raises:
        PredictorUnavailableError: file missing, unreadable, or invalid
    """
    path = Path(model_ref)
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
        model = model_from_document(document)
    except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise PredictorUnavailableError(f"Cannot load model from {path}: {e}") from e

    name = document.get("name") or path.stem
    logger.info(f"Loaded {document['kind']} model '{name}' from {path}")
    return LearnedPredictor(
        model,
        max_interval=max_interval,
        timeout_seconds=timeout_seconds,
        name=name,
    )


@dataclass
class PredictorRegistry:
    """
    Holds the currently active learned predictor.

    Reloads swap the reference under a lock, so a review in flight keeps
    using the predictor it started with and never sees a half-loaded model.
    """

    max_interval: float = DEFAULT_MAX_INTERVAL
    timeout_seconds: float | None = None
    _current: LearnedPredictor | None = field(default=None, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def current(self) -> LearnedPredictor | None:
        with self._lock:
            return self._current

    def install(self, predictor: LearnedPredictor | None) -> None:
        with self._lock:
            self._current = predictor

    def reload(self, model_ref: str | Path) -> LearnedPredictor:
        """
        Load a model and make it current.

        On failure the previous predictor stays installed and the error is
        re-raised.
        """
        try:
            predictor = load_predictor(
                model_ref,
                max_interval=self.max_interval,
                timeout_seconds=self.timeout_seconds,
            )
        except PredictorUnavailableError:
            logger.warning(f"Model reload from {model_ref} failed; keeping current predictor")
            raise

        self.install(predictor)
        return predictor

    def clear(self) -> None:
        self.install(None)
