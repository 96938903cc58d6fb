"""
Algorithm Orchestrator - picks which predictor governs each review.

Modes:
- baseline:   baseline only
- learned:    baseline always (for comparison data) plus learned; learned is
              applied, falling back to baseline when it is unavailable
- comparison: both run; a fair coin from the injected RNG picks the applied
              interval independently on every call

The orchestrator holds no mutable state of its own. PredictorUnavailableError
never escapes ``resolve``.
"""

from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from loguru import logger

from recall.core.errors import PredictorUnavailableError
from recall.core.models import (
    AlgorithmMode,
    AlgorithmUsed,
    Item,
    LearnerSettings,
    ReviewRecord,
)
from recall.scheduling.baseline import BaselinePredictor, BaselineResult
from recall.scheduling.features import FeatureExtractor
from recall.scheduling.predictors import LearnedPredictor, PredictorRegistry

# Probability that comparison mode applies the learned interval
COMPARISON_LEARNED_SHARE = 0.5


@dataclass(frozen=True)
class Resolution:
    """Outcome of resolving one review."""

    applied_interval: float
    algorithm_used: AlgorithmUsed
    baseline_interval: float
    learned_interval: float | None
    strength: float
    difficulty: float


class AlgorithmOrchestrator:
    """
    Resolves a review into an applied interval plus comparison bookkeeping.

    Args:
        baseline: Deterministic predictor, always consulted
        predictors: Registry (or a single predictor) for the learned model
        extractor: Used when ``resolve`` is called without features
        rng: Random source for comparison-mode assignment
    """

    def __init__(
        self,
        baseline: BaselinePredictor | None = None,
        predictors: PredictorRegistry | LearnedPredictor | None = None,
        extractor: FeatureExtractor | None = None,
        rng: random.Random | None = None,
    ):
        self.baseline = baseline or BaselinePredictor()
        self.predictors = predictors
        self.extractor = extractor or FeatureExtractor()
        self.rng = rng or random.Random()

    def resolve(
        self,
        item: Item,
        history: Sequence[ReviewRecord],
        settings: LearnerSettings,
        recalled: bool,
        response_time_ms: int,
        features: np.ndarray | None = None,
    ) -> Resolution:
        """
        Compute the interval to apply for this review.

        Args:
            item: Item state before the review
            history: The item's review history
            settings: Learner settings (mode selection)
            recalled: Whether the answer was correct
            response_time_ms: Time taken to answer
            features: Precomputed feature vector; extracted from item and
                history when omitted

        Returns:
            Resolution with both predictions and the applied one
        """
        base = self.baseline.compute(item, recalled, response_time_ms)
        mode = settings.algorithm_mode

        if mode == AlgorithmMode.BASELINE:
            return self._resolution(base, AlgorithmUsed.BASELINE, None)

        if features is None:
            features = self.extractor.extract(item, history)
        learned = self._predict_learned(item, features)

        if learned is None:
            return self._resolution(base, AlgorithmUsed.BASELINE, None)

        if mode == AlgorithmMode.LEARNED:
            return self._resolution(base, AlgorithmUsed.LEARNED, learned)

        # Comparison: fresh, unbiased draw per review
        if self.rng.random() < COMPARISON_LEARNED_SHARE:
            used = AlgorithmUsed.LEARNED
        else:
            used = AlgorithmUsed.BASELINE
        logger.debug(f"Comparison draw for {item.id}: applying {used.value}")
        return self._resolution(base, used, learned)

    def _current_predictor(self) -> LearnedPredictor | None:
        if isinstance(self.predictors, PredictorRegistry):
            return self.predictors.current()
        return self.predictors

    def _predict_learned(self, item: Item, features: np.ndarray) -> float | None:
        predictor = self._current_predictor()
        if predictor is None:
            logger.warning(f"No learned predictor installed; using baseline for {item.id}")
            return None

        try:
            return predictor.predict_interval(features)
        except PredictorUnavailableError as e:
            logger.warning(f"Learned predictor unavailable for {item.id}, using baseline: {e}")
            return None

    @staticmethod
    def _resolution(base: BaselineResult, used: AlgorithmUsed, learned: float | None) -> Resolution:
        applied = learned if used == AlgorithmUsed.LEARNED else base.interval
        return Resolution(
            applied_interval=applied,
            algorithm_used=used,
            baseline_interval=base.interval,
            learned_interval=learned,
            strength=base.strength,
            difficulty=base.difficulty,
        )
