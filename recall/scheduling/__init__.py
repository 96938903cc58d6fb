"""
Scheduling Module - sequence, predictors, orchestration, reviews.

Flow for one review:
    ReviewProcessor -> FeatureExtractor -> AlgorithmOrchestrator
        (BaselinePredictor + LearnedPredictor) -> ItemSequence.advance
"""

from recall.scheduling.aggregate import LearnerAggregate
from recall.scheduling.baseline import BaselineConfig, BaselinePredictor, BaselineResult
from recall.scheduling.features import FEATURE_COUNT, FEATURE_NAMES, FeatureExtractor
from recall.scheduling.orchestrator import AlgorithmOrchestrator, Resolution
from recall.scheduling.predictors import (
    EnsembleIntervalModel,
    LearnedPredictor,
    LinearIntervalModel,
    PredictorRegistry,
    ScoringFunctionModel,
    load_predictor,
)
from recall.scheduling.review_processor import ReviewOutcome, ReviewProcessor
from recall.scheduling.sequence import ItemSequence

__all__ = [
    "ItemSequence",
    "LearnerAggregate",
    "BaselineConfig",
    "BaselinePredictor",
    "BaselineResult",
    "FEATURE_COUNT",
    "FEATURE_NAMES",
    "FeatureExtractor",
    "LinearIntervalModel",
    "ScoringFunctionModel",
    "EnsembleIntervalModel",
    "LearnedPredictor",
    "PredictorRegistry",
    "load_predictor",
    "AlgorithmOrchestrator",
    "Resolution",
    "ReviewProcessor",
    "ReviewOutcome",
]
