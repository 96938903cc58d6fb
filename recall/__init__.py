"""
recall-scheduler: spaced-repetition scheduling with a baseline SM-2 style
predictor, a pluggable learned predictor, and an A/B comparison layer.
"""

__version__ = "1.0.0"
