"""Hazard lifecycle rules: admission, linking, consensus and the engine that runs them."""

from .policy import TimeWindowPolicy, RateLimiter, UnlimitedRateLimiter, FixedWindowRateLimiter
from .linking import LinkResolver
from .consensus import ConsensusClassifier, classify
from .gate import SubmissionGate
from .engine import LifecycleEngine

__all__ = [
    'TimeWindowPolicy',
    'RateLimiter',
    'UnlimitedRateLimiter',
    'FixedWindowRateLimiter',
    'LinkResolver',
    'ConsensusClassifier',
    'classify',
    'SubmissionGate',
    'LifecycleEngine',
]
