"""
Claim scheduling: the service watcher, claim watcher and node monitor loops,
plus the liveness state they share.
"""

from ipclaim.scheduler.liveness import LivenessState, NodeState, NodeTransition
from ipclaim.scheduler.retry import RetryConfig, RetryManager, is_retryable_error
from ipclaim.scheduler.scheduler import IpClaimScheduler, SchedulerConfig
from ipclaim.scheduler.ticker import Ticker

__all__ = [
    # Scheduler
    "IpClaimScheduler",
    "SchedulerConfig",
    # Liveness
    "LivenessState",
    "NodeState",
    "NodeTransition",
    # Retry
    "RetryConfig",
    "RetryManager",
    "is_retryable_error",
    # Ticks
    "Ticker",
]
