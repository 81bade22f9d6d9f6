"""Noether keeper: oracle / liquidation / order / funding maintenance loop."""

from .config import AssetConfig, ErrorCodes, KeeperConfig, load_keeper_config
from .outcome import OutcomeKind, SkipReason, TaskName, TaskOutcome
from .stats import SessionStats

__all__ = [
    "AssetConfig",
    "ErrorCodes",
    "KeeperConfig",
    "OutcomeKind",
    "SessionStats",
    "SkipReason",
    "TaskName",
    "TaskOutcome",
    "load_keeper_config",
]
