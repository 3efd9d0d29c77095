"""Utility modules for logging, auditing and retries."""
from .audit_log import ChangeRecord, ChangeTracker, get_recent_changes, setup_audit_logging
from .logging_config import (
    setup_logging,
    teardown_logging,
    timed,
    timed_section,
    timed_section_sync,
    perf_logger,
)
from .retry import RETRYABLE_EXCEPTIONS, RetryPolicy, is_retryable, with_retry

__all__ = [
    # Retry
    "RETRYABLE_EXCEPTIONS",
    "RetryPolicy",
    "is_retryable",
    "with_retry",
    # Logging
    "setup_logging",
    "teardown_logging",
    "timed",
    "timed_section",
    "timed_section_sync",
    "perf_logger",
    # Audit
    "ChangeRecord",
    "ChangeTracker",
    "get_recent_changes",
    "setup_audit_logging",
]
