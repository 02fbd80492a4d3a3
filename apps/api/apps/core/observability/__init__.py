"""
Observability module.

Provides structured logging, metrics, and request correlation
with PHI/PII protection.
"""
from .metrics import metrics
from .events import log_domain_event, log_orphaned_file
from .logging import get_sanitized_logger

__all__ = ['metrics', 'log_domain_event', 'log_orphaned_file', 'get_sanitized_logger']
