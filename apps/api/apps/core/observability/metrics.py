"""
Metrics instrumentation wrapper around prometheus_client.
"""
import time
from functools import wraps

from prometheus_client import Counter, Histogram


class MetricsRegistry:
    """
    Central metrics registry.

    Provides typed access to all application metrics.
    """

    def __init__(self):
        self._setup_metrics()

    def _create_counter(self, name, description, labels=None):
        return Counter(name, description, labels or [])

    def _create_histogram(self, name, description, labels=None, buckets=None):
        if buckets:
            return Histogram(name, description, labels or [], buckets=buckets)
        return Histogram(name, description, labels or [])

    def _setup_metrics(self):
        """Setup all application metrics."""

        # ===================================================================
        # Remote File Gateway
        # ===================================================================
        self.file_gateway_calls_total = self._create_counter(
            'file_gateway_calls_total',
            'Calls made to the remote file gateway',
            ['operation', 'result']  # operation: upload|delete|batch_delete
        )

        self.orphaned_files_total = self._create_counter(
            'orphaned_files_total',
            'Remote files left behind after a failed delete',
            ['phase']  # commit|rollback
        )

        # ===================================================================
        # Pending Operation Ledger
        # ===================================================================
        self.ledger_commits_total = self._create_counter(
            'ledger_commits_total',
            'Ledger commits',
            ['result']  # success|partial_upload_failure
        )

        self.ledger_rollbacks_total = self._create_counter(
            'ledger_rollbacks_total',
            'Ledger rollbacks',
            ['result']  # clean|with_failures
        )

        self.ledger_commit_duration_seconds = self._create_histogram(
            'ledger_commit_duration_seconds',
            'Duration of a ledger commit including remote calls',
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
        )

        # ===================================================================
        # Editor Sessions
        # ===================================================================
        self.medical_history_saves_total = self._create_counter(
            'medical_history_saves_total',
            'Medical history session saves',
            ['result']  # success|validation_failed|commit_failed|persist_failed
        )

        self.medical_history_discards_total = self._create_counter(
            'medical_history_discards_total',
            'Medical history session discards',
            ['had_changes']
        )

        # ===================================================================
        # Storage API
        # ===================================================================
        self.storage_requests_total = self._create_counter(
            'storage_requests_total',
            'Storage API requests',
            ['operation', 'status']
        )

    def track_duration(self, histogram_metric):
        """
        Decorator to track function duration.

        Usage:
            @metrics.track_duration(metrics.ledger_commit_duration_seconds)
            def commit(self, gateway, temp_store, owner):
                ...
        """
        def decorator(func):
            @wraps(func)
            def wrapper(*args, **kwargs):
                start_time = time.time()
                try:
                    return func(*args, **kwargs)
                finally:
                    histogram_metric.observe(time.time() - start_time)
            return wrapper
        return decorator


# Global metrics instance
metrics = MetricsRegistry()
