"""
ABOUTME: Prometheus metrics for the quota service
ABOUTME: Tracks HTTP traffic, quota mutations, store failures and admission denials
"""

from prometheus_client import Counter, Histogram, Info

# ============================================================================
# HTTP METRICS
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ============================================================================
# QUOTA METRICS
# ============================================================================

gems_deducted_total = Counter(
    "gems_deducted_total",
    "Total gems deducted",
)

gem_deductions_rejected_total = Counter(
    "gem_deductions_rejected_total",
    "Gem deductions rejected for insufficient balance",
)

quota_resets_total = Counter(
    "quota_resets_total",
    "Quota windows reset",
    ["kind", "trigger"],  # kind: gem|token, trigger: lazy|explicit
)

tokens_tracked_total = Counter(
    "tokens_tracked_total",
    "Total AI tokens recorded against the token lockout",
)

token_timeouts_total = Counter(
    "token_timeouts_total",
    "Token lockouts triggered",
)

store_operation_duration_seconds = Histogram(
    "store_operation_duration_seconds",
    "Quota store operation latency in seconds",
    ["operation"],
    buckets=(0.001, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)

store_errors_total = Counter(
    "store_errors_total",
    "Quota store failures",
    ["operation"],
)

# ============================================================================
# ADMISSION METRICS
# ============================================================================

admission_denied_total = Counter(
    "admission_denied_total",
    "Requests denied by the admission controller",
    ["reason"],  # circuit_open, cooldown, concurrency
)

circuit_breaker_opened_total = Counter(
    "circuit_breaker_opened_total",
    "Times the admission circuit breaker opened",
)

# ============================================================================
# ERROR METRICS
# ============================================================================

errors_total = Counter(
    "errors_total",
    "Total errors by type and endpoint",
    ["error_type", "endpoint"],
)

app_info = Info(
    "app_info",
    "Application metadata",
)


class MetricsManager:
    """Central manager for application metrics"""

    @staticmethod
    def set_app_info(version: str, environment: str, store_backend: str):
        """Set application metadata"""
        app_info.info(
            {
                "version": version,
                "environment": environment,
                "store_backend": store_backend,
            }
        )

    @staticmethod
    def track_request(method: str, endpoint: str, status_code: int, duration: float):
        """Track HTTP request"""
        http_requests_total.labels(
            method=method, endpoint=endpoint, status_code=status_code
        ).inc()
        http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
            duration
        )

    @staticmethod
    def track_deduction(amount: int, success: bool):
        """Track a gem debit attempt"""
        if success:
            gems_deducted_total.inc(amount)
        else:
            gem_deductions_rejected_total.inc()

    @staticmethod
    def track_reset(kind: str, trigger: str):
        """Track a quota window reset"""
        quota_resets_total.labels(kind=kind, trigger=trigger).inc()

    @staticmethod
    def track_tokens(tokens: int, timeout_triggered: bool):
        """Track tokens added to the lockout counter"""
        tokens_tracked_total.inc(tokens)
        if timeout_triggered:
            token_timeouts_total.inc()

    @staticmethod
    def track_store_operation(operation: str, duration: float, success: bool = True):
        """Track quota store call"""
        store_operation_duration_seconds.labels(operation=operation).observe(duration)
        if not success:
            store_errors_total.labels(operation=operation).inc()

    @staticmethod
    def track_admission_denied(reason: str):
        """Track admission denial"""
        admission_denied_total.labels(reason=reason).inc()

    @staticmethod
    def track_circuit_opened():
        """Track circuit breaker activation"""
        circuit_breaker_opened_total.inc()

    @staticmethod
    def track_error(error_type: str, endpoint: str):
        """Track error occurrence"""
        errors_total.labels(error_type=error_type, endpoint=endpoint).inc()


# Global metrics manager instance
metrics_manager = MetricsManager()
