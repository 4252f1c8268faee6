"""
Metrics Collection - Prometheus metrics
"""

import functools
import time

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST


class Metrics:
    """Prometheus metrics collector"""

    def __init__(self):
        self.registry = CollectorRegistry()

        # Inbound WhatsApp messages by pipeline outcome
        self.messages_total = Counter(
            'whatsapp_messages_processed_total',
            'Inbound WhatsApp messages by outcome',
            ['status'],
            registry=self.registry
        )

        self.webhook_latency = Histogram(
            'webhook_processing_seconds',
            'Webhook processing time in seconds',
            ['webhook'],
            registry=self.registry
        )

        self.handoffs_total = Counter(
            'handoffs_total',
            'Escalations to human operators',
            ['reason', 'priority'],
            registry=self.registry
        )

        self.followups_total = Counter(
            'followups_processed_total',
            'Follow-ups processed by type and result',
            ['followup_type', 'result'],
            registry=self.registry
        )

        # Worker status
        self.worker_status = Gauge(
            'worker_status',
            'Worker running status (1=running, 0=stopped)',
            ['worker_name'],
            registry=self.registry
        )

        # Error counter
        self.errors_total = Counter(
            'errors_total',
            'Total errors',
            ['error_type', 'component'],
            registry=self.registry
        )

        self.leads_total = Counter(
            'leads_total',
            'Leads created',
            ['source'],
            registry=self.registry
        )

    def record_message(self, status: str):
        self.messages_total.labels(status=status).inc()

    def record_webhook_latency(self, webhook: str, duration: float):
        self.webhook_latency.labels(webhook=webhook).observe(duration)

    def record_handoff(self, reason: str, priority: str):
        self.handoffs_total.labels(reason=reason, priority=priority).inc()

    def record_followup(self, followup_type: str, result: str):
        self.followups_total.labels(followup_type=followup_type, result=result).inc()

    def set_worker_status(self, worker_name: str, running: bool):
        """Set worker status"""
        self.worker_status.labels(worker_name=worker_name).set(1 if running else 0)

    def record_error(self, error_type: str, component: str):
        """Record an error"""
        self.errors_total.labels(error_type=error_type, component=component).inc()

    def record_lead(self, source: str):
        """Record new lead"""
        self.leads_total.labels(source=source).inc()

    def get_metrics(self) -> bytes:
        """Get metrics in Prometheus format"""
        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        """Get content type for metrics"""
        return CONTENT_TYPE_LATEST


# Singleton instance
metrics = Metrics()


def timer(webhook: str):
    """
    Decorator timing an async handler

    Usage:
        @timer('whatsapp')
        async def handle_webhook(payload):
            ...
    """
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                metrics.record_error(type(e).__name__, webhook)
                raise
            finally:
                metrics.record_webhook_latency(webhook, time.time() - start_time)
        return wrapper
    return decorator
