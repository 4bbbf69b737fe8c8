# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for monitoring the relay.

All metrics use the ``gmr_`` prefix (gmail-relay).

Metrics exposed:
    - ``gmr_sent_total``: Counter of messages accepted by Gmail.
    - ``gmr_errors_total``: Counter of failed sends per error kind.
    - ``gmr_rate_limited_total``: Counter of admission denials per tier.
    - ``gmr_attachment_bytes_total``: Counter of decoded attachment bytes sent.

Example:
    Accessing metrics via the REST API::

        GET /metrics
"""

from prometheus_client import CollectorRegistry, Counter, generate_latest


class RelayMetrics:
    """Prometheus metrics collector for the relay.

    Attributes:
        registry: The Prometheus CollectorRegistry holding all metrics.
        sent: Counter of delivered messages.
        errors: Counter of failures labeled by ``kind``.
        rate_limited: Counter of admission denials labeled by ``tier``.
        attachment_bytes: Counter of attachment payload bytes delivered.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """Initialize metrics with an optional custom registry.

        Args:
            registry: Optional Prometheus CollectorRegistry. If not provided,
                a new registry is created, which keeps test instances apart.
        """
        self.registry = registry or CollectorRegistry()
        self.sent = Counter(
            "gmr_sent_total",
            "Total messages delivered",
            registry=self.registry,
        )
        self.errors = Counter(
            "gmr_errors_total",
            "Total failed sends",
            ["kind"],
            registry=self.registry,
        )
        self.rate_limited = Counter(
            "gmr_rate_limited_total",
            "Total admission denials",
            ["tier"],
            registry=self.registry,
        )
        self.attachment_bytes = Counter(
            "gmr_attachment_bytes_total",
            "Total decoded attachment bytes delivered",
            registry=self.registry,
        )

    def inc_sent(self, attachment_bytes: int = 0) -> None:
        self.sent.inc()
        if attachment_bytes:
            self.attachment_bytes.inc(attachment_bytes)

    def inc_error(self, kind: str) -> None:
        """Increment the error counter for an error kind such as ``validation``."""
        self.errors.labels(kind=kind or "unknown").inc()

    def inc_rate_limited(self, tier: str) -> None:
        """Increment the denial counter for ``authenticated`` or ``anonymous``."""
        self.rate_limited.labels(tier=tier).inc()

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
