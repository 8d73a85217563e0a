from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter


REGISTRY = CollectorRegistry()

HEALTH_HITS = Counter("bs_api_healthz_hits", "Health endpoint hits", registry=REGISTRY)
PROVIDER_ATTEMPTS = Counter(
    "bs_provider_attempts_total",
    "Image provider call attempts",
    ["route", "outcome"],
    registry=REGISTRY,
)
GENERATIONS = Counter(
    "bs_generations_total",
    "Generation requests reaching a terminal status",
    ["status"],
    registry=REGISTRY,
)
