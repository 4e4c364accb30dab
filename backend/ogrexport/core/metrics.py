"""
Prometheus Metrics
Export pipeline counters and timings, collected on a private registry
"""

from prometheus_client import CollectorRegistry, Counter, Histogram

# Create a global registry for metrics
metrics_registry = CollectorRegistry()

# Requests attached to a job; coalesced="true" when an identical job was already baking
export_requests_total = Counter(
    'ogr_export_requests_total',
    'Total export requests',
    ['format', 'coalesced'],
    registry=metrics_registry
)

export_jobs_total = Counter(
    'ogr_export_jobs_total',
    'Total baking jobs by outcome',
    ['format', 'outcome'],
    registry=metrics_registry
)

export_generation_seconds = Histogram(
    'ogr_export_generation_seconds',
    'Time spent producing an export artifact',
    ['format'],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
    registry=metrics_registry
)

export_transfers_total = Counter(
    'ogr_export_transfers_total',
    'Artifact transfers to clients by outcome',
    ['outcome'],
    registry=metrics_registry
)
