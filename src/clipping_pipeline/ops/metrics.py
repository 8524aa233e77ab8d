from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

REGISTRY = CollectorRegistry()

# Latency buckets (seconds) for external media operations.
STAGE_BUCKETS = (
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    1200.0,
    1800.0,
    3600.0,
)

# Jobs
jobs_submitted = Counter(
    "clipping_pipeline_jobs_submitted_total", "Jobs accepted by submit()", registry=REGISTRY
)
jobs_deduplicated = Counter(
    "clipping_pipeline_jobs_deduplicated_total",
    "Submissions resolved to an existing job id",
    registry=REGISTRY,
)
jobs_finished = Counter(
    "clipping_pipeline_jobs_finished_total",
    "Jobs finished by final state",
    labelnames=("state",),
    registry=REGISTRY,
)
jobs_canceled = Counter(
    "clipping_pipeline_jobs_canceled_total", "Jobs removed by cancel()", registry=REGISTRY
)
jobs_evicted = Counter(
    "clipping_pipeline_jobs_evicted_total",
    "Jobs evicted by retention",
    labelnames=("state",),
    registry=REGISTRY,
)

# Stages
stage_attempts = Counter(
    "clipping_pipeline_stage_attempts_total",
    "Stage executions",
    labelnames=("stage",),
    registry=REGISTRY,
)
stage_errors = Counter(
    "clipping_pipeline_stage_errors_total",
    "Stage executions that failed",
    labelnames=("stage",),
    registry=REGISTRY,
)
stage_retries = Counter(
    "clipping_pipeline_stage_retries_total",
    "Stage retries scheduled",
    labelnames=("stage",),
    registry=REGISTRY,
)
stage_seconds = Histogram(
    "clipping_pipeline_stage_seconds",
    "Stage execution latency (seconds)",
    labelnames=("stage",),
    registry=REGISTRY,
    buckets=STAGE_BUCKETS,
)
stage_queue_depth = Gauge(
    "clipping_pipeline_stage_queue_depth",
    "Jobs waiting per stage",
    labelnames=("stage",),
    registry=REGISTRY,
)

# Reprocess cache
reprocess_cache_lookups = Counter(
    "clipping_pipeline_reprocess_cache_lookups_total",
    "Reprocess cache lookups by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

