"""
Prometheus metrics for amr-ingest.

Counters cover rows, result units, interpretations, quality issues and
batch outcomes; one histogram times each import phase. Everything lives
on a private registry so importing the package never touches the
process-wide default.
"""
import os
from contextlib import contextmanager
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
)

REGISTRY = CollectorRegistry()


# =======================
# PARSING METRICS
# =======================

rows_parsed_total = Counter(
    name="amr_rows_parsed_total",
    documentation="Total number of source rows read by the parser",
    labelnames=["file_format"],
    registry=REGISTRY,
)

source_failures_total = Counter(
    name="amr_source_failures_total",
    documentation="Source files rejected before any row was produced",
    labelnames=["error_type"],  # UnsupportedFormat, CorruptSource
    registry=REGISTRY,
)

# =======================
# INTERPRETATION METRICS
# =======================

result_units_total = Counter(
    name="amr_result_units_total",
    documentation="Antibiotic result units by final status",
    labelnames=["status", "provenance"],
    registry=REGISTRY,
)

interpreted_categories_total = Counter(
    name="amr_interpreted_categories_total",
    documentation="Categories assigned by breakpoint interpretation",
    labelnames=["standard", "category"],
    registry=REGISTRY,
)

# =======================
# DATA QUALITY METRICS
# =======================

quality_issues_total = Counter(
    name="amr_quality_issues_total",
    documentation="Quality issues raised during import",
    labelnames=["kind", "severity"],
    registry=REGISTRY,
)

batch_quality_score = Gauge(
    name="amr_batch_quality_score",
    documentation="Mean quality score of the most recent batch",
    labelnames=["template"],
    registry=REGISTRY,
)

# =======================
# BATCH METRICS
# =======================

stage_duration_seconds = Histogram(
    name="amr_stage_duration_seconds",
    documentation="Time spent in each import phase",
    labelnames=["stage"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0],
    registry=REGISTRY,
)

batch_size_rows = Histogram(
    name="amr_batch_size_rows",
    documentation="Number of source rows in each batch",
    buckets=[10, 100, 500, 1000, 5000, 10000, 50000, 100000],
    registry=REGISTRY,
)

batches_total = Counter(
    name="amr_batches_total",
    documentation="Import batches by terminal status",
    labelnames=["status"],  # committed, failed, cancelled, rolled-back
    registry=REGISTRY,
)

rows_committed_total = Counter(
    name="amr_rows_committed_total",
    documentation="Rows written to the persistence store",
    labelnames=["table"],
    registry=REGISTRY,
)

rows_rolled_back_total = Counter(
    name="amr_rows_rolled_back_total",
    documentation="Rows removed by batch rollback",
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def start_metrics_server(port: Optional[int] = None) -> None:
    """Expose REGISTRY over HTTP on port, or METRICS_PORT, or 8000."""
    from prometheus_client import start_http_server

    start_http_server(port or int(os.getenv("METRICS_PORT", "8000")), registry=REGISTRY)


def _child(metric, labels):
    return metric.labels(**labels) if labels else metric


@contextmanager
def track_duration(histogram: Histogram, **labels):
    """
    Time the enclosed block into histogram, failures included.

        with track_duration(stage_duration_seconds, stage="parse"):
            ...
    """
    with _child(histogram, labels).time():
        yield


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    # zero-row batches still call this; counters reject negative increments
    if value <= 0:
        return
    _child(counter, labels).inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    _child(gauge, labels).set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    _child(histogram, labels).observe(value)


# =======================
# BATCH-SPECIFIC HELPERS
# =======================

def record_batch_outcome(
    status: str,
    parsed_rows: int,
    quality_score: float | None = None,
    template: str = "auto",
) -> None:
    """
    Record the terminal outcome of an import batch.

    Args:
        status: Final batch status
        parsed_rows: Number of source rows read
        quality_score: Mean quality score of the batch, if computed
        template: Template name used for mapping
    """
    increment_counter(batches_total, 1, status=status)
    observe_histogram(batch_size_rows, parsed_rows)
    if quality_score is not None:
        set_gauge(batch_quality_score, quality_score, template=template)


def record_quality_issue(kind: str, severity: str) -> None:
    increment_counter(quality_issues_total, 1, kind=kind, severity=severity)
