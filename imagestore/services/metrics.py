"""
Prometheus metrics for imagestore
Counts ingestion/deletion outcomes so failures can be alerted on
"""

import os

from prometheus_client import Counter

UPLOADS_TOTAL = Counter(
    "imagestore_uploads_total",
    "Total image ingestions",
    ["status"],
)

VARIANT_FAILURES = Counter(
    "imagestore_variant_failures_total",
    "Renditions that could not be generated",
    ["format"],
)

DELETIONS_TOTAL = Counter(
    "imagestore_deletions_total",
    "Image deletion attempts by outcome",
    ["outcome"],
)

METADATA_INCONSISTENCIES = Counter(
    "imagestore_metadata_inconsistencies_total",
    "Deletions that removed files but could not remove metadata",
)

# Check if metrics are enabled
ENABLED = os.getenv("METRICS_ENABLED") == "1"


def configure(enabled: bool):
    global ENABLED
    ENABLED = enabled


def record_upload(status: str):
    """Record image ingestion outcome"""
    if ENABLED:
        UPLOADS_TOTAL.labels(status=status).inc()


def record_variant_failure(fmt: str):
    if ENABLED:
        VARIANT_FAILURES.labels(format=fmt).inc()


def record_deletion(outcome: str):
    """Record image deletion outcome"""
    if ENABLED:
        DELETIONS_TOTAL.labels(outcome=outcome).inc()


def record_metadata_inconsistency():
    # Always counted: this one needs manual reconciliation
    METADATA_INCONSISTENCIES.inc()
