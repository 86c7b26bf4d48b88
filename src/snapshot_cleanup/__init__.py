"""Delete aged VM snapshots across vCenter clusters and mail a summary report."""

from .errors import (
    ClusterUnreachable,
    InvalidConfiguration,
    MailDeliveryFailed,
    SnapshotCleanupError,
    SnapshotDeletionFailed,
    SnapshotListingFailed,
    VmEnumerationFailed,
)
from .retention import run_retention

__version__ = "0.1.0"

__all__ = [
    "ClusterUnreachable",
    "InvalidConfiguration",
    "MailDeliveryFailed",
    "SnapshotCleanupError",
    "SnapshotDeletionFailed",
    "SnapshotListingFailed",
    "VmEnumerationFailed",
    "run_retention",
]
