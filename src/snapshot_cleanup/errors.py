"""Failure taxonomy for snapshot cleanup runs."""


class SnapshotCleanupError(Exception):
    """Base class for every error raised by this package."""


class InvalidConfiguration(SnapshotCleanupError):
    """Run configuration is malformed; nothing has been contacted yet."""


class ClusterUnreachable(SnapshotCleanupError):
    """A session to the cluster could not be opened."""


class VmEnumerationFailed(SnapshotCleanupError):
    """The VM inventory of a connected cluster could not be listed."""


class SnapshotListingFailed(SnapshotCleanupError):
    """The snapshot tree of a single VM could not be read."""


class SnapshotDeletionFailed(SnapshotCleanupError):
    """Removing a single snapshot failed."""


class MailDeliveryFailed(SnapshotCleanupError):
    """The summary report could not be handed to the mail server."""
