"""Retention evaluation: decide which snapshots are past the threshold and remove them.

Clusters are processed strictly one after another. Remote failures are
turned into :class:`ClusterResult` values (or per-snapshot errors) here, so
:func:`run_retention` never raises for an unreachable cluster or a failed
deletion.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol, Sequence

from .config import RunConfig
from .errors import ClusterUnreachable, SnapshotDeletionFailed, SnapshotListingFailed, VmEnumerationFailed
from .models import ClusterResult, RunReport, SnapshotEntry, SnapshotRecord, VmHandle, VmReport

logger = logging.getLogger(__name__)


class SnapshotDirectory(Protocol):
    """Remote operations the evaluator needs from a virtualization platform."""

    def connect(self, cluster: str) -> Any: ...

    def disconnect(self, session: Any) -> None: ...

    def list_vms(self, session: Any, tags: Sequence[str] | None = None) -> list[VmHandle]: ...

    def list_snapshots(self, vm: VmHandle) -> list[SnapshotRecord]: ...

    def delete_snapshot(self, snapshot: SnapshotRecord) -> None: ...


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_expired(created_at: datetime, now: datetime, retention_days: int) -> bool:
    return _as_utc(created_at) <= _as_utc(now) - timedelta(days=retention_days)


def snapshot_age_days(created_at: datetime, now: datetime) -> int:
    return (_as_utc(now) - _as_utc(created_at)).days


def evaluate_vm(
    directory: SnapshotDirectory,
    vm: VmHandle,
    now: datetime,
    retention_days: int,
    dry_run: bool = False,
) -> VmReport | None:
    """Evaluate one VM's snapshots; return its report section or None if nothing expired.

    Snapshots keep the order the platform returned them in. A deletion
    failure is recorded on that snapshot's entry and evaluation continues
    with the next one.
    """
    entries: list[SnapshotEntry] = []
    for snapshot in directory.list_snapshots(vm):
        if not is_expired(snapshot.created_at, now, retention_days):
            continue

        entry = SnapshotEntry(
            name=snapshot.name,
            description=snapshot.description or "",
            created_at=snapshot.created_at,
            age_days=snapshot_age_days(snapshot.created_at, now),
        )
        if dry_run:
            logger.info("[dry-run] Would delete snapshot '%s' on %s", snapshot.name, vm.name)
        else:
            try:
                directory.delete_snapshot(snapshot)
                entry.deleted = True
                logger.info("Deleted snapshot '%s' on %s", snapshot.name, vm.name)
            except SnapshotDeletionFailed as exc:
                entry.error = str(exc)
                logger.error("Failed to delete snapshot '%s' on %s: %s", snapshot.name, vm.name, exc)
        entries.append(entry)

    if not entries:
        return None
    return VmReport(cluster=vm.cluster, vm_name=vm.name, snapshots=entries)


def process_cluster(
    directory: SnapshotDirectory,
    cluster: str,
    config: RunConfig,
    now: datetime,
) -> ClusterResult:
    try:
        session = directory.connect(cluster)
    except ClusterUnreachable as exc:
        logger.error("Skipping cluster %s: %s", cluster, exc)
        return ClusterResult.failed(cluster, exc)

    try:
        try:
            vms = directory.list_vms(session, config.tags)
        except VmEnumerationFailed as exc:
            logger.error("Skipping cluster %s: %s", cluster, exc)
            return ClusterResult.failed(cluster, exc)

        result = ClusterResult(cluster=cluster)
        # sorted() is stable, so duplicate names keep discovery order
        for vm in sorted(vms, key=lambda v: v.name):
            if not vm.cluster:
                vm.cluster = cluster
            result.vms_scanned += 1
            try:
                section = evaluate_vm(directory, vm, now, config.retention_days, config.dry_run)
            except SnapshotListingFailed as exc:
                logger.error("Skipping VM %s on %s: %s", vm.name, cluster, exc)
                continue
            if section is None:
                continue
            result.vms.append(section)
            result.deleted += sum(1 for s in section.snapshots if s.deleted)
            result.failed_deletions += sum(1 for s in section.snapshots if s.error)
        return result
    finally:
        directory.disconnect(session)


def run_retention(
    directory: SnapshotDirectory,
    config: RunConfig,
    now: datetime | None = None,
) -> RunReport:
    """Process every configured cluster in order and collect the run report."""
    now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    report = RunReport(now=now, retention_days=config.retention_days, dry_run=config.dry_run)

    for cluster in config.clusters:
        logger.info("Processing cluster %s", cluster)
        result = process_cluster(directory, cluster, config, now)
        report.clusters.append(result)
        if result.ok:
            logger.info(
                "Cluster %s: %d VMs scanned, %d with expired snapshots",
                cluster,
                result.vms_scanned,
                len(result.vms),
            )

    return report
