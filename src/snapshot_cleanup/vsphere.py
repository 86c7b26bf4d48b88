"""vCenter access through pyVmomi.

Implements the remote side of the retention run: one ``SmartConnect``
session per cluster, VM listing through a container view (tag filters are
resolved by :mod:`snapshot_cleanup.tagging`), a depth-first
flattening of each VM's snapshot tree and snapshot removal. pyVmomi
exceptions are wrapped in the package's error types here so callers never
see platform faults directly.
"""

from __future__ import annotations

import contextlib
import logging
import ssl
from typing import Any, Iterator, NamedTuple, Sequence

from pyVim.connect import Disconnect, SmartConnect
from pyVim.task import WaitForTask
from pyVmomi import vim

from .errors import ClusterUnreachable, SnapshotDeletionFailed, SnapshotListingFailed, VmEnumerationFailed
from .models import SnapshotRecord, VmHandle
from .tagging import TaggingClient

logger = logging.getLogger(__name__)


def _ssl_context(validate_certs: bool) -> ssl.SSLContext:
    if validate_certs:
        return ssl.create_default_context()
    return ssl._create_unverified_context()


class VSphereSession(NamedTuple):
    cluster: str
    si: Any


def flatten_snapshot_tree(tree: Sequence[Any], parent: str | None = None) -> list[SnapshotRecord]:
    """Flatten ``vim.vm.SnapshotTree`` nodes depth-first, keeping API order."""
    records: list[SnapshotRecord] = []
    for node in tree or []:
        records.append(
            SnapshotRecord(
                name=node.name,
                description=node.description or "",
                created_at=node.createTime,
                parent=parent,
                ref=node.snapshot,
            )
        )
        records.extend(flatten_snapshot_tree(node.childSnapshotList, parent=node.name))
    return records


class VSphereDirectory:
    """Cluster session provider plus VM and snapshot directory backed by vCenter."""

    def __init__(
        self,
        user: str,
        password: str,
        validate_certs: bool = False,
        port: int = 443,
    ) -> None:
        self._user = user
        self._password = password
        self._validate_certs = validate_certs
        self._port = port

    def connect(self, cluster: str) -> VSphereSession:
        logger.debug("Connecting to %s as %s", cluster, self._user)
        try:
            si = SmartConnect(
                host=cluster,
                user=self._user,
                pwd=self._password,
                port=self._port,
                sslContext=_ssl_context(self._validate_certs),
            )
        except Exception as exc:
            raise ClusterUnreachable(f"Cannot connect to {cluster}: {exc}") from exc
        return VSphereSession(cluster, si)

    def disconnect(self, session: VSphereSession) -> None:
        try:
            Disconnect(session.si)
        except Exception as exc:
            logger.warning("Disconnect failed: %s", exc)

    @contextlib.contextmanager
    def session(self, cluster: str) -> Iterator[VSphereSession]:
        session = self.connect(cluster)
        try:
            yield session
        finally:
            self.disconnect(session)

    def list_vms(self, session: VSphereSession, tags: Sequence[str] | None = None) -> list[VmHandle]:
        wanted = set(tags or [])
        try:
            tagged: dict[str, list[str]] = {}
            if wanted:
                tagged = self._vm_tags(session.cluster, sorted(wanted))
            content = session.si.RetrieveContent()
            container_view = content.viewManager.CreateContainerView(
                content.rootFolder, [vim.VirtualMachine], True
            )
            try:
                children = list(container_view.view)
            finally:
                container_view.Destroy()

            vms: list[VmHandle] = []
            for vm in children:
                config = vm.config
                if config is not None and config.template:
                    logger.debug("Skipping template: %s", vm.name)
                    continue
                tag_names = tagged.get(vm._moId, [])
                if wanted and not tag_names:
                    continue
                vms.append(VmHandle(name=vm.name, tags=tag_names, ref=vm))
        except Exception as exc:
            raise VmEnumerationFailed(f"Failed to list VMs: {exc}") from exc

        logger.info("Retrieved %d VMs%s", len(vms), f" tagged {sorted(wanted)}" if wanted else "")
        return vms

    def _vm_tags(self, cluster: str, names: Sequence[str]) -> dict[str, list[str]]:
        with TaggingClient(cluster, self._user, self._password, validate_certs=self._validate_certs) as tagging:
            return tagging.vm_tags(names)

    def list_snapshots(self, vm: VmHandle) -> list[SnapshotRecord]:
        try:
            info = vm.ref.snapshot
            if info is None:
                return []
            return flatten_snapshot_tree(info.rootSnapshotList)
        except Exception as exc:
            raise SnapshotListingFailed(f"Failed to read snapshots of {vm.name}: {exc}") from exc

    def delete_snapshot(self, snapshot: SnapshotRecord) -> None:
        try:
            task = snapshot.ref.RemoveSnapshot_Task(removeChildren=False)
            WaitForTask(task)
        except Exception as exc:
            raise SnapshotDeletionFailed(f"Failed to remove snapshot '{snapshot.name}': {exc}") from exc
