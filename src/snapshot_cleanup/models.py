from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class VmHandle(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    cluster: str = ""
    tags: list[str] = Field(default_factory=list)
    ref: Any = Field(default=None, exclude=True, repr=False)


class SnapshotRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""
    created_at: datetime
    parent: Optional[str] = None
    ref: Any = Field(default=None, exclude=True, repr=False)


class SnapshotEntry(BaseModel):
    """One expired snapshot as it appears in the report."""

    model_config = ConfigDict(extra="ignore")

    name: str
    description: str = ""
    created_at: datetime
    age_days: int
    deleted: bool = False
    error: Optional[str] = None

    @property
    def created_display(self) -> str:
        return self.created_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


class VmReport(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cluster: str
    vm_name: str
    snapshots: list[SnapshotEntry] = Field(default_factory=list)


class ClusterResult(BaseModel):
    """Outcome of processing one cluster; ``ok`` is False when it was skipped."""

    model_config = ConfigDict(extra="ignore")

    cluster: str
    ok: bool = True
    error: Optional[str] = None
    vms: list[VmReport] = Field(default_factory=list)
    vms_scanned: int = 0
    deleted: int = 0
    failed_deletions: int = 0

    @classmethod
    def failed(cls, cluster: str, error: Exception) -> "ClusterResult":
        return cls(cluster=cluster, ok=False, error=str(error))


class RunReport(BaseModel):
    model_config = ConfigDict(extra="ignore")

    now: datetime
    retention_days: int
    dry_run: bool = False
    clusters: list[ClusterResult] = Field(default_factory=list)

    @property
    def entries(self) -> list[VmReport]:
        return [vm for result in self.clusters if result.ok for vm in result.vms]

    @property
    def failed_clusters(self) -> list[ClusterResult]:
        return [result for result in self.clusters if not result.ok]
