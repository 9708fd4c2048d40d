from __future__ import annotations

from pydantic import BaseModel, Field

from .directory import DirectorySnapshot
from .events import EventRow


class InstanceOut(BaseModel):
    name: str
    ip: str


class SkippedTaskOut(BaseModel):
    task_id: str
    message: str


class SnapshotOut(BaseModel):
    built_at: str | None = Field(None, description="UTC time the snapshot was published; null before the first build")
    service_count: int = 0
    task_count: int = 0
    instances: list[InstanceOut] = Field(default_factory=list)
    skipped_tasks: list[SkippedTaskOut] = Field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snap: DirectorySnapshot) -> "SnapshotOut":
        return cls(
            built_at=snap.built_at,
            service_count=snap.service_count,
            task_count=snap.task_count,
            instances=[InstanceOut(name=i.name, ip=i.ip) for i in snap.instances],
            skipped_tasks=[SkippedTaskOut(task_id=w.task_id, message=w.message) for w in snap.warnings],
        )


class EventOut(BaseModel):
    id: int
    ts: str
    level: str
    message: str
    service_name: str | None = None

    @classmethod
    def from_row(cls, row: EventRow) -> "EventOut":
        return cls(id=row.id, ts=row.ts, level=row.level, message=row.message, service_name=row.service_name)
