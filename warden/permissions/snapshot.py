"""Snapshot schema for persisting the registries.

The engine does not pick a file format; it produces and accepts plain
dictionaries validated by these Pydantic models. Every field of a record,
group and principal survives a ``dump``/``parse`` round trip, including
expiry timestamps, provenance strings and the order of memberships and
inherited groups.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError as SchemaError, field_validator

from warden.permissions.models import Group, PermissionRecord, PrincipalPermissions, utcnow
from warden.utils.errors import PersistenceError, WardenError

SNAPSHOT_VERSION = 1


class RecordSnapshot(BaseModel):
    node: str
    value: bool = True
    expires_at: Optional[datetime] = None
    granted_by: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def from_record(cls, record: PermissionRecord) -> "RecordSnapshot":
        return cls(
            node=record.node,
            value=record.value,
            expires_at=record.expires_at,
            granted_by=record.granted_by,
            reason=record.reason,
        )

    def to_record(self) -> PermissionRecord:
        return PermissionRecord(self.node, self.value, self.expires_at, self.granted_by, self.reason)


def _by_node(records: List[RecordSnapshot]) -> Dict[str, PermissionRecord]:
    built = [record.to_record() for record in records]
    return {record.node: record for record in built}


def _unique_nodes(records: List[RecordSnapshot]) -> List[RecordSnapshot]:
    seen = set()
    for record in records:
        node = record.node.strip()
        if node in seen:
            raise ValueError(f"Duplicate permission node {record.node!r}")
        seen.add(node)
    return records


class GroupSnapshot(BaseModel):
    name: str
    display_name: Optional[str] = None
    description: str = ""
    priority: int = 0
    permissions: List[RecordSnapshot] = Field(default_factory=list)
    inherited_groups: List[str] = Field(default_factory=list)
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("permissions")
    @classmethod
    def validate_permissions(cls, value: List[RecordSnapshot]) -> List[RecordSnapshot]:
        return _unique_nodes(value)

    @classmethod
    def from_group(cls, group: Group) -> "GroupSnapshot":
        return cls(
            name=group.name,
            display_name=group.display_name,
            description=group.description,
            priority=group.priority,
            permissions=[RecordSnapshot.from_record(record) for record in group.permissions.values()],
            inherited_groups=list(group.inherited_groups),
            metadata=dict(group.metadata),
        )

    def to_group(self) -> Group:
        return Group(
            name=self.name,
            display_name=self.display_name,
            description=self.description,
            priority=self.priority,
            permissions=_by_node(self.permissions),
            inherited_groups=list(self.inherited_groups),
            metadata=dict(self.metadata),
        )


class PrincipalSnapshot(BaseModel):
    principal_id: str
    username: Optional[str] = None
    groups: List[str] = Field(default_factory=list)
    direct_permissions: List[RecordSnapshot] = Field(default_factory=list)
    last_updated: datetime
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("direct_permissions")
    @classmethod
    def validate_direct_permissions(cls, value: List[RecordSnapshot]) -> List[RecordSnapshot]:
        return _unique_nodes(value)

    @classmethod
    def from_principal(cls, principal: PrincipalPermissions) -> "PrincipalSnapshot":
        return cls(
            principal_id=principal.principal_id,
            username=principal.username,
            groups=list(principal.groups),
            direct_permissions=[
                RecordSnapshot.from_record(record) for record in principal.direct_permissions.values()
            ],
            last_updated=principal.last_updated,
            metadata=dict(principal.metadata),
        )

    def to_principal(self) -> PrincipalPermissions:
        return PrincipalPermissions(
            principal_id=self.principal_id,
            username=self.username,
            groups=list(self.groups),
            direct_permissions=_by_node(self.direct_permissions),
            last_updated=self.last_updated,
            metadata=dict(self.metadata),
        )


class Snapshot(BaseModel):
    version: int = SNAPSHOT_VERSION
    saved_at: datetime = Field(default_factory=utcnow)
    groups: List[GroupSnapshot] = Field(default_factory=list)
    principals: List[PrincipalSnapshot] = Field(default_factory=list)

    @field_validator("version")
    @classmethod
    def validate_version(cls, value: int) -> int:
        if value != SNAPSHOT_VERSION:
            raise ValueError(f"Unsupported snapshot version {value}")
        return value


def build_snapshot(groups: Iterable[Group], principals: Iterable[PrincipalPermissions]) -> Snapshot:
    return Snapshot(
        groups=[GroupSnapshot.from_group(group) for group in groups],
        principals=[PrincipalSnapshot.from_principal(principal) for principal in principals],
    )


def dump(snapshot: Snapshot) -> Dict[str, Any]:
    """Return a JSON-compatible dictionary for ``snapshot``."""

    return snapshot.model_dump(mode="json")


def parse(data: Any) -> Snapshot:
    if not isinstance(data, dict):
        raise PersistenceError("Snapshot must be a mapping")
    try:
        return Snapshot.model_validate(data)
    except SchemaError as exc:
        raise PersistenceError(f"Invalid snapshot: {exc}") from exc


def restore(snapshot: Snapshot) -> Tuple[List[Group], List[PrincipalPermissions]]:
    """Rebuild registry contents from a validated snapshot."""

    try:
        groups = [entry.to_group() for entry in snapshot.groups]
        principals = [entry.to_principal() for entry in snapshot.principals]
    except WardenError as exc:
        raise PersistenceError(f"Invalid snapshot: {exc}") from exc
    names = [group.name for group in groups]
    if len(names) != len(set(names)):
        raise PersistenceError("Invalid snapshot: duplicate group names")
    ids = [principal.principal_id for principal in principals]
    if len(ids) != len(set(ids)):
        raise PersistenceError("Invalid snapshot: duplicate principal ids")
    return groups, principals


__all__ = [
    "SNAPSHOT_VERSION",
    "RecordSnapshot",
    "GroupSnapshot",
    "PrincipalSnapshot",
    "Snapshot",
    "build_snapshot",
    "dump",
    "parse",
    "restore",
]
