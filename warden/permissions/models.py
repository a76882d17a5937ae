"""Permission data types.

A :class:`PermissionRecord` is one grant (or explicit denial) of a node. Groups
and principals each hold at most one record per node; granting a node again
replaces the previous record rather than merging with it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from warden.utils.errors import ValidationError

WILDCARD = "*"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def require_text(value: Optional[str], what: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(f"{what} cannot be empty")
    return str(value).strip()


def normalize_group_name(name: Optional[str]) -> str:
    return require_text(name, "Group name").lower()


def node_key(node: Optional[str]) -> Optional[str]:
    """Return the stored form of ``node``, or ``None`` when it is blank."""

    if node is None or not str(node).strip():
        return None
    return str(node).strip()


def _unique_groups(names: List[str]) -> List[str]:
    unique: List[str] = []
    for name in names:
        name = normalize_group_name(name)
        if name not in unique:
            unique.append(name)
    return unique


def _keyed_records(records: Dict[str, PermissionRecord]) -> Dict[str, PermissionRecord]:
    """Re-key ``records`` on their own node, rejecting mismatches and duplicates."""

    keyed: Dict[str, PermissionRecord] = {}
    for key, record in records.items():
        if node_key(key) != record.node:
            raise ValidationError(f"Permission key {key!r} does not match node {record.node!r}")
        if record.node in keyed:
            raise ValidationError(f"Duplicate permission node {record.node!r}")
        keyed[record.node] = record
    return keyed


@dataclass
class PermissionRecord:
    """A single grant or explicit denial of ``node``."""

    node: str
    value: bool = True
    expires_at: Optional[datetime] = None
    granted_by: Optional[str] = None
    reason: Optional[str] = None

    def __post_init__(self) -> None:
        self.node = require_text(self.node, "Permission node")
        self.expires_at = as_utc(self.expires_at)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (as_utc(now) or utcnow()) > self.expires_at

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return not self.is_expired(now)


def _lookup(records: Dict[str, PermissionRecord], node: str, now: Optional[datetime]) -> Optional[PermissionRecord]:
    record = records.get(node_key(node))
    if record is not None and record.is_valid(now):
        return record
    return None


def _purge(records: Dict[str, PermissionRecord], now: datetime) -> int:
    expired = [node for node, record in records.items() if record.is_expired(now)]
    for node in expired:
        del records[node]
    return len(expired)


@dataclass
class Group:
    """A named, inheritable bundle of permission records.

    ``priority`` is kept for ordering in listings only; resolution never looks
    at it. ``inherited_groups`` may name groups that do not exist and may form
    cycles; both are tolerated by the resolver.
    """

    name: str
    display_name: Optional[str] = None
    description: str = ""
    priority: int = 0
    permissions: Dict[str, PermissionRecord] = field(default_factory=dict)
    inherited_groups: List[str] = field(default_factory=list)
    metadata: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.normalize()

    def normalize(self) -> None:
        """Fold names and re-key records; raises ``ValidationError`` on bad data."""

        self.name = normalize_group_name(self.name)
        if not self.display_name:
            self.display_name = self.name
        self.inherited_groups = _unique_groups(self.inherited_groups)
        self.permissions = _keyed_records(self.permissions)

    def set_permission(
        self,
        node: str,
        value: bool = True,
        expires_at: Optional[datetime] = None,
        granted_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> PermissionRecord:
        record = PermissionRecord(node, value, expires_at, granted_by, reason)
        self.permissions[record.node] = record
        return record

    def remove_permission(self, node: str) -> bool:
        return self.permissions.pop(node_key(node), None) is not None

    def get_permission(self, node: str, now: Optional[datetime] = None) -> Optional[PermissionRecord]:
        """Return the valid record for exactly ``node``, if any."""

        return _lookup(self.permissions, node, now)

    def add_inheritance(self, parent: str) -> bool:
        parent = normalize_group_name(parent)
        if parent in self.inherited_groups:
            return False
        self.inherited_groups.append(parent)
        return True

    def remove_inheritance(self, parent: str) -> bool:
        parent = normalize_group_name(parent)
        if parent not in self.inherited_groups:
            return False
        self.inherited_groups.remove(parent)
        return True

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        return _purge(self.permissions, as_utc(now) or utcnow())


@dataclass
class PrincipalPermissions:
    """Direct grants and group memberships of one principal."""

    principal_id: str
    username: Optional[str] = None
    groups: List[str] = field(default_factory=list)
    direct_permissions: Dict[str, PermissionRecord] = field(default_factory=dict)
    last_updated: datetime = field(default_factory=utcnow)
    metadata: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.normalize()

    def normalize(self) -> None:
        self.principal_id = require_text(self.principal_id, "Principal id")
        if not self.username:
            self.username = self.principal_id
        self.last_updated = as_utc(self.last_updated)
        # ordered set semantics
        self.groups = _unique_groups(self.groups)
        self.direct_permissions = _keyed_records(self.direct_permissions)

    def touch(self) -> None:
        self.last_updated = utcnow()

    def add_group(self, group_name: str) -> bool:
        group_name = normalize_group_name(group_name)
        if group_name in self.groups:
            return False
        self.groups.append(group_name)
        self.touch()
        return True

    def remove_group(self, group_name: str) -> bool:
        group_name = normalize_group_name(group_name)
        if group_name not in self.groups:
            return False
        self.groups.remove(group_name)
        self.touch()
        return True

    def set_permission(
        self,
        node: str,
        value: bool = True,
        expires_at: Optional[datetime] = None,
        granted_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> PermissionRecord:
        record = PermissionRecord(node, value, expires_at, granted_by, reason)
        self.direct_permissions[record.node] = record
        self.touch()
        return record

    def remove_permission(self, node: str) -> bool:
        if self.direct_permissions.pop(node_key(node), None) is None:
            return False
        self.touch()
        return True

    def get_permission(self, node: str, now: Optional[datetime] = None) -> Optional[PermissionRecord]:
        return _lookup(self.direct_permissions, node, now)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        removed = _purge(self.direct_permissions, as_utc(now) or utcnow())
        if removed:
            self.touch()
        return removed


__all__ = [
    "WILDCARD",
    "PermissionRecord",
    "Group",
    "PrincipalPermissions",
    "normalize_group_name",
    "node_key",
    "utcnow",
]
