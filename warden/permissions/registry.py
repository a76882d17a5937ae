"""Group and principal registries.

Both registries are guarded by the same re-entrant lock. Deleting a group has
to touch every principal, so a single coarse lock keeps the two stores
consistent without any lock ordering between them.

Registries own their instances: public accessors return deep copies and
changes are pushed back through :meth:`GroupRegistry.update_group` or
:meth:`PrincipalRegistry.set_principal`. The ``live`` accessors return the
stored objects and may only be used by callers already holding ``lock``.
"""

from __future__ import annotations

import copy
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from warden.permissions.models import (
    WILDCARD,
    Group,
    PermissionRecord,
    PrincipalPermissions,
    normalize_group_name,
    require_text,
)
from warden.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_GROUP = "default"


def principal_key(principal_id: Optional[str]) -> Optional[str]:
    if principal_id is None or not str(principal_id).strip():
        return None
    return str(principal_id).strip()


def builtin_groups() -> List[Group]:
    """Return fresh copies of the groups every new engine starts with."""

    default = Group("default", "Default", "Default group for all users", 0)
    default.set_permission("basic.chat")
    default.set_permission("basic.move")

    moderator = Group("moderator", "Moderator", "Moderator group with limited admin permissions", 500)
    moderator.set_permission("admin.kick")
    moderator.set_permission("admin.mute")
    moderator.set_permission("admin.teleport")
    moderator.add_inheritance("default")

    admin = Group("admin", "Administrator", "Administrator group with full permissions", 1000)
    admin.set_permission(WILDCARD)

    return [default, moderator, admin]


class PrincipalRegistry:
    """Stores :class:`PrincipalPermissions`, creating entries on first access."""

    def __init__(self, lock: threading.RLock, *, default_group: str = DEFAULT_GROUP) -> None:
        self.lock = lock
        self.default_group = normalize_group_name(default_group)
        self._principals: Dict[str, PrincipalPermissions] = {}

    def live(self, principal_id: str) -> PrincipalPermissions:
        """Return the stored entry for ``principal_id``, creating it if unseen."""

        principal_id = require_text(principal_id, "Principal id")
        principal = self._principals.get(principal_id)
        if principal is None:
            principal = PrincipalPermissions(principal_id, groups=[self.default_group])
            self._principals[principal_id] = principal
            logger.debug("principal created", extra={"principal_id": principal_id})
        return principal

    def get_or_create(self, principal_id: str) -> PrincipalPermissions:
        with self.lock:
            return copy.deepcopy(self.live(principal_id))

    def get(self, principal_id: str) -> Optional[PrincipalPermissions]:
        """Return a copy of the entry without creating one."""

        with self.lock:
            principal = self._principals.get(principal_key(principal_id))
            return copy.deepcopy(principal) if principal is not None else None

    def list_principals(self) -> List[PrincipalPermissions]:
        with self.lock:
            return [copy.deepcopy(principal) for principal in self._principals.values()]

    def set_principal(self, principal: PrincipalPermissions) -> bool:
        if principal is None:
            return False
        stored = copy.deepcopy(principal)
        stored.normalize()
        with self.lock:
            self._principals[stored.principal_id] = stored
        logger.debug("principal replaced", extra={"principal_id": stored.principal_id})
        return True

    def remove_principal(self, principal_id: str) -> bool:
        with self.lock:
            return self._principals.pop(principal_key(principal_id), None) is not None

    def set_direct_permission(
        self,
        principal_id: str,
        node: str,
        value: bool = True,
        expires_at: Optional[datetime] = None,
        granted_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> PermissionRecord:
        # validate before creating the principal so a bad node leaves no trace
        record = PermissionRecord(node, value, expires_at, granted_by, reason)
        with self.lock:
            principal = self.live(principal_id)
            principal.direct_permissions[record.node] = record
            principal.touch()
        logger.info(
            "direct permission set",
            extra={"principal_id": principal_id, "node": record.node, "value": value},
        )
        return copy.deepcopy(record)

    def remove_direct_permission(self, principal_id: str, node: str) -> bool:
        with self.lock:
            removed = self.live(principal_id).remove_permission(node)
        if removed:
            logger.info("direct permission removed", extra={"principal_id": principal_id, "node": node})
        return removed

    def add_to_group(self, principal_id: str, group_name: str) -> bool:
        """Add a membership; returns ``True`` when the membership list changed.

        No existence check is made here; :class:`PermissionService` refuses
        unknown groups before calling in.
        """

        with self.lock:
            return self.live(principal_id).add_group(group_name)

    def remove_from_group(self, principal_id: str, group_name: str) -> bool:
        with self.lock:
            return self.live(principal_id).remove_group(group_name)

    def strip_group(self, group_name: str) -> int:
        """Drop ``group_name`` from every membership list, returning how many changed."""

        with self.lock:
            return sum(1 for principal in self._principals.values() if principal.remove_group(group_name))

    def purge_expired(self, now: datetime) -> Tuple[int, int]:
        """Remove expired direct records; returns ``(principals touched, records removed)``."""

        touched = removed = 0
        with self.lock:
            for principal in self._principals.values():
                count = principal.purge_expired(now)
                if count:
                    touched += 1
                    removed += count
        return touched, removed

    def replace_all(self, principals: Iterable[PrincipalPermissions]) -> None:
        with self.lock:
            self._principals = {principal.principal_id: principal for principal in principals}

    def live_items(self) -> List[PrincipalPermissions]:
        return list(self._principals.values())


class GroupRegistry:
    """Stores every :class:`Group`, keyed by case-folded name."""

    def __init__(
        self,
        lock: threading.RLock,
        principals: PrincipalRegistry,
        *,
        seed: bool = True,
    ) -> None:
        self.lock = lock
        self._principals = principals
        self._groups: Dict[str, Group] = {}
        if seed:
            for group in builtin_groups():
                self._groups[group.name] = group

    def live(self, name: str) -> Optional[Group]:
        """Return the stored group or ``None``; blank names never match."""

        if name is None or not str(name).strip():
            return None
        return self._groups.get(str(name).strip().lower())

    def exists(self, name: str) -> bool:
        with self.lock:
            return self.live(name) is not None

    def create_group(
        self,
        name: str,
        display_name: Optional[str] = None,
        description: Optional[str] = None,
        priority: int = 0,
    ) -> Optional[Group]:
        """Create a group, or return ``None`` if the name is already taken."""

        group = Group(name, display_name, description or "", priority)
        with self.lock:
            if group.name in self._groups:
                return None
            self._groups[group.name] = group
            created = copy.deepcopy(group)
        logger.info("permission group created", extra={"group": group.name})
        return created

    def delete_group(self, name: str) -> bool:
        """Delete a group and remove it from every principal's memberships.

        Other groups' ``inherited_groups`` lists are left as they are.
        """

        if name is None or not str(name).strip():
            return False
        key = normalize_group_name(name)
        with self.lock:
            if self._groups.pop(key, None) is None:
                return False
            stripped = self._principals.strip_group(key)
        logger.info("permission group deleted", extra={"group": key, "members_removed": stripped})
        return True

    def get_group(self, name: str) -> Optional[Group]:
        with self.lock:
            group = self.live(name)
            return copy.deepcopy(group) if group is not None else None

    def list_groups(self) -> List[Group]:
        with self.lock:
            return [copy.deepcopy(group) for group in self._groups.values()]

    def update_group(self, group: Group) -> bool:
        """Store ``group`` wholesale, replacing any group with the same name.

        Names, inherited groups and record keys are normalised the same way
        :class:`Group` does on construction; inconsistent records raise
        :class:`~warden.utils.errors.ValidationError` and nothing is stored.
        """

        if group is None:
            return False
        stored = copy.deepcopy(group)
        stored.normalize()
        with self.lock:
            self._groups[stored.name] = stored
        logger.info("permission group updated", extra={"group": stored.name})
        return True

    def set_group_permission(
        self,
        name: str,
        node: str,
        value: bool = True,
        expires_at: Optional[datetime] = None,
        granted_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Optional[PermissionRecord]:
        record = PermissionRecord(node, value, expires_at, granted_by, reason)
        with self.lock:
            group = self.live(name)
            if group is None:
                return None
            group.permissions[record.node] = record
        logger.info("group permission set", extra={"group": group.name, "node": record.node, "value": value})
        return copy.deepcopy(record)

    def remove_group_permission(self, name: str, node: str) -> bool:
        with self.lock:
            group = self.live(name)
            return group is not None and group.remove_permission(node)

    def add_inheritance(self, name: str, parent: str) -> bool:
        """Make ``name`` inherit from ``parent``.

        ``parent`` does not have to exist and cycles are not rejected.
        """

        with self.lock:
            group = self.live(name)
            return group is not None and group.add_inheritance(parent)

    def remove_inheritance(self, name: str, parent: str) -> bool:
        with self.lock:
            group = self.live(name)
            return group is not None and group.remove_inheritance(parent)

    def purge_expired(self, now: datetime) -> Tuple[int, int]:
        """Remove expired group records; returns ``(groups touched, records removed)``."""

        touched = removed = 0
        with self.lock:
            for group in self._groups.values():
                count = group.purge_expired(now)
                if count:
                    touched += 1
                    removed += count
        return touched, removed

    def replace_all(self, groups: Iterable[Group]) -> None:
        with self.lock:
            self._groups = {group.name: group for group in groups}

    def live_items(self) -> List[Group]:
        return list(self._groups.values())


__all__ = ["GroupRegistry", "PrincipalRegistry", "builtin_groups", "DEFAULT_GROUP"]
