"""Permission service facade.

:class:`PermissionService` is the one object collaborators are handed. It is
constructed explicitly and passed around; there is no process-wide instance.
"""
from __future__ import annotations

import threading
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from warden.permissions import snapshot as snapshots
from warden.permissions.models import Group, PermissionRecord, PrincipalPermissions, normalize_group_name
from warden.permissions.registry import DEFAULT_GROUP, GroupRegistry, PrincipalRegistry
from warden.permissions.resolver import PermissionResolver, Resolution
from warden.permissions.sweeper import SweepReport, sweep_registries
from warden.utils.logging import get_logger

if TYPE_CHECKING:
    from warden.core.config import WardenSettings
    from warden.persistence import FileSnapshotStore

logger = get_logger(__name__)


class PermissionService:
    """Group and principal management plus permission queries.

    All operations are synchronous and run under one re-entrant lock shared by
    both registries and the resolver. Snapshot I/O in :meth:`save_to` and
    :meth:`load_from` happens outside that lock.
    """

    def __init__(
        self,
        *,
        seed_builtin_groups: bool = True,
        default_group: str = DEFAULT_GROUP,
        max_depth: int = 64,
    ) -> None:
        self._lock = threading.RLock()
        self.principals = PrincipalRegistry(self._lock, default_group=default_group)
        self.groups = GroupRegistry(self._lock, self.principals, seed=seed_builtin_groups)
        self.resolver = PermissionResolver(self.groups, self.principals, self._lock, max_depth=max_depth)

    @classmethod
    def from_settings(cls, settings: "WardenSettings") -> "PermissionService":
        return cls(
            seed_builtin_groups=settings.seed_builtin_groups,
            default_group=settings.resolution.default_group,
            max_depth=settings.resolution.max_depth,
        )

    # -- groups ------------------------------------------------------------------
    def create_group(
        self,
        name: str,
        display_name: Optional[str] = None,
        description: Optional[str] = None,
        priority: int = 0,
    ) -> Optional[Group]:
        return self.groups.create_group(name, display_name, description, priority)

    def delete_group(self, name: str) -> bool:
        return self.groups.delete_group(name)

    def get_group(self, name: str) -> Optional[Group]:
        return self.groups.get_group(name)

    def list_groups(self) -> List[Group]:
        return self.groups.list_groups()

    def update_group(self, group: Group) -> bool:
        return self.groups.update_group(group)

    def set_group_permission(
        self,
        group_name: str,
        node: str,
        value: bool = True,
        expires_at: Optional[datetime] = None,
        granted_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Optional[PermissionRecord]:
        return self.groups.set_group_permission(group_name, node, value, expires_at, granted_by, reason)

    def remove_group_permission(self, group_name: str, node: str) -> bool:
        return self.groups.remove_group_permission(group_name, node)

    def add_group_inheritance(self, group_name: str, parent: str) -> bool:
        return self.groups.add_inheritance(group_name, parent)

    def remove_group_inheritance(self, group_name: str, parent: str) -> bool:
        return self.groups.remove_inheritance(group_name, parent)

    # -- principals --------------------------------------------------------------
    def get_principal(self, principal_id: str) -> PrincipalPermissions:
        return self.principals.get_or_create(principal_id)

    def set_principal(self, principal: PrincipalPermissions) -> bool:
        return self.principals.set_principal(principal)

    def remove_principal(self, principal_id: str) -> bool:
        return self.principals.remove_principal(principal_id)

    def set_permission(
        self,
        principal_id: str,
        node: str,
        value: bool = True,
        expires_at: Optional[datetime] = None,
        granted_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> PermissionRecord:
        return self.principals.set_direct_permission(principal_id, node, value, expires_at, granted_by, reason)

    def remove_permission(self, principal_id: str, node: str) -> bool:
        return self.principals.remove_direct_permission(principal_id, node)

    def add_to_group(self, principal_id: str, group_name: str) -> bool:
        """Add a membership; ``False`` when the group does not exist."""

        group_name = normalize_group_name(group_name)
        with self._lock:
            if self.groups.live(group_name) is None:
                logger.info(
                    "membership refused for unknown group",
                    extra={"principal_id": principal_id, "group": group_name},
                )
                return False
            changed = self.principals.add_to_group(principal_id, group_name)
        if changed:
            logger.info("principal added to group", extra={"principal_id": principal_id, "group": group_name})
        return True

    def remove_from_group(self, principal_id: str, group_name: str) -> bool:
        """Drop a membership; ``False`` when the principal was not a member."""

        removed = self.principals.remove_from_group(principal_id, group_name)
        if removed:
            logger.info("principal removed from group", extra={"principal_id": principal_id, "group": group_name})
        return removed

    def list_groups_of(self, principal_id: str) -> List[str]:
        return list(self.principals.get_or_create(principal_id).groups)

    def is_in_group(self, principal_id: str, group_name: str) -> bool:
        if group_name is None or not group_name.strip():
            return False
        return group_name.strip().lower() in self.list_groups_of(principal_id)

    # -- queries -----------------------------------------------------------------
    def has_permission(self, principal_id: str, node: str) -> bool:
        return self.resolver.has_permission(principal_id, node)

    def has_any_permission(self, principal_id: str, *nodes: str) -> bool:
        return self.resolver.has_any_permission(principal_id, *nodes)

    def has_all_permissions(self, principal_id: str, *nodes: str) -> bool:
        return self.resolver.has_all_permissions(principal_id, *nodes)

    def list_effective_permissions(self, principal_id: str, include_groups: bool = True) -> Set[str]:
        return self.resolver.list_effective_permissions(principal_id, include_groups)

    def explain(self, principal_id: str, node: str) -> Resolution:
        return self.resolver.explain(principal_id, node)

    # -- maintenance -------------------------------------------------------------
    def sweep_expired(self, now: Optional[datetime] = None) -> SweepReport:
        return sweep_registries(self.groups, self.principals, now)

    # -- persistence -------------------------------------------------------------
    def save(self) -> Dict[str, Any]:
        """Return a serialisable snapshot of every group and principal."""

        with self._lock:
            snapshot = snapshots.build_snapshot(self.groups.live_items(), self.principals.live_items())
        data = snapshots.dump(snapshot)
        logger.debug(
            "snapshot taken",
            extra={"groups": len(snapshot.groups), "principals": len(snapshot.principals)},
        )
        return data

    def load(self, data: Dict[str, Any]) -> None:
        """Replace all in-memory state with ``data``.

        The snapshot is validated and rebuilt before the lock is taken; on
        :class:`~warden.utils.errors.PersistenceError` nothing is changed.
        """

        groups, principals = snapshots.restore(snapshots.parse(data))
        with self._lock:
            self.groups.replace_all(groups)
            self.principals.replace_all(principals)
        logger.info("permission data loaded", extra={"groups": len(groups), "principals": len(principals)})

    async def save_to(self, store: "FileSnapshotStore") -> None:
        await store.write(self.save())
        logger.info("saved permission data", extra={"path": str(store.path)})

    async def load_from(self, store: "FileSnapshotStore") -> None:
        self.load(await store.read())


__all__ = ["PermissionService"]
