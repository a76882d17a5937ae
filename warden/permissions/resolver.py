"""Permission resolution.

Resolution is structural and short-circuits on the first applicable record:

1. the principal's own record for exactly the node,
2. the principal's own ``*`` record,
3. a depth-first walk of the principal's groups in membership order. Each
   group is checked for the exact node, then ``*``, before its inherited
   groups are visited in list order.

Absence of any applicable record means deny. The walk remembers the shallowest
depth each group was reached at for the whole call, so cyclic inheritance
terminates, and unknown group names are skipped. Nothing is cached between
calls.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from warden.permissions.models import WILDCARD, Group, PrincipalPermissions, utcnow
from warden.permissions.registry import GroupRegistry, PrincipalRegistry
from warden.utils.logging import get_logger

logger = get_logger(__name__)

DIRECT = "direct"
GROUP = "group"
NONE = "none"


@dataclass(frozen=True)
class Resolution:
    """Outcome of a single lookup and the record that decided it."""

    allowed: bool
    source: str = NONE
    group: Optional[str] = None
    matched_node: Optional[str] = None


DENIED = Resolution(allowed=False)


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


class PermissionResolver:
    """Answers permission queries by reading through both registries.

    The resolver owns no state of its own. Every public call takes the shared
    registry lock for its whole duration, so a call sees the registries either
    before or after a concurrent mutation, never halfway.
    """

    def __init__(
        self,
        groups: GroupRegistry,
        principals: PrincipalRegistry,
        lock: threading.RLock,
        *,
        max_depth: int = 64,
    ) -> None:
        self._groups = groups
        self._principals = principals
        self._lock = lock
        self.max_depth = max_depth

    # -- traversal ---------------------------------------------------------------
    def walk(self, roots: Sequence[str]) -> Iterator[Group]:
        """Yield groups reachable from ``roots`` in resolution order.

        Each group is yielded once. A group reached again along a shorter
        path is expanded again so the depth limit is measured from the
        nearest root. Caller must hold the registry lock.
        """

        depths: Dict[str, int] = {}
        stack: List[Tuple[str, int]] = [(name, 0) for name in reversed(roots)]
        while stack:
            name, depth = stack.pop()
            group = self._groups.live(name)
            if group is None:
                continue
            previous = depths.get(group.name)
            if previous is not None and previous <= depth:
                continue
            depths[group.name] = depth
            if previous is None:
                yield group
            if not group.inherited_groups:
                continue
            if depth >= self.max_depth:
                logger.warning(
                    "inheritance depth limit reached",
                    extra={"group": group.name, "max_depth": self.max_depth},
                )
                continue
            for parent in reversed(group.inherited_groups):
                stack.append((parent, depth + 1))

    def _resolve(
        self,
        principal: PrincipalPermissions,
        node: str,
        now: datetime,
        include_groups: bool = True,
    ) -> Resolution:
        for candidate in (node, WILDCARD):
            record = principal.get_permission(candidate, now)
            if record is not None:
                return Resolution(record.value, DIRECT, None, candidate)
        if not include_groups:
            return DENIED
        for group in self.walk(principal.groups):
            for candidate in (node, WILDCARD):
                record = group.get_permission(candidate, now)
                if record is not None:
                    return Resolution(record.value, GROUP, group.name, candidate)
        return DENIED

    # -- queries -----------------------------------------------------------------
    def explain(self, principal_id: str, node: str) -> Resolution:
        """Resolve ``node`` and report which record decided the outcome."""

        if _blank(principal_id) or _blank(node):
            return DENIED
        with self._lock:
            principal = self._principals.live(principal_id)
            return self._resolve(principal, node.strip(), utcnow())

    def has_permission(self, principal_id: str, node: str) -> bool:
        return self.explain(principal_id, node).allowed

    def has_any_permission(self, principal_id: str, *nodes: str) -> bool:
        with self._lock:
            return any(self.has_permission(principal_id, node) for node in nodes)

    def has_all_permissions(self, principal_id: str, *nodes: str) -> bool:
        with self._lock:
            return all(self.has_permission(principal_id, node) for node in nodes)

    def list_effective_permissions(self, principal_id: str, include_groups: bool = True) -> Set[str]:
        """Return every node that currently resolves to ``True``.

        Candidates are the nodes named by valid records on the principal and,
        with ``include_groups``, on every reachable group; each candidate is
        then resolved with the same precedence as :meth:`has_permission`.
        """

        if _blank(principal_id):
            return set()
        with self._lock:
            now = utcnow()
            principal = self._principals.live(principal_id)
            candidates = {node for node, record in principal.direct_permissions.items() if record.is_valid(now)}
            if include_groups:
                for group in self.walk(principal.groups):
                    candidates.update(
                        node for node, record in group.permissions.items() if record.is_valid(now)
                    )
            return {
                node
                for node in candidates
                if self._resolve(principal, node, now, include_groups).allowed
            }


__all__ = ["PermissionResolver", "Resolution", "DIRECT", "GROUP", "NONE"]
