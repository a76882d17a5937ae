"""Purging of expired permission records.

Expired records are already ignored by resolution; sweeping only reclaims
them. A sweep is idempotent and may run on demand or from
:class:`ExpirySweeper` on a fixed interval.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from warden.permissions.models import as_utc, utcnow
from warden.permissions.registry import GroupRegistry, PrincipalRegistry
from warden.utils.logging import get_logger

if TYPE_CHECKING:
    from warden.permissions.service import PermissionService

logger = get_logger(__name__)


@dataclass(frozen=True)
class SweepReport:
    principals: int = 0
    groups: int = 0
    records: int = 0

    @property
    def changed(self) -> bool:
        return self.records > 0


def sweep_registries(
    groups: GroupRegistry,
    principals: PrincipalRegistry,
    now: Optional[datetime] = None,
) -> SweepReport:
    """Remove every expired record from both registries.

    Only principals that actually lost a record get ``last_updated`` bumped;
    purging a group's record does not touch its members.
    """

    now = as_utc(now) or utcnow()
    with groups.lock:
        touched_principals, principal_records = principals.purge_expired(now)
        touched_groups, group_records = groups.purge_expired(now)
    report = SweepReport(
        principals=touched_principals,
        groups=touched_groups,
        records=principal_records + group_records,
    )
    if report.changed:
        logger.info(
            "expired permissions purged",
            extra={"principals": report.principals, "groups": report.groups, "records": report.records},
        )
    return report


class ExpirySweeper:
    """Run :meth:`PermissionService.sweep_expired` on a background thread."""

    def __init__(self, service: "PermissionService", interval: float = 60.0) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.service = service
        self.interval = interval
        self.runs = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Optional[SweepReport]:
        try:
            report = self.service.sweep_expired()
        except Exception as exc:  # pragma: no cover - keep the loop alive
            logger.exception("expiry sweep failed", exc_info=exc)
            return None
        finally:
            self.runs += 1
        return report

    def start(self) -> None:
        if self.running:
            return

        def _loop() -> None:
            while not self._stop_event.wait(self.interval):
                self.run_once()

        self._stop_event.clear()
        self._thread = threading.Thread(target=_loop, name="expiry-sweeper", daemon=True)
        self._thread.start()
        logger.debug("expiry sweeper started", extra={"interval": self.interval})

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=max(1.0, self.interval))
        self._thread = None


__all__ = ["ExpirySweeper", "SweepReport", "sweep_registries"]
