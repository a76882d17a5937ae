"""Permission resolution engine."""
from __future__ import annotations

from .models import WILDCARD, Group, PermissionRecord, PrincipalPermissions
from .registry import GroupRegistry, PrincipalRegistry
from .resolver import PermissionResolver, Resolution
from .service import PermissionService
from .sweeper import ExpirySweeper, SweepReport

__all__ = [
    "WILDCARD",
    "Group",
    "PermissionRecord",
    "PrincipalPermissions",
    "GroupRegistry",
    "PrincipalRegistry",
    "PermissionResolver",
    "Resolution",
    "PermissionService",
    "ExpirySweeper",
    "SweepReport",
]
