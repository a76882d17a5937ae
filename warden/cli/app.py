"""Typer-based CLI over a permission snapshot file.

Every command loads the snapshot (or starts from the built-in groups when the
file does not exist yet), runs one engine operation and, for mutating
commands, writes the snapshot back.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

import typer

from warden.cli.ui import ConsoleUI
from warden.permissions.models import utcnow
from warden.permissions.service import PermissionService
from warden.persistence import FileSnapshotStore
from warden.utils.errors import WardenError

app = typer.Typer(help="Inspect and edit Warden permission snapshots")
group_app = typer.Typer(help="Manage permission groups")
app.add_typer(group_app, name="group")


@dataclass
class CLIState:
    store: FileSnapshotStore
    ui: ConsoleUI
    service: Optional[PermissionService] = None


@app.callback()
def main(
    ctx: typer.Context,
    snapshot: Path = typer.Option(
        Path("permissions.json"),
        "--snapshot",
        envvar="WARDEN_SNAPSHOT",
        help="Snapshot file (.json, .yml or .yaml)",
    ),
) -> None:
    ui = ConsoleUI()
    try:
        store = FileSnapshotStore(snapshot)
    except WardenError as exc:
        ui.error(str(exc))
        raise typer.Exit(code=2)
    ctx.obj = CLIState(store=store, ui=ui)


def _service(ctx: typer.Context) -> PermissionService:
    state: CLIState = ctx.obj
    if state.service is None:
        service = PermissionService()
        if state.store.exists():
            try:
                asyncio.run(service.load_from(state.store))
            except WardenError as exc:
                state.ui.error(str(exc))
                raise typer.Exit(code=2)
        state.service = service
    return state.service


def _commit(ctx: typer.Context) -> None:
    state: CLIState = ctx.obj
    try:
        asyncio.run(_service(ctx).save_to(state.store))
    except WardenError as exc:
        state.ui.error(str(exc))
        raise typer.Exit(code=2)


def _ui(ctx: typer.Context) -> ConsoleUI:
    return ctx.obj.ui


@app.command()
def check(ctx: typer.Context, principal: str, node: str) -> None:
    """Exit with 0 when PRINCIPAL holds NODE, 1 otherwise."""

    allowed = _service(ctx).has_permission(principal, node)
    if allowed:
        _ui(ctx).info(f"{principal} is allowed {node}")
    else:
        _ui(ctx).warn(f"{principal} is denied {node}")
    raise typer.Exit(code=0 if allowed else 1)


@app.command()
def explain(ctx: typer.Context, principal: str, node: str) -> None:
    resolution = _service(ctx).explain(principal, node)
    rows = [
        ["allowed", str(resolution.allowed)],
        ["source", resolution.source],
        ["group", resolution.group or "-"],
        ["matched node", resolution.matched_node or "-"],
    ]
    _ui(ctx).console.print(_ui(ctx).table(f"{principal} / {node}", ["field", "value"], rows))


@app.command()
def effective(
    ctx: typer.Context,
    principal: str,
    direct_only: bool = typer.Option(False, "--direct-only", help="Ignore group grants"),
) -> None:
    nodes = _service(ctx).list_effective_permissions(principal, include_groups=not direct_only)
    if not nodes:
        _ui(ctx).warn(f"{principal} has no effective permissions")
        return
    for node in sorted(nodes):
        _ui(ctx).console.print(node)


@app.command()
def grant(
    ctx: typer.Context,
    principal: str,
    node: str,
    deny: bool = typer.Option(False, "--deny", help="Record an explicit denial"),
    expires_in: Optional[float] = typer.Option(None, "--expires-in", help="Seconds until expiry"),
    granted_by: Optional[str] = typer.Option(None, "--by", help="Who granted it"),
    reason: Optional[str] = typer.Option(None, "--reason"),
) -> None:
    expires_at = utcnow() + timedelta(seconds=expires_in) if expires_in is not None else None
    try:
        record = _service(ctx).set_permission(principal, node, not deny, expires_at, granted_by, reason)
    except WardenError as exc:
        _ui(ctx).error(str(exc))
        raise typer.Exit(code=2)
    _commit(ctx)
    _ui(ctx).info(f"Set {record.node}={record.value} for {principal}")


@app.command()
def revoke(ctx: typer.Context, principal: str, node: str) -> None:
    if not _service(ctx).remove_permission(principal, node):
        _ui(ctx).warn(f"{principal} has no direct record for {node}")
        raise typer.Exit(code=1)
    _commit(ctx)
    _ui(ctx).info(f"Removed {node} from {principal}")


@app.command()
def join(ctx: typer.Context, principal: str, group: str) -> None:
    if not _service(ctx).add_to_group(principal, group):
        _ui(ctx).error(f"Group {group} does not exist")
        raise typer.Exit(code=1)
    _commit(ctx)
    _ui(ctx).info(f"{principal} is a member of {group}")


@app.command()
def leave(ctx: typer.Context, principal: str, group: str) -> None:
    if not _service(ctx).remove_from_group(principal, group):
        _ui(ctx).warn(f"{principal} is not a member of {group}")
        raise typer.Exit(code=1)
    _commit(ctx)
    _ui(ctx).info(f"{principal} left {group}")


@app.command()
def sweep(ctx: typer.Context) -> None:
    report = _service(ctx).sweep_expired()
    if report.changed:
        _commit(ctx)
    _ui(ctx).info(
        f"Removed {report.records} expired records "
        f"({report.principals} principals, {report.groups} groups)"
    )


@group_app.command("list")
def group_list(ctx: typer.Context) -> None:
    groups = sorted(_service(ctx).list_groups(), key=lambda group: (-group.priority, group.name))
    rows = [
        [
            group.name,
            group.display_name or group.name,
            str(group.priority),
            ", ".join(group.inherited_groups) or "-",
            str(len(group.permissions)),
        ]
        for group in groups
    ]
    _ui(ctx).console.print(
        _ui(ctx).table("Groups", ["name", "display name", "priority", "inherits", "records"], rows)
    )


@group_app.command("create")
def group_create(
    ctx: typer.Context,
    name: str,
    display_name: Optional[str] = typer.Option(None, "--display-name"),
    description: Optional[str] = typer.Option(None, "--description"),
    priority: int = typer.Option(0, "--priority"),
) -> None:
    try:
        group = _service(ctx).create_group(name, display_name, description, priority)
    except WardenError as exc:
        _ui(ctx).error(str(exc))
        raise typer.Exit(code=2)
    if group is None:
        _ui(ctx).error(f"Group {name} already exists")
        raise typer.Exit(code=1)
    _commit(ctx)
    _ui(ctx).info(f"Created group {group.name}")


@group_app.command("delete")
def group_delete(ctx: typer.Context, name: str) -> None:
    if not _service(ctx).delete_group(name):
        _ui(ctx).error(f"Group {name} does not exist")
        raise typer.Exit(code=1)
    _commit(ctx)
    _ui(ctx).info(f"Deleted group {name}")


@group_app.command("grant")
def group_grant(
    ctx: typer.Context,
    name: str,
    node: str,
    deny: bool = typer.Option(False, "--deny"),
    expires_in: Optional[float] = typer.Option(None, "--expires-in", help="Seconds until expiry"),
) -> None:
    expires_at = utcnow() + timedelta(seconds=expires_in) if expires_in is not None else None
    try:
        record = _service(ctx).set_group_permission(name, node, not deny, expires_at)
    except WardenError as exc:
        _ui(ctx).error(str(exc))
        raise typer.Exit(code=2)
    if record is None:
        _ui(ctx).error(f"Group {name} does not exist")
        raise typer.Exit(code=1)
    _commit(ctx)
    _ui(ctx).info(f"Set {record.node}={record.value} on {name}")


@group_app.command("inherit")
def group_inherit(ctx: typer.Context, name: str, parent: str) -> None:
    if not _service(ctx).add_group_inheritance(name, parent):
        _ui(ctx).warn(f"{name} does not exist or already inherits {parent}")
        raise typer.Exit(code=1)
    _commit(ctx)
    _ui(ctx).info(f"{name} now inherits {parent}")


__all__ = ["app"]
