import threading
from datetime import timedelta
from typing import List, Set

from warden.permissions.models import Group, utcnow
from warden.permissions.resolver import DIRECT, GROUP, NONE
from warden.permissions.service import PermissionService


def _member_of(service: PermissionService, principal_id: str, *groups: str) -> None:
    """Make ``principal_id`` a member of exactly ``groups``, in order."""

    for name in service.list_groups_of(principal_id):
        service.remove_from_group(principal_id, name)
    for name in groups:
        assert service.add_to_group(principal_id, name)


def test_default_member_scenario() -> None:
    service = PermissionService()
    assert service.has_permission("p1", "basic.chat")
    assert not service.has_permission("p1", "admin.kick")


def test_inherited_permission_scenario() -> None:
    service = PermissionService()
    _member_of(service, "p2", "moderator")
    assert service.has_permission("p2", "admin.kick")
    assert service.has_permission("p2", "basic.chat")


def test_admin_wildcard_scenario() -> None:
    service = PermissionService()
    _member_of(service, "p3", "admin")
    assert service.has_permission("p3", "anything.unlisted")


def test_direct_deny_beats_group_wildcard() -> None:
    service = PermissionService()
    _member_of(service, "p4", "admin")
    service.set_permission("p4", "admin.kick", False)
    assert not service.has_permission("p4", "admin.kick")
    assert service.has_permission("p4", "admin.ban")


def test_deny_by_default() -> None:
    service = PermissionService(seed_builtin_groups=False)
    assert not service.has_permission("p1", "basic.chat")
    assert service.explain("p1", "basic.chat").source == NONE


def test_direct_allow_beats_missing_group_grant() -> None:
    service = PermissionService()
    _member_of(service, "p1")
    service.set_permission("p1", "admin.kick", True)
    assert service.has_permission("p1", "admin.kick")

    service.set_permission("p1", "basic.chat", False)
    service.add_to_group("p1", "default")
    assert not service.has_permission("p1", "basic.chat")


def test_direct_wildcard() -> None:
    service = PermissionService()
    service.set_permission("p1", "*", False)
    assert not service.has_permission("p1", "basic.chat")

    service.set_permission("p1", "basic.move", True)
    assert service.has_permission("p1", "basic.move")
    assert not service.has_permission("p1", "basic.chat")

    service.set_permission("p1", "*", True)
    assert service.has_permission("p1", "server.stop")


def test_inheritance_cycle_terminates() -> None:
    service = PermissionService(seed_builtin_groups=False)
    service.create_group("a")
    service.create_group("b")
    service.add_group_inheritance("a", "b")
    service.add_group_inheritance("b", "a")
    service.add_group_inheritance("a", "a")
    _member_of(service, "p1", "a", "b")

    assert not service.has_permission("p1", "x")
    service.set_group_permission("b", "x")
    assert service.has_permission("p1", "x")
    assert service.list_effective_permissions("p1") == {"x"}


def test_dangling_references_are_skipped() -> None:
    service = PermissionService()
    service.create_group("builders")
    service.add_group_inheritance("builders", "ghost")
    service.add_group_inheritance("builders", "default")
    _member_of(service, "p1", "builders")
    assert service.has_permission("p1", "basic.chat")

    service.delete_group("builders")
    assert not service.has_permission("p1", "basic.chat")


def test_nearer_group_denial_overrides_ancestor() -> None:
    service = PermissionService()
    service.create_group("muted")
    service.add_group_inheritance("muted", "default")
    service.set_group_permission("muted", "basic.chat", False)
    _member_of(service, "p1", "muted")

    assert not service.has_permission("p1", "basic.chat")
    assert service.has_permission("p1", "basic.move")
    resolution = service.explain("p1", "basic.chat")
    assert (resolution.source, resolution.group, resolution.matched_node) == (GROUP, "muted", "basic.chat")


def test_nearer_group_wildcard_is_checked_before_ancestors() -> None:
    service = PermissionService()
    service.create_group("jailed")
    service.add_group_inheritance("jailed", "default")
    service.set_group_permission("jailed", "*", False)
    _member_of(service, "p1", "jailed")

    assert not service.has_permission("p1", "basic.chat")
    assert service.explain("p1", "basic.chat").matched_node == "*"


def test_exact_match_beats_wildcard_within_a_group() -> None:
    service = PermissionService()
    service.create_group("staff")
    service.set_group_permission("staff", "*", True)
    service.set_group_permission("staff", "server.stop", False)
    _member_of(service, "p1", "staff")
    assert not service.has_permission("p1", "server.stop")
    assert service.has_permission("p1", "server.restart")


def test_membership_order_decides_and_priority_does_not() -> None:
    service = PermissionService(seed_builtin_groups=False)
    service.create_group("low", priority=0)
    service.create_group("high", priority=1000)
    service.set_group_permission("low", "x", True)
    service.set_group_permission("high", "x", False)

    _member_of(service, "p1", "low", "high")
    assert service.has_permission("p1", "x")

    _member_of(service, "p1", "high", "low")
    assert not service.has_permission("p1", "x")


def test_depth_first_order_across_branches() -> None:
    service = PermissionService(seed_builtin_groups=False)
    for name in ("a", "b", "c", "d"):
        service.create_group(name)
    service.add_group_inheritance("a", "c")
    service.add_group_inheritance("b", "d")
    service.set_group_permission("c", "x", False)
    service.set_group_permission("b", "x", True)
    _member_of(service, "p1", "a", "b")
    # a's ancestors are searched before b itself
    assert not service.has_permission("p1", "x")


def test_expired_records_are_ignored_before_sweep() -> None:
    service = PermissionService()
    past = utcnow() - timedelta(seconds=1)
    service.set_permission("p1", "basic.chat", False, expires_at=past)
    assert service.has_permission("p1", "basic.chat")

    service.set_group_permission("default", "basic.move", True, expires_at=past)
    assert not service.has_permission("p1", "basic.move")

    service.set_permission("p1", "event.join", True, expires_at=utcnow() + timedelta(hours=1))
    assert service.has_permission("p1", "event.join")


def test_max_depth_cuts_long_chains() -> None:
    names = [f"g{index}" for index in range(6)]

    def build(max_depth: int) -> PermissionService:
        service = PermissionService(seed_builtin_groups=False, max_depth=max_depth)
        for name in names:
            service.create_group(name)
        for child, parent in zip(names, names[1:]):
            service.add_group_inheritance(child, parent)
        service.set_group_permission(names[-1], "deep.node")
        _member_of(service, "p1", names[0])
        return service

    assert build(64).has_permission("p1", "deep.node")
    assert not build(2).has_permission("p1", "deep.node")


def test_any_and_all() -> None:
    service = PermissionService()
    assert service.has_any_permission("p1", "admin.kick", "basic.chat")
    assert not service.has_any_permission("p1", "admin.kick", "admin.ban")
    assert not service.has_any_permission("p1")

    assert service.has_all_permissions("p1", "basic.chat", "basic.move")
    assert not service.has_all_permissions("p1", "basic.chat", "admin.kick")
    assert service.has_all_permissions("p1")


def test_effective_permissions_follow_resolution() -> None:
    service = PermissionService()
    assert service.list_effective_permissions("p1") == {"basic.chat", "basic.move"}

    service.set_permission("p1", "basic.move", False)
    service.set_permission("p1", "home.set", True)
    service.set_permission("p1", "old.grant", True, expires_at=utcnow() - timedelta(seconds=1))
    assert service.list_effective_permissions("p1") == {"basic.chat", "home.set"}
    assert service.list_effective_permissions("p1", include_groups=False) == {"home.set"}

    service.add_to_group("p1", "admin")
    assert service.list_effective_permissions("p1") == {"basic.chat", "home.set", "*"}


def test_explain_direct_record() -> None:
    service = PermissionService()
    service.set_permission("p1", "admin.kick", True)
    resolution = service.explain("p1", "admin.kick")
    assert resolution.allowed
    assert resolution.source == DIRECT
    assert resolution.group is None


def test_blank_queries_are_denied() -> None:
    service = PermissionService()
    assert not service.has_permission("p1", "")
    assert not service.has_permission("", "basic.chat")
    assert service.list_effective_permissions("") == set()


def test_queries_create_unknown_principals() -> None:
    service = PermissionService()
    assert service.principals.get("newcomer") is None
    service.has_permission("newcomer", "basic.chat")
    assert service.principals.get("newcomer").groups == ["default"]


def test_depth_limit_counts_from_the_nearest_root() -> None:
    service = PermissionService(seed_builtin_groups=False, max_depth=2)
    for name in ("a", "b", "c", "d"):
        service.create_group(name)
    service.add_group_inheritance("a", "b")
    service.add_group_inheritance("b", "c")
    service.add_group_inheritance("c", "d")
    service.set_group_permission("d", "x")
    # c is cut off below a, but is also a direct membership one edge from d
    _member_of(service, "p1", "a", "c")

    assert service.has_permission("p1", "x")
    assert service.explain("p1", "x").group == "d"
    assert service.list_effective_permissions("p1") == {"x"}


def test_walk_yields_each_group_once() -> None:
    service = PermissionService(seed_builtin_groups=False, max_depth=3)
    for name in ("a", "b", "c"):
        service.create_group(name)
    service.add_group_inheritance("a", "b")
    service.add_group_inheritance("b", "c")
    service.add_group_inheritance("a", "c")
    with service.principals.lock:
        walked = [group.name for group in service.resolver.walk(["a", "c", "b"])]
    assert walked == ["a", "b", "c"]


def _vip_group() -> Group:
    group = Group("vip")
    group.set_permission("vip.lounge")
    group.set_permission("vip.bar")
    group.set_permission("vip.old", expires_at=utcnow() - timedelta(minutes=5))
    return group


def test_queries_see_whole_mutations_under_concurrency() -> None:
    service = PermissionService()
    base = {"basic.chat", "basic.move"}
    allowed: List[Set[str]] = [base, base | {"vip.lounge", "vip.bar"}]
    unexpected: List[Set[str]] = []
    errors: List[Exception] = []
    done = threading.Event()

    def writer() -> None:
        try:
            for index in range(200):
                service.update_group(_vip_group())
                service.add_to_group("p1", "vip")
                service.sweep_expired()
                if index % 10 == 0:
                    service.create_group("temp")
                    service.set_group_permission("temp", "temp.node")
                    service.delete_group("temp")
                service.delete_group("vip")
        except Exception as exc:
            errors.append(exc)
        finally:
            done.set()

    def reader() -> None:
        try:
            while not done.is_set():
                effective = service.list_effective_permissions("p1")
                if effective not in allowed:
                    unexpected.append(effective)
                if not service.has_permission("p1", "basic.chat"):
                    unexpected.append({"basic.chat denied"})
        except Exception as exc:
            errors.append(exc)

    readers = [threading.Thread(target=reader) for _ in range(4)]
    for thread in readers:
        thread.start()
    writer_thread = threading.Thread(target=writer)
    writer_thread.start()
    writer_thread.join(timeout=60)
    for thread in readers:
        thread.join(timeout=60)

    assert done.is_set()
    assert errors == []
    assert unexpected == []
    assert service.list_effective_permissions("p1") == base
