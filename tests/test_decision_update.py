from __future__ import annotations

import pytest


def test_invited_user_joins_closed_room_then_outsider_cannot(make_room, update) -> None:
    from roomauthz.core.ops import DELETE_FIELD, ArrayRemove

    room = make_room(masters=["A"], members=["A"], invited=["B"])

    d = update("B", room, {"users": {"B": {"nMC": 0}}, "invitedUsers": ArrayRemove("B")})
    assert d.allowed, d
    assert d.role.value == "invited"
    assert d.items == ("accept_invite(self:B)",)

    d = update("C", room, {"users": {"C": {"nMC": 0}}, "invitedUsers": ArrayRemove("C")})
    assert not d.allowed
    assert d.category.value == "structural_violation"
    assert d.code.value == "join_closed_room"

    joined = make_room(masters=["A"], members=["A", "B"])
    d = update("A", joined, {"users": {"B": DELETE_FIELD, "C": DELETE_FIELD}})
    assert not d.allowed
    assert d.code.value == "remove_non_member"


def test_blocked_user_must_be_unblocked_before_joining_open_room(make_room, update) -> None:
    from roomauthz.core.ops import ArrayRemove

    room = make_room(open=True, blocked=["B"])
    join = {"users": {"B": {"nMC": 0}}}

    d = update("B", room, join)
    assert not d.allowed
    assert d.code.value == "requester_blocked"
    assert d.role.value == "blocked"

    # Lifting the block inside the join itself does not help.
    d = update("B", room, {**join, "blockedUsers": ArrayRemove("B")})
    assert d.code.value == "requester_blocked"

    d = update("apple", room, {"blockedUsers": ArrayRemove("B")})
    assert d.allowed, d

    unblocked = make_room(open=True)
    d = update("B", unblocked, join)
    assert d.allowed, d
    assert d.items == ("open_join(self:B)",)


def test_blocked_precedence_beats_malformed_diff_and_membership(make_room, update) -> None:
    room = make_room(blocked=["apple"])  # apple is also a master and a member
    d = update("apple", room, {"data": 1})
    assert d.code.value == "requester_blocked"


def test_master_may_kick_while_leaving(apple_group, update) -> None:
    from roomauthz.core.ops import DELETE_FIELD, ArrayRemove

    d = update(
        "apple",
        apple_group,
        {"users": {"apple": DELETE_FIELD, "carrot": DELETE_FIELD}, "masterUsers": ArrayRemove("apple")},
    )
    assert d.allowed, d
    assert d.items == ("remove_member(self:apple)", "remove_member(other:carrot)", "demote(self:apple)")


def test_member_may_leave_but_not_kick(apple_group, update) -> None:
    from roomauthz.core.ops import DELETE_FIELD

    assert update("carrot", apple_group, {"users.carrot": DELETE_FIELD}).allowed

    d = update("carrot", apple_group, {"users.carrot": DELETE_FIELD, "users.banana": DELETE_FIELD})
    assert not d.allowed
    assert d.code.value == "master_only"
    assert d.detail == "remove_member(other:banana)"


def test_last_master_cannot_step_down(make_room, update) -> None:
    from roomauthz.core.ops import ArrayRemove

    d = update("apple", make_room(masters=["apple"]), {"masterUsers": ArrayRemove("apple")})
    assert d.code.value == "no_masters"


@pytest.mark.parametrize(
    "extra, allowed",
    [
        ({}, False),
        ({"allMembersCanInvite": True}, True),
        ({"open": True}, True),
    ],
)
def test_member_invitations_follow_room_settings(make_room, update, extra, allowed) -> None:
    from roomauthz.core.ops import ArrayUnion

    d = update("carrot", make_room(**extra), {"invitedUsers": ArrayUnion("durian")})
    assert d.allowed is allowed
    if not allowed:
        assert d.code.value == "members_cannot_invite"


def test_invited_user_may_open_join_without_clearing_invite(apple_group, update) -> None:
    room = dict(apple_group, open=True)
    d = update("eggPlant", room, {"users": {"eggPlant": {"nMC": 0}}})
    assert d.allowed, d


def test_invite_lifecycle_by_invitee(apple_group, update) -> None:
    from roomauthz.core.ops import ArrayRemove, ArrayUnion

    decline = update("eggPlant", apple_group, {"invitedUsers": ArrayRemove("eggPlant")})
    assert decline.allowed and decline.items == ("cancel_invite(self:eggPlant)",)

    reject = {"invitedUsers": ArrayRemove("eggPlant"), "rejectedUsers": ArrayUnion("eggPlant")}
    assert update("eggPlant", apple_group, reject).allowed

    d = update("apple", apple_group, reject)
    assert d.code.value == "self_only"


def test_rejection_is_sticky(apple_group, update) -> None:
    from roomauthz.core.ops import ArrayRemove, ArrayUnion

    force_in = {"users": {"flower": {"nMC": 0}}, "rejectedUsers": ArrayRemove("flower")}
    for actor in ("apple", "carrot", "eggPlant"):
        d = update(actor, apple_group, force_in)
        assert not d.allowed, actor

    assert update("flower", apple_group, force_in).allowed

    # Re-inviting needs the rejection cleared first.
    d = update("apple", apple_group, {"invitedUsers": ArrayUnion("flower")})
    assert d.category.value == "structural_violation"
    assert d.code.value == "invite_reject_overlap"

    d = update("apple", apple_group, {"rejectedUsers": ArrayRemove("flower")})
    assert d.allowed and d.items == ("clear_rejection(other:flower)",)


def test_counter_updates_exclude_membership_changes(make_room, update) -> None:
    from roomauthz.core.ops import Increment

    room = make_room(open=True)
    d = update("carrot", room, {"users.apple.nMC": Increment(1), "users.banana.nMC": Increment(1)})
    assert d.allowed, d

    d = update("durian", room, {"users.durian": {"nMC": 0}, "users.apple.nMC": Increment(1)})
    assert d.code.value == "counters_with_membership_change"

    d = update("durian", room, {"users.apple.nMC": Increment(1)})
    assert d.code.value == "not_a_member"

    d = update("carrot", room, {"users.carrot.nMC": 0, "users.carrot.tO": 171})
    assert d.allowed, d


def test_activity_and_last_message(make_room, update) -> None:
    room = make_room()
    assert update("carrot", room, {"lastMessageAt": 5, "updatedAt": 5}).allowed

    d = update("carrot", room, {"lastMessageText": "hi", "lastMessageAt": 5})
    assert d.code.value == "master_only"
    assert update("apple", room, {"lastMessageText": "hi", "lastMessageUid": "apple", "lastMessageAt": 5}).allowed


def test_admin_fields_are_master_only(make_room, update) -> None:
    room = make_room()
    assert update("banana", room, {"name": "renamed", "open": True}).allowed
    d = update("carrot", room, {"description": "mine now"})
    assert d.code.value == "master_only"
    d = update("durian", room, {"description": "mine now"})
    assert d.code.value == "not_a_member"


def test_created_at_is_write_once(make_room, update) -> None:
    from roomauthz.core.ops import DELETE_FIELD

    assert update("apple", make_room(), {"createdAt": "2024-01-01T00:00:00Z"}).allowed
    assert update("carrot", make_room(), {"createdAt": 1}).code.value == "master_only"

    d = update("apple", make_room(createdAt=1), {"createdAt": 2})
    assert d.code.value == "created_at_immutable"
    d = update("apple", make_room(createdAt=1), {"createdAt": DELETE_FIELD})
    assert d.code.value == "created_at_immutable"


def test_kind_cannot_change(make_room, update) -> None:
    from roomauthz.core.ops import DELETE_FIELD

    d = update("apple", make_room(group=True), {"group": DELETE_FIELD, "single": True})
    assert d.code.value == "kind_immutable"


def test_promote_block_and_ban(apple_group, update) -> None:
    from roomauthz.core.ops import DELETE_FIELD, ArrayUnion

    assert update("apple", apple_group, {"masterUsers": ArrayUnion("carrot")}).allowed
    assert update("carrot", apple_group, {"masterUsers": ArrayUnion("carrot")}).code.value == "master_only"
    assert update("apple", apple_group, {"masterUsers": ArrayUnion("durian")}).code.value == "promote_non_member"

    ban = {"users": {"carrot": DELETE_FIELD}, "blockedUsers": ArrayUnion("carrot")}
    d = update("apple", apple_group, ban)
    assert d.allowed and d.items == ("remove_member(other:carrot)", "block(other:carrot)")

    assert update("apple", apple_group, {"blockedUsers": ArrayUnion("apple")}).code.value == "role_not_allowed"
    assert update("apple", apple_group, {"invitedUsers": ArrayUnion("carrot")}).code.value == "invite_existing_member"


def test_single_room_invitation_cap(make_room, update) -> None:
    from roomauthz.core.ops import ArrayRemove, ArrayUnion

    pending = make_room(single=True, masters=["apple"], members=["apple"], invited=["banana"])
    d = update("apple", pending, {"invitedUsers": ArrayUnion("carrot")})
    assert d.code.value == "single_invite_limit"

    # Swapping the pending invitee in one write is still a second invitation.
    d = update("apple", pending, {"invitedUsers": ["carrot"]})
    assert d.code.value == "single_invite_limit"

    cancelled = update("apple", pending, {"invitedUsers": ArrayRemove("banana")})
    assert cancelled.allowed, cancelled
    empty = make_room(single=True, masters=["apple"], members=["apple"])
    assert update("apple", empty, {"invitedUsers": ["carrot"]}).allowed

    full = make_room(single=True, masters=["apple"], members=["apple", "banana"])
    d = update("apple", full, {"invitedUsers": ArrayUnion("carrot")})
    assert d.code.value == "single_room_full"


def test_noop_write_needs_membership(make_room, update) -> None:
    room = make_room(open=True)
    d = update("carrot", room, {"name": "apple group"})
    assert d.allowed and d.items == ()
    assert update("durian", room, {}).code.value == "not_a_member"


def test_malformed_update_requests(make_room, update) -> None:
    d = update("apple", make_room(), {"data": {"x": 1}})
    assert d.category.value == "invalid_diff"
    assert d.code.value == "unknown_field"

    d = update("apple", None, {"name": "x"})
    assert d.code.value == "missing_prior_document"

    d = update("apple", make_room(open="yes"), {"name": "x"})
    assert d.code.value == "invalid_document"

    d = update("apple", make_room(), None)
    assert d.code.value == "missing_proposed_diff"


def test_anonymous_requesters_are_denied(make_room, update, monkeypatch) -> None:
    room = make_room(open=True)
    join = {"users": {"anonymous": {"nMC": 0}}}
    assert update("anonymous", room, join).code.value == "anonymous"
    assert update("", room, join).code.value == "anonymous"

    monkeypatch.setenv("ROOMAUTHZ_ANONYMOUS_ID", "guest")
    assert update("anonymous", room, join).allowed
    assert update("guest", room, {"users": {"guest": {}}}).code.value == "anonymous"


def test_decisions_are_deterministic(apple_group, update) -> None:
    from roomauthz.core.ops import ArrayUnion

    write = {"invitedUsers": ArrayUnion("durian"), "name": "x"}
    first = update("carrot", apple_group, write)
    assert all(update("carrot", apple_group, write) == first for _ in range(5))
    assert first.retryable is False
    assert first.to_dict() == {
        "verdict": "deny",
        "code": "master_only",
        "category": "permission_denied",
        "detail": "admin_field(name)",
        "role": "member",
        "items": ["admin_field(name)", "invite(other:durian)"],
    }


def test_oversized_write_is_invalid(make_room, update, monkeypatch) -> None:
    monkeypatch.setenv("ROOMAUTHZ_MAX_DIFF_KEYS", "10")
    users = {f"u{i}": {"nMC": 1} for i in range(12)}
    d = update("apple", make_room(), {"users": users})
    assert d.code.value == "diff_too_large"
