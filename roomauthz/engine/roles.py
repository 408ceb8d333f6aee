from __future__ import annotations

import enum
from typing import Optional

from roomauthz.core.models import Room


class Role(str, enum.Enum):
    """Requester's relationship to one room, resolved once per evaluation."""

    CREATOR = "creator"  # no prior document
    BLOCKED = "blocked"
    MASTER = "master"
    MEMBER = "member"
    INVITED = "invited"
    REJECTED = "rejected"
    OUTSIDER = "outsider"


# Roles that currently sit in `users` (a blocked member is BLOCKED, not here).
MEMBER_ROLES = frozenset({Role.MASTER, Role.MEMBER})

# Roles allowed to fetch a single room regardless of visibility.
READER_ROLES = frozenset({Role.MASTER, Role.MEMBER, Role.INVITED, Role.REJECTED})


def resolve_role(prior: Optional[Room], requester_id: str) -> Role:
    """
    Classify the requester against the prior snapshot.

    Precedence: blocked > master > member > invited > rejected > outsider.
    `masterUsers` is checked before `users` because a master may be listed
    while their `users` key is already gone.
    """
    if prior is None:
        return Role.CREATOR
    if requester_id in prior.blocked_users:
        return Role.BLOCKED
    if requester_id in prior.master_users:
        return Role.MASTER
    if requester_id in prior.users:
        return Role.MEMBER
    if requester_id in prior.invited_users:
        return Role.INVITED
    if requester_id in prior.rejected_users:
        return Role.REJECTED
    return Role.OUTSIDER
