from __future__ import annotations

import enum
from typing import Optional


class DenialCategory(str, enum.Enum):
    """Why a request was refused. None of these are retryable."""

    INVALID_DIFF = "invalid_diff"  # caller bug: malformed request/document
    STRUCTURAL_VIOLATION = "structural_violation"
    PERMISSION_DENIED = "permission_denied"
    SCOPE_VIOLATION = "scope_violation"


class DenialCode(str, enum.Enum):
    # Malformed input
    MISSING_PRIOR_DOCUMENT = "missing_prior_document"
    UNEXPECTED_PRIOR_DOCUMENT = "unexpected_prior_document"
    MISSING_PROPOSED_DIFF = "missing_proposed_diff"
    UNEXPECTED_PROPOSED_DIFF = "unexpected_proposed_diff"
    MISSING_QUERY = "missing_query"
    INVALID_DOCUMENT = "invalid_document"
    UNKNOWN_FIELD = "unknown_field"
    INVALID_FIELD_VALUE = "invalid_field_value"
    INVALID_MARKER = "invalid_marker"
    DIFF_TOO_LARGE = "diff_too_large"
    INVALID_QUERY = "invalid_query"

    # Room lifecycle / invariants
    CREATED_AT_IMMUTABLE = "created_at_immutable"
    KIND_IMMUTABLE = "kind_immutable"
    NO_MASTERS = "no_masters"
    INVITE_REJECT_OVERLAP = "invite_reject_overlap"
    SELF_INVITE = "self_invite"
    INVITE_BLOCKED_USER = "invite_blocked_user"
    INVITE_EXISTING_MEMBER = "invite_existing_member"
    JOIN_CLOSED_ROOM = "join_closed_room"
    JOIN_SINGLE_ROOM = "join_single_room"
    JOIN_BLOCKED_USER = "join_blocked_user"
    BLOCK_LIFT_WITH_ENTRY = "block_lift_with_entry"
    REJECT_WITHOUT_INVITE = "reject_without_invite"
    REMOVE_NON_MEMBER = "remove_non_member"
    PROMOTE_NON_MEMBER = "promote_non_member"
    SINGLE_INVITE_LIMIT = "single_invite_limit"
    SINGLE_ROOM_FULL = "single_room_full"
    COUNTERS_WITH_MEMBERSHIP_CHANGE = "counters_with_membership_change"
    NEGATIVE_UNREAD_COUNT = "negative_unread_count"

    # Creation shape
    CREATOR_NOT_SOLE_MASTER = "creator_not_sole_master"
    CREATOR_NOT_SOLE_MEMBER = "creator_not_sole_member"
    CREATE_WITH_REJECTIONS = "create_with_rejections"
    CREATOR_BLOCKED = "creator_blocked"

    # Role / permission
    ANONYMOUS = "anonymous"
    REQUESTER_BLOCKED = "requester_blocked"
    NOT_A_MEMBER = "not_a_member"
    MASTER_ONLY = "master_only"
    MEMBERS_CANNOT_INVITE = "members_cannot_invite"
    SELF_ONLY = "self_only"
    ROLE_NOT_ALLOWED = "role_not_allowed"

    # Query scope
    FOREIGN_USER_SUBTREE = "foreign_user_subtree"
    FOREIGN_MEMBERSHIP_TEST = "foreign_membership_test"
    UNSCOPED_FIELD = "unscoped_field"
    UNSCOPED_QUERY = "unscoped_query"


class RuleViolation(Exception):
    """
    Raised by checkers; `evaluate()` turns it into a Deny decision.

    `detail` names the offending field/transition/uid so the caller can
    surface a precise message.
    """

    category: DenialCategory = DenialCategory.PERMISSION_DENIED

    def __init__(self, code: DenialCode, detail: Optional[str] = None) -> None:
        self.code = code
        self.detail = detail
        msg = code.value if not detail else f"{code.value}: {detail}"
        super().__init__(msg)


class InvalidDiff(RuleViolation):
    category = DenialCategory.INVALID_DIFF


class StructuralViolation(RuleViolation):
    category = DenialCategory.STRUCTURAL_VIOLATION


class PermissionDenied(RuleViolation):
    category = DenialCategory.PERMISSION_DENIED


class ScopeViolation(RuleViolation):
    category = DenialCategory.SCOPE_VIOLATION
