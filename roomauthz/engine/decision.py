"""Decision Procedure (top-level entry point).

resolve role -> (blocked precedence) -> diff -> invariants -> permission matrix.
The first failing check short-circuits with its specific denial code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from roomauthz.authz.policy import EnginePolicy, load_engine_policy, redact_id
from roomauthz.core.models import OperationRequest, QueryPredicate
from roomauthz.engine.diff import analyze, parse_room
from roomauthz.engine.errors import DenialCategory, DenialCode, InvalidDiff, PermissionDenied, RuleViolation
from roomauthz.engine.invariants import ChangedItem, check_creation_invariants, check_invariants, classify_changes
from roomauthz.engine.matrix import RoomFacts, check_creation, check_delete, check_items, check_noop_write, check_read
from roomauthz.engine.query_scope import check_query_scope
from roomauthz.engine.roles import Role, resolve_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    code: Optional[DenialCode] = None
    category: Optional[DenialCategory] = None
    detail: Optional[str] = None
    role: Optional[Role] = None
    # Transitions/field writes the request was classified into (updates only).
    items: Tuple[str, ...] = ()

    @property
    def verdict(self) -> str:
        return "allow" if self.allowed else "deny"

    @property
    def retryable(self) -> bool:
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict,
            "code": self.code.value if self.code else None,
            "category": self.category.value if self.category else None,
            "detail": self.detail,
            "role": self.role.value if self.role else None,
            "items": list(self.items),
        }


@dataclass
class _Trace:
    role: Optional[Role] = None
    items: List[ChangedItem] = field(default_factory=list)

    def decision(self, exc: Optional[RuleViolation] = None) -> Decision:
        items = tuple(i.describe() for i in self.items)
        if exc is None:
            return Decision(allowed=True, role=self.role, items=items)
        return Decision(
            allowed=False,
            code=exc.code,
            category=exc.category,
            detail=exc.detail,
            role=self.role,
            items=items,
        )


def _require_prior(request: OperationRequest) -> Dict[str, Any]:
    if request.prior_document is None:
        raise InvalidDiff(DenialCode.MISSING_PRIOR_DOCUMENT, request.operation)
    return request.prior_document


def _evaluate_create(request: OperationRequest, policy: EnginePolicy, trace: _Trace) -> None:
    trace.role = Role.CREATOR
    if request.prior_document is not None:
        raise InvalidDiff(DenialCode.UNEXPECTED_PRIOR_DOCUMENT, "create")
    if request.proposed_diff is None:
        raise InvalidDiff(DenialCode.MISSING_PROPOSED_DIFF, "create")
    after, _ = analyze(None, None, request.proposed_diff, max_keys=policy.max_diff_keys)
    check_creation_invariants(after, request.requester_id)
    check_creation(after, request.requester_id)


def _evaluate_update(request: OperationRequest, policy: EnginePolicy, trace: _Trace) -> None:
    prior_doc = _require_prior(request)
    prior = parse_room(prior_doc, code=DenialCode.INVALID_DOCUMENT)
    trace.role = resolve_role(prior, request.requester_id)
    if trace.role == Role.BLOCKED:
        raise PermissionDenied(DenialCode.REQUESTER_BLOCKED, "update")
    if request.proposed_diff is None:
        raise InvalidDiff(DenialCode.MISSING_PROPOSED_DIFF, "update")

    after, diff = analyze(prior_doc, prior, request.proposed_diff, max_keys=policy.max_diff_keys)
    trace.items = classify_changes(prior, diff, request.requester_id)
    check_invariants(prior, after, diff, trace.items)
    if diff.is_empty:
        check_noop_write(trace.role)
        return
    check_items(trace.role, RoomFacts.from_room(prior), trace.items)


def _evaluate_single_doc(request: OperationRequest, trace: _Trace) -> None:
    prior = parse_room(_require_prior(request), code=DenialCode.INVALID_DOCUMENT)
    trace.role = resolve_role(prior, request.requester_id)
    if trace.role == Role.BLOCKED:
        raise PermissionDenied(DenialCode.REQUESTER_BLOCKED, request.operation)
    if request.proposed_diff is not None:
        raise InvalidDiff(DenialCode.UNEXPECTED_PROPOSED_DIFF, request.operation)
    if request.operation == "read":
        check_read(trace.role, prior)
    else:
        check_delete(trace.role)


def _evaluate_query(request: OperationRequest) -> None:
    if request.query is None:
        raise InvalidDiff(DenialCode.MISSING_QUERY, "query")
    check_query_scope(request.query, request.requester_id)


def _run(request: OperationRequest, policy: EnginePolicy, trace: _Trace) -> None:
    if not request.requester_id or request.requester_id == policy.anonymous_id:
        raise PermissionDenied(DenialCode.ANONYMOUS, request.operation)
    if request.operation == "create":
        _evaluate_create(request, policy, trace)
    elif request.operation == "update":
        _evaluate_update(request, policy, trace)
    elif request.operation == "query":
        _evaluate_query(request)
    else:
        _evaluate_single_doc(request, trace)


def _log_decision(request: OperationRequest, decision: Decision, policy: EnginePolicy) -> None:
    if not policy.log_decisions:
        return
    who = redact_id(request.requester_id, enabled=policy.redact_ids)
    role = decision.role.value if decision.role else "-"
    if not decision.allowed:
        logger.info(
            "deny op=%s requester=%s role=%s category=%s code=%s detail=%s",
            request.operation,
            who,
            role,
            decision.category.value if decision.category else "-",
            decision.code.value if decision.code else "-",
            decision.detail or "-",
        )
    elif policy.log_allows:
        logger.debug("allow op=%s requester=%s role=%s items=%s", request.operation, who, role, ",".join(decision.items))


def evaluate(request: OperationRequest, *, policy: Optional[EnginePolicy] = None) -> Decision:
    """
    Decide one operation. Never raises for a constructed `OperationRequest`:
    every rule failure (malformed diff included) comes back as a Deny decision.
    """
    policy = policy or load_engine_policy()
    trace = _Trace()
    try:
        _run(request, policy, trace)
        decision = trace.decision()
    except RuleViolation as e:
        decision = trace.decision(e)
    _log_decision(request, decision, policy)
    return decision


def evaluate_operation(
    operation: str,
    requester_id: str,
    *,
    prior: Optional[Dict[str, Any]] = None,
    proposed: Optional[Dict[str, Any]] = None,
    query: Union[QueryPredicate, Dict[str, Any], None] = None,
    policy: Optional[EnginePolicy] = None,
) -> Decision:
    """Keyword convenience around `evaluate`; malformed request shapes become InvalidDiff denials."""
    try:
        request = OperationRequest(
            operation=operation,
            requester_id=requester_id,
            prior_document=prior,
            proposed_diff=proposed,
            query=query,
        )
    except ValidationError as e:
        err = e.errors()[0] if e.errors() else {}
        loc = [str(p) for p in err.get("loc", ())]
        code = DenialCode.INVALID_QUERY if loc and loc[0] == "query" else DenialCode.INVALID_FIELD_VALUE
        return Decision(
            allowed=False,
            code=code,
            category=DenialCategory.INVALID_DIFF,
            detail=f"{'.'.join(loc) or 'request'}: {err.get('msg', 'invalid')}",
        )
    return evaluate(request, policy=policy)
