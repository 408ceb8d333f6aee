"""Chat room document-mutation authorization engine.

Given a requester, an operation, the stored room snapshot and the proposed
merge-write, decide Allow / Deny(code). Pure and synchronous with no I/O.
"""
from __future__ import annotations

from roomauthz.engine.decision import Decision, evaluate, evaluate_operation

__all__ = ["Decision", "evaluate", "evaluate_operation"]
