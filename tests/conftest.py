"""
Pytest config.

Tests import the local `roomauthz/` package and the root `main.py` harness. When a
global `pytest` entrypoint is used without an editable install, the repo root is
not reliably on sys.path during collection, so we pin it here.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

APPLE = "apple"
BANANA = "banana"
CARROT = "carrot"
EGGPLANT = "eggPlant"
FLOWER = "flower"


@pytest.fixture(autouse=True)
def _clean_engine_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Engine policy is env driven; start every test from defaults."""
    for name in (
        "ROOMAUTHZ_ANONYMOUS_ID",
        "ROOMAUTHZ_MAX_DIFF_KEYS",
        "ROOMAUTHZ_LOG_DECISIONS",
        "ROOMAUTHZ_LOG_ALLOWS",
        "ROOMAUTHZ_REDACT_IDS",
    ):
        monkeypatch.delenv(name, raising=False)


def room_doc(
    *,
    masters: Iterable[str] = (APPLE, BANANA),
    members: Iterable[str] = (APPLE, BANANA, CARROT),
    invited: Iterable[str] = (),
    rejected: Iterable[str] = (),
    blocked: Iterable[str] = (),
    **extra: Any,
) -> Dict[str, Any]:
    """Stored room document in wire form (camelCase, list-valued sets)."""
    doc: Dict[str, Any] = {
        "name": "apple group",
        "masterUsers": list(masters),
        "users": {uid: {"nMC": 0} for uid in members},
    }
    if invited:
        doc["invitedUsers"] = list(invited)
    if rejected:
        doc["rejectedUsers"] = list(rejected)
    if blocked:
        doc["blockedUsers"] = list(blocked)
    doc.update(extra)
    return doc


@pytest.fixture
def make_room():
    return room_doc


@pytest.fixture
def apple_group() -> Dict[str, Any]:
    """Closed group: masters apple+banana, member carrot, eggPlant invited, flower rejected."""
    return room_doc(group=True, invited=[EGGPLANT], rejected=[FLOWER])


@pytest.fixture
def update():
    from roomauthz.engine.decision import evaluate_operation

    def _update(requester: str, prior: Dict[str, Any], proposed: Dict[str, Any]):
        return evaluate_operation("update", requester, prior=prior, proposed=proposed)

    return _update


@pytest.fixture
def create():
    from roomauthz.engine.decision import evaluate_operation

    def _create(requester: str, proposed: Dict[str, Any], prior: Optional[Dict[str, Any]] = None):
        return evaluate_operation("create", requester, prior=prior, proposed=proposed)

    return _create
