from __future__ import annotations

import hashlib
import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class EnginePolicy:
    """
    Operational knobs for the engine.

    None of these change what is allowed; the rule set is fixed. They cover
    the unauthenticated sentinel, request size limits and decision logging.
    """

    # Requester id the transport uses for unauthenticated callers.
    anonymous_id: str = "anonymous"

    # Caps
    max_diff_keys: int = 500

    # Logging
    log_decisions: bool = True
    log_allows: bool = False
    redact_ids: bool = True


def load_engine_policy() -> EnginePolicy:
    """
    Load engine policy from env (ConfigMap/Secret friendly).

    Recommended vars:
    - ROOMAUTHZ_ANONYMOUS_ID=anonymous
    - ROOMAUTHZ_MAX_DIFF_KEYS=500
    - ROOMAUTHZ_LOG_DECISIONS=1
    - ROOMAUTHZ_LOG_ALLOWS=0
    - ROOMAUTHZ_REDACT_IDS=1
    """
    anonymous_id = (os.getenv("ROOMAUTHZ_ANONYMOUS_ID", "") or "").strip() or "anonymous"

    return EnginePolicy(
        anonymous_id=anonymous_id,
        max_diff_keys=max(10, min(_env_int("ROOMAUTHZ_MAX_DIFF_KEYS", 500), 5000)),
        log_decisions=_env_bool("ROOMAUTHZ_LOG_DECISIONS", True),
        log_allows=_env_bool("ROOMAUTHZ_LOG_ALLOWS", False),
        redact_ids=_env_bool("ROOMAUTHZ_REDACT_IDS", True),
    )


def redact_id(uid: str, *, enabled: bool = True) -> str:
    """
    Stable pseudonym for a user id in log lines: "u:" + first 8 hex chars of sha256.
    """
    if not enabled or not uid:
        return uid
    return "u:" + hashlib.sha256(uid.encode("utf-8")).hexdigest()[:8]
