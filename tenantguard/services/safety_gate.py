"""
Safety Gate — ordered guard chains in front of every mutating action.

A gate is a named, ordered list of guards. Each guard inspects a
``GateContext`` and returns ``None`` (pass) or a human-readable failure
message. ``SafetyGate.check`` stops at the first failure and raises
``ForbiddenError``; nothing is written and no audit event is recorded.

New destructive actions get the same two-factor discipline by composing
the existing guards:

    PURGE_GATE = SafetyGate(
        "purge",
        require_super_operator,
        require_flag("SUPER_DEBUG_DELETE_ALLOWED"),
        require_header("X-Confirm-Purge", "PURGE_ROWS"),
        require_body_field("confirmPhrase", "PURGE_ROWS"),
    )
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from tenantguard.core.exceptions import ForbiddenError

logger = logging.getLogger(__name__)

BACKFILL_FLAG = "BACKFILL_TENANT_IDS_ALLOWED"
DELETE_FLAG = "SUPER_DEBUG_DELETE_ALLOWED"
ACTIONS_FLAG = "SUPER_DEBUG_ACTIONS_ALLOWED"

BACKFILL_CONFIRM_HEADER = "X-Confirm-Backfill"
BACKFILL_CONFIRM_PHRASE = "APPLY_TENANTID_BACKFILL"
DELETE_CONFIRM_HEADER = "X-Confirm-Delete"
DELETE_CONFIRM_FIELD = "confirmPhrase"
DELETE_CONFIRM_PHRASE = "DELETE_QUARANTINED_ROW"

SAFETY_FLAGS = (BACKFILL_FLAG, DELETE_FLAG, ACTIONS_FLAG)


@dataclass(frozen=True)
class GateContext:
    """Everything a guard may look at. Header names are stored lower-cased."""

    flags: Mapping[str, bool] = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Mapping[str, Any] = field(default_factory=dict)
    actor: Any = None


Guard = Callable[[GateContext], "str | None"]


def require_super_operator(ctx: GateContext) -> str | None:
    actor = ctx.actor
    if actor is None or not getattr(actor, "is_super_user", False):
        return "Super user access required"
    return None


def require_flag(flag_name: str) -> Guard:
    """Guard: the named environment flag must be enabled."""
    def guard(ctx: GateContext) -> str | None:
        if not ctx.flags.get(flag_name, False):
            return f"Action not allowed. Set {flag_name}=true to enable it"
        return None
    guard.__name__ = f"require_flag[{flag_name}]"
    return guard


def require_header(header: str, phrase: str) -> Guard:
    """Guard: the request header must carry the literal confirmation phrase."""
    key = header.lower()

    def guard(ctx: GateContext) -> str | None:
        if ctx.headers.get(key) != phrase:
            return f"Confirmation required. Send header {header}: {phrase}"
        return None
    guard.__name__ = f"require_header[{header}]"
    return guard


def require_body_field(field_name: str, phrase: str) -> Guard:
    """Guard: the JSON body field must carry the literal confirmation phrase."""
    def guard(ctx: GateContext) -> str | None:
        if ctx.body.get(field_name) != phrase:
            return f"Confirmation phrase mismatch. {field_name} must be '{phrase}'"
        return None
    guard.__name__ = f"require_body_field[{field_name}]"
    return guard


class SafetyGate:
    """Named, ordered guard chain; short-circuits on the first failure."""

    def __init__(self, name: str, *guards: Guard) -> None:
        self.name = name
        self.guards = tuple(guards)

    def evaluate(self, ctx: GateContext) -> str | None:
        """Return the first failure message, or None if every guard passes."""
        for guard in self.guards:
            failure = guard(ctx)
            if failure is not None:
                return failure
        return None

    def allows(self, ctx: GateContext) -> bool:
        return self.evaluate(ctx) is None

    def check(self, ctx: GateContext) -> None:
        failure = self.evaluate(ctx)
        if failure is None:
            return
        logger.warning(
            "Safety gate '%s' denied: %s", self.name, failure,
            extra={"actor_user_id": getattr(ctx.actor, "id", None)},
        )
        raise ForbiddenError(failure, reason=self.name)

    def extend(self, name: str, *guards: Guard) -> "SafetyGate":
        """Return a new gate running this chain first, then *guards*."""
        return SafetyGate(name, *self.guards, *guards)

    def __repr__(self):
        return f"<SafetyGate {self.name}: {[g.__name__ for g in self.guards]}>"


# ── Gates ────────────────────────────────────────────────────────────────────

SUPER_OPERATOR_GATE = SafetyGate("super_operator", require_super_operator)

BACKFILL_APPLY_GATE = SUPER_OPERATOR_GATE.extend(
    "backfill_apply",
    require_flag(BACKFILL_FLAG),
    require_header(BACKFILL_CONFIRM_HEADER, BACKFILL_CONFIRM_PHRASE),
)

QUARANTINE_ACTION_GATE = SUPER_OPERATOR_GATE.extend(
    "quarantine_action",
    require_flag(ACTIONS_FLAG),
)

QUARANTINE_DELETE_GATE = SUPER_OPERATOR_GATE.extend(
    "quarantine_delete",
    require_flag(DELETE_FLAG),
    require_header(DELETE_CONFIRM_HEADER, DELETE_CONFIRM_PHRASE),
    require_body_field(DELETE_CONFIRM_FIELD, DELETE_CONFIRM_PHRASE),
)

# Operator CLI: no HTTP request, the environment flag is the whole gate
CLI_BACKFILL_APPLY_GATE = SafetyGate("cli_backfill_apply", require_flag(BACKFILL_FLAG))


def flags_from_config(config: Mapping[str, Any]) -> dict[str, bool]:
    return {name: bool(config.get(name, False)) for name in SAFETY_FLAGS}


def context_from_request(actor=None) -> GateContext:
    """Build a GateContext from the active Flask request and app config."""
    from flask import current_app, request

    body = request.get_json(silent=True)
    return GateContext(
        flags=flags_from_config(current_app.config),
        headers={k.lower(): v for k, v in request.headers.items()},
        body=body if isinstance(body, dict) else {},
        actor=actor,
    )


def confirmation_phrases() -> dict[str, dict[str, str]]:
    return {
        "backfill": {"header": BACKFILL_CONFIRM_HEADER, "phrase": BACKFILL_CONFIRM_PHRASE},
        "delete": {
            "header": DELETE_CONFIRM_HEADER,
            "body_field": DELETE_CONFIRM_FIELD,
            "phrase": DELETE_CONFIRM_PHRASE,
        },
    }
