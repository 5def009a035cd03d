"""
questline.engine.verification — Verification Configs & Pure Evaluation
=======================================================================

A quest (or task) stores its verification parameters as a JSON blob.  This
module turns that blob into a closed union of typed configs, one shape per
family of :class:`VerificationKind`:

    HttpCheck           — email / discord_id / wallet_address / twitter_handle
    RoleCheck           — discord_role
    ActivityCountCheck  — discord_message_count / _reaction_count / _poll_count

Everything here is pure: no HTTP, no Discord, no DB.  The I/O lives in
:mod:`questline.services.verification_service`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import quote

from questline.constants import MAX_LOOKBACK_DAYS, VerificationKind
from questline.errors import ValidationError

# ---------------------------------------------------------------------------
# Success conditions (HTTP checks)
# ---------------------------------------------------------------------------
COMPARISON_OPERATORS = frozenset({">", ">=", "<", "<=", "=", "!="})
CONDITION_OPERATORS = COMPARISON_OPERATORS | {"exists", "not_empty"}
HTTP_METHODS = frozenset({"GET", "POST", "PUT", "PATCH"})

_PLACEHOLDER_RE = re.compile(
    r"\[(USER_IDENTIFIER|WALLET_ADDRESS|EMAIL|TWITTER_HANDLE|DISCORD_ID)\]",
    re.IGNORECASE,
)


@dataclass(frozen=True, slots=True)
class SuccessCondition:
    """``field`` (dotted path) ``operator`` ``value`` against a JSON response."""

    field: str = "balance"
    operator: str = ">"
    value: Any = 0

    def to_dict(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": self.value}


@dataclass(frozen=True, slots=True)
class HttpCheck:
    endpoint: str
    method: str = "GET"
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)
    success_condition: SuccessCondition = field(default_factory=SuccessCondition)

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "method": self.method,
            "headers": dict(self.headers),
            "params": dict(self.params),
            "success_condition": self.success_condition.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class RoleCheck:
    role_id: int
    role_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"role_id": str(self.role_id), "role_name": self.role_name}


@dataclass(frozen=True, slots=True)
class ActivityCountCheck:
    threshold: int = 1
    operator: str = ">="
    since_days: int | None = None
    channel_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "threshold": self.threshold,
            "operator": self.operator,
            "since_days": self.since_days,
            "channel_id": str(self.channel_id) if self.channel_id else None,
        }


VerificationConfig = HttpCheck | RoleCheck | ActivityCountCheck


@dataclass(frozen=True, slots=True)
class VerificationResult:
    """Outcome of one provider call.

    ``permanent_failure`` is only meaningful when ``success`` is False: it
    marks a rejection that retrying cannot fix (bad quest configuration).
    """

    success: bool
    permanent_failure: bool = False
    details: str = ""
    current_value: int | str | None = None
    required_value: int | str | None = None

    @classmethod
    def ok(cls, details: str = "", **kw: Any) -> VerificationResult:
        return cls(success=True, details=details, **kw)

    @classmethod
    def retry(cls, details: str, **kw: Any) -> VerificationResult:
        return cls(success=False, permanent_failure=False, details=details, **kw)

    @classmethod
    def reject(cls, details: str, **kw: Any) -> VerificationResult:
        return cls(success=False, permanent_failure=True, details=details, **kw)


class VerificationProvider(Protocol):
    """Anything that can check a quest/task condition for one user."""

    async def verify(
        self,
        kind: VerificationKind,
        config: VerificationConfig,
        identifier: str | None,
        *,
        user_id: int,
        guild_id: int,
    ) -> VerificationResult: ...


# ---------------------------------------------------------------------------
# Parsing / validation
# ---------------------------------------------------------------------------
def _get(raw: dict, *names: str, default: Any = None) -> Any:
    """Read the first present key (accepts snake_case and camelCase)."""
    for name in names:
        if name in raw and raw[name] is not None:
            return raw[name]
    return default


def _parse_snowflake(value: Any, field_name: str) -> int:
    try:
        snowflake = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a Discord ID", field=field_name)
    if snowflake <= 0:
        raise ValidationError(f"{field_name} must be a Discord ID", field=field_name)
    return snowflake


def parse_condition(raw: dict | None) -> SuccessCondition:
    if not raw:
        return SuccessCondition()
    operator = str(raw.get("operator", ">"))
    if operator not in CONDITION_OPERATORS:
        raise ValidationError(
            f"Unsupported success operator {operator!r}", field="success_condition"
        )
    field_path = str(raw.get("field", "")).strip()
    if not field_path:
        raise ValidationError("success_condition.field is required", field="success_condition")
    return SuccessCondition(field=field_path, operator=operator, value=raw.get("value"))


def parse_verification(
    kind: VerificationKind | str,
    raw: dict | None,
    *,
    max_lookback_days: int = MAX_LOOKBACK_DAYS,
) -> VerificationConfig:
    """Validate *raw* against *kind* and return the typed config.

    Raises
    ------
    ValidationError
        If the kind is unknown or the parameters are malformed.
    """
    try:
        kind = VerificationKind(kind)
    except ValueError:
        raise ValidationError(f"Unknown verification kind {kind!r}", field="verification_kind")
    raw = raw or {}

    if kind == VerificationKind.PLATFORM_ROLE:
        role_id = _get(raw, "role_id", "roleId")
        if role_id is None:
            raise ValidationError("role_id is required for role checks", field="role_id")
        return RoleCheck(
            role_id=_parse_snowflake(role_id, "role_id"),
            role_name=_get(raw, "role_name", "roleName"),
        )

    if kind.is_platform_native:
        operator = str(_get(raw, "operator", default=">="))
        if operator not in COMPARISON_OPERATORS:
            raise ValidationError(f"Unsupported operator {operator!r}", field="operator")
        try:
            threshold = int(_get(raw, "threshold", default=1))
        except (TypeError, ValueError):
            raise ValidationError("threshold must be an integer", field="threshold")
        if threshold < 0:
            raise ValidationError("threshold cannot be negative", field="threshold")

        since_days = _get(raw, "since_days", "sinceDays")
        if since_days is not None:
            try:
                since_days = int(since_days)
            except (TypeError, ValueError):
                raise ValidationError("since_days must be an integer", field="since_days")
            if not 1 <= since_days <= max_lookback_days:
                raise ValidationError(
                    f"since_days must be between 1 and {max_lookback_days}",
                    field="since_days",
                )

        channel_id = _get(raw, "channel_id", "channelId")
        return ActivityCountCheck(
            threshold=threshold,
            operator=operator,
            since_days=since_days,
            channel_id=_parse_snowflake(channel_id, "channel_id") if channel_id else None,
        )

    endpoint = str(_get(raw, "endpoint", "api_endpoint", default="")).strip()
    if not endpoint.lower().startswith(("http://", "https://")):
        raise ValidationError("endpoint must be an http(s) URL", field="endpoint")
    method = str(_get(raw, "method", "api_method", default="GET")).upper()
    if method not in HTTP_METHODS:
        raise ValidationError(f"Unsupported HTTP method {method!r}", field="method")
    headers = _get(raw, "headers", "api_headers", default={})
    params = _get(raw, "params", "api_params", default={})
    if not isinstance(headers, dict) or not isinstance(params, dict):
        raise ValidationError("headers and params must be objects", field="params")

    return HttpCheck(
        endpoint=endpoint,
        method=method,
        headers={str(k): str(v) for k, v in headers.items()},
        params=dict(params),
        success_condition=parse_condition(
            _get(raw, "success_condition", "successCondition")
        ),
    )


# ---------------------------------------------------------------------------
# HTTP request building
# ---------------------------------------------------------------------------
def substitute_placeholders(template: str, identifier: str, *, encode: bool = False) -> str:
    """Replace ``[EMAIL]``-style placeholders with the user's identifier."""
    value = quote(identifier, safe="") if encode else identifier
    return _PLACEHOLDER_RE.sub(lambda _m: value, template)


def build_request(check: HttpCheck, identifier: str) -> tuple[str, dict[str, Any]]:
    """Return ``(url, params)`` with placeholders filled in.

    The URL gets URL-encoded substitutions; param values get raw ones (the
    HTTP client encodes them).
    """
    url = substitute_placeholders(check.endpoint, identifier, encode=True)
    params: dict[str, Any] = {}
    for key, value in check.params.items():
        if isinstance(value, str):
            params[key] = substitute_placeholders(value, identifier)
        else:
            params[key] = str(value)
    return url, params


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------
_MISSING = object()


def _resolve_path(data: Any, path: str) -> Any:
    value = data
    for key in path.split("."):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return _MISSING
    return value


def _to_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None or value is _MISSING:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def compare(current: float, operator: str, target: float) -> bool:
    if operator == ">":
        return current > target
    if operator == ">=":
        return current >= target
    if operator == "<":
        return current < target
    if operator == "<=":
        return current <= target
    if operator == "=":
        return current == target
    if operator == "!=":
        return current != target
    return False


def evaluate_condition(data: Any, condition: SuccessCondition) -> bool:
    """Decide whether a JSON response satisfies *condition*."""
    value = _resolve_path(data, condition.field)

    if condition.operator == "exists":
        return value is not _MISSING and value is not None
    if condition.operator == "not_empty":
        if isinstance(value, (list, str, dict)):
            return len(value) > 0
        return value is not _MISSING and value is not None

    current = _to_number(value)
    target = _to_number(condition.value)
    if current is None or target is None:
        # Non-numeric: only equality makes sense
        if condition.operator == "=":
            return value is not _MISSING and value == condition.value
        if condition.operator == "!=":
            return value is _MISSING or value != condition.value
        return False
    return compare(current, condition.operator, target)
