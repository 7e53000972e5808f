"""
Retry policy encoder.

Translates the editor's declarative retry strategies into the runtime's retry
option shape (`temporalio.common.RetryPolicy`) and exposes the backoff rule
shared by node-level retries and block-level `retry` nodes.

Strategy mapping:
    keep-trying          -> no attempt cap, exponential coefficients
    fail-after-x         -> maxAttempts verbatim (3 when omitted)
    exponential-backoff  -> maxAttempts (5 when omitted), exponential coefficients
    none                 -> maximum_attempts=1
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Mapping, Optional

from workflow_codegen.compiler.codegen import format_number, format_timedelta, parse_duration
from workflow_codegen.schema.models import RetryPolicySpec, RetryStrategy

DEFAULT_INITIAL_INTERVAL_S = 1.0
DEFAULT_MAX_INTERVAL_S = 3600.0
DEFAULT_BACKOFF_COEFFICIENT = 2.0
DEFAULT_FAIL_AFTER_ATTEMPTS = 3
DEFAULT_EXPONENTIAL_ATTEMPTS = 5


@dataclass(frozen=True)
class RetryOptions:
    """Runtime retry options; `None` fields are left to the runtime's defaults."""

    maximum_attempts: Optional[int] = None
    initial_interval: Optional[float] = None
    maximum_interval: Optional[float] = None
    backoff_coefficient: Optional[float] = None

    @property
    def unlimited(self) -> bool:
        return self.maximum_attempts is None


def _seconds(value: Any, default: Optional[float]) -> Optional[float]:
    if value is None:
        return default
    return parse_duration(value)


def encode_retry_policy(policy: RetryPolicySpec) -> RetryOptions:
    strategy = policy.strategy

    if strategy == RetryStrategy.keep_trying:
        return RetryOptions(
            maximum_attempts=None,
            initial_interval=_seconds(policy.initial_interval, DEFAULT_INITIAL_INTERVAL_S),
            maximum_interval=_seconds(policy.max_interval, DEFAULT_MAX_INTERVAL_S),
            backoff_coefficient=policy.backoff_coefficient or DEFAULT_BACKOFF_COEFFICIENT,
        )

    if strategy == RetryStrategy.fail_after_x:
        return RetryOptions(
            maximum_attempts=policy.max_attempts or DEFAULT_FAIL_AFTER_ATTEMPTS,
            initial_interval=_seconds(policy.initial_interval, DEFAULT_INITIAL_INTERVAL_S),
            maximum_interval=_seconds(policy.max_interval, None),
            backoff_coefficient=policy.backoff_coefficient,
        )

    if strategy == RetryStrategy.exponential_backoff:
        return RetryOptions(
            maximum_attempts=policy.max_attempts or DEFAULT_EXPONENTIAL_ATTEMPTS,
            initial_interval=_seconds(policy.initial_interval, DEFAULT_INITIAL_INTERVAL_S),
            maximum_interval=_seconds(policy.max_interval, DEFAULT_MAX_INTERVAL_S),
            backoff_coefficient=policy.backoff_coefficient or DEFAULT_BACKOFF_COEFFICIENT,
        )

    return RetryOptions(maximum_attempts=1)


def render_retry_policy(options: RetryOptions) -> str:
    """Render options as a `RetryPolicy(...)` constructor expression."""

    args: List[str] = []
    if options.initial_interval is not None:
        args.append(f"initial_interval={format_timedelta(options.initial_interval)}")
    if options.backoff_coefficient is not None:
        args.append(f"backoff_coefficient={float(options.backoff_coefficient)!r}")
    if options.maximum_interval is not None:
        args.append(f"maximum_interval={format_timedelta(options.maximum_interval)}")
    if options.maximum_attempts is not None:
        args.append(f"maximum_attempts={options.maximum_attempts}")
    return f"RetryPolicy({', '.join(args)})"


# ----------------------------------------------------------------------
# Backoff rule
# ----------------------------------------------------------------------
class BackoffType(str, Enum):
    exponential = "exponential"
    linear = "linear"
    fixed = "fixed"
    none = "none"


@dataclass(frozen=True)
class BackoffSpec:
    type: BackoffType = BackoffType.exponential
    initial_interval: float = DEFAULT_INITIAL_INTERVAL_S
    multiplier: float = DEFAULT_BACKOFF_COEFFICIENT
    max_interval: Optional[float] = None

    @classmethod
    def from_config(cls, raw: Mapping[str, Any] | None) -> "BackoffSpec":
        """Build from a retry node's `config.backoff`; raises ValueError on bad input."""

        raw = raw or {}
        try:
            backoff_type = BackoffType(raw.get("type", BackoffType.exponential.value))
        except ValueError as exc:
            raise ValueError(f"Unknown backoff type {raw.get('type')!r}") from exc
        multiplier = raw.get("multiplier", DEFAULT_BACKOFF_COEFFICIENT)
        if isinstance(multiplier, bool) or not isinstance(multiplier, (int, float)) or multiplier < 1:
            raise ValueError(f"Backoff multiplier must be a number >= 1, got {multiplier!r}")
        return cls(
            type=backoff_type,
            initial_interval=_seconds(raw.get("initialInterval"), DEFAULT_INITIAL_INTERVAL_S),
            multiplier=float(multiplier),
            max_interval=_seconds(raw.get("maxInterval"), None),
        )


def backoff_delay(spec: BackoffSpec, attempt: int) -> float:
    """Delay in seconds before retrying after the given 1-based attempt."""

    if attempt < 1:
        raise ValueError("attempt is 1-based")
    if spec.type == BackoffType.exponential:
        delay = spec.initial_interval * spec.multiplier ** (attempt - 1)
        if spec.max_interval is not None:
            delay = min(delay, spec.max_interval)
        return delay
    if spec.type == BackoffType.linear:
        return spec.initial_interval * attempt
    return spec.initial_interval


def backoff_expression(spec: BackoffSpec, attempt_var: str) -> str:
    """The same rule as `backoff_delay`, as a Python expression over `attempt_var`."""

    initial = format_number(spec.initial_interval)
    if spec.type == BackoffType.exponential:
        expression = f"{initial} * {format_number(spec.multiplier)} ** ({attempt_var} - 1)"
        if spec.max_interval is not None:
            expression = f"min({expression}, {format_number(spec.max_interval)})"
        return expression
    if spec.type == BackoffType.linear:
        return f"{initial} * {attempt_var}"
    return initial
