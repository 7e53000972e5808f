from __future__ import annotations

import pytest

from workflow_codegen.compiler.codegen import format_value, parse_duration, to_identifier, to_pascal_case
from workflow_codegen.compiler.retry_policy import (
    BackoffSpec,
    BackoffType,
    backoff_delay,
    backoff_expression,
    encode_retry_policy,
    render_retry_policy,
)
from workflow_codegen.schema.models import RetryPolicySpec


def test_fail_after_x_emits_exact_attempt_cap() -> None:
    options = encode_retry_policy(RetryPolicySpec.model_validate({"strategy": "fail-after-x", "maxAttempts": 3}))
    rendered = render_retry_policy(options)

    assert options.maximum_attempts == 3
    assert not options.unlimited
    assert "maximum_attempts=3" in rendered
    assert rendered.count("maximum_attempts") == 1


def test_fail_after_x_defaults_to_three_attempts() -> None:
    options = encode_retry_policy(RetryPolicySpec.model_validate({"strategy": "fail-after-x"}))

    assert options.maximum_attempts == 3
    assert options.backoff_coefficient is None


def test_keep_trying_has_no_attempt_cap() -> None:
    options = encode_retry_policy(RetryPolicySpec.model_validate({"strategy": "keep-trying"}))
    rendered = render_retry_policy(options)

    assert options.unlimited
    assert "maximum_attempts" not in rendered
    assert rendered == (
        "RetryPolicy(initial_interval=timedelta(seconds=1), backoff_coefficient=2.0, "
        "maximum_interval=timedelta(seconds=3600))"
    )


def test_exponential_backoff_defaults_and_overrides() -> None:
    defaults = encode_retry_policy(RetryPolicySpec.model_validate({"strategy": "exponential-backoff"}))
    custom = encode_retry_policy(
        RetryPolicySpec.model_validate(
            {
                "strategy": "exponential-backoff",
                "maxAttempts": 7,
                "initialInterval": "500ms",
                "maxInterval": "1m",
                "backoffCoefficient": 3,
            }
        )
    )

    assert defaults.maximum_attempts == 5
    assert defaults.backoff_coefficient == 2.0
    assert custom.maximum_attempts == 7
    assert custom.initial_interval == pytest.approx(0.5)
    assert custom.maximum_interval == pytest.approx(60.0)
    assert "backoff_coefficient=3.0" in render_retry_policy(custom)


def test_none_strategy_is_a_single_attempt() -> None:
    options = encode_retry_policy(RetryPolicySpec())

    assert options.maximum_attempts == 1
    assert render_retry_policy(options) == "RetryPolicy(maximum_attempts=1)"


def test_backoff_delays() -> None:
    exponential = BackoffSpec.from_config({"type": "exponential", "initialInterval": "1s", "multiplier": 2})
    capped = BackoffSpec.from_config({"initialInterval": "1s", "multiplier": 2, "maxInterval": "3s"})
    linear = BackoffSpec.from_config({"type": "linear", "initialInterval": "2s"})
    fixed = BackoffSpec.from_config({"type": "fixed", "initialInterval": "5s"})
    none = BackoffSpec.from_config({"type": "none", "initialInterval": "5s"})

    assert [backoff_delay(exponential, attempt) for attempt in (1, 2, 3)] == [1.0, 2.0, 4.0]
    assert backoff_delay(capped, 5) == 3.0
    assert backoff_delay(linear, 3) == 6.0
    assert backoff_delay(fixed, 4) == 5.0
    assert backoff_delay(none, 2) == 5.0


def test_backoff_expression_matches_numeric_rule() -> None:
    cases = [
        BackoffSpec.from_config({"type": "exponential", "initialInterval": "500ms", "multiplier": 3, "maxInterval": "10s"}),
        BackoffSpec.from_config({"type": "linear", "initialInterval": "2s"}),
        BackoffSpec.from_config({"type": "fixed", "initialInterval": "1500ms"}),
    ]

    for spec in cases:
        expression = backoff_expression(spec, "attempt")
        for attempt in range(1, 6):
            assert eval(expression, {}, {"attempt": attempt}) == pytest.approx(backoff_delay(spec, attempt))


def test_backoff_config_is_validated() -> None:
    assert BackoffSpec.from_config(None).type == BackoffType.exponential
    with pytest.raises(ValueError):
        BackoffSpec.from_config({"type": "random"})
    with pytest.raises(ValueError):
        BackoffSpec.from_config({"multiplier": 0.5})
    with pytest.raises(ValueError):
        BackoffSpec.from_config({"initialInterval": "later"})


@pytest.mark.parametrize(
    "raw, seconds",
    [
        ("500ms", 0.5),
        ("30s", 30.0),
        ("5m", 300.0),
        ("5 minutes", 300.0),
        ("30 seconds", 30.0),
        ("2h", 7200.0),
        ("1d", 86400.0),
        (1500, 1.5),
    ],
)
def test_parse_duration(raw, seconds: float) -> None:
    assert parse_duration(raw) == pytest.approx(seconds)


@pytest.mark.parametrize("raw", ["", "soon", "5 fortnights", -1, True, None])
def test_parse_duration_rejects_garbage(raw) -> None:
    with pytest.raises(ValueError):
        parse_duration(raw)


def test_identifiers_and_literals() -> None:
    assert to_identifier("fetch-user.data") == "fetch_user_data"
    assert to_identifier("1st", prefix="node") == "node_1st"
    assert to_identifier("class", prefix="var") == "var_class"
    assert to_identifier("state", prefix="var") == "var_state"
    for builtin_name in ("bool", "isinstance", "sum", "list", "Exception", "len"):
        assert to_identifier(builtin_name, prefix="var") == f"var_{builtin_name}"
    assert to_pascal_case("order fulfillment-v2") == "OrderFulfillmentV2"
    assert to_pascal_case("42 things") == "Workflow42Things"
    assert format_value({"a": [1, True, None], "b": "x\"y"}) == '{"a": [1, True, None], "b": "x\\"y"}'
