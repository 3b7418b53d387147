"""Tests for ModelRouter.

Tests cover:
- Primary selection from step overrides and defaults
- Fallback ordering per strategy, with the primary never retried
- Budget gating before execution
- Offline mode bypassing fallback
- Error annotation and exhaustion reporting
- Request overlay of model, temperature and max tokens
"""

from __future__ import annotations

import asyncio

import pytest
from structlog.testing import capture_logs

from src.providers.base import (
    GenerationRequest,
    GenerationResponse,
    ProviderError,
    ProviderUnavailableError,
    TokenUsage,
)
from src.routing.budget import CostLedger
from src.routing.config import CostManagementConfig
from src.routing.errors import (
    AllProvidersFailedError,
    BudgetExceededError,
    ProviderNotRegisteredError,
)
from src.routing.router import ModelRouter


def _fallback(strategy: str, *names: str) -> dict:
    return {
        "enabled": True,
        "strategy": strategy,
        "providers": [{"provider": name, "model": f"{name}-model"} for name in names],
    }


def _router(providers, config, **kwargs) -> ModelRouter:
    return ModelRouter({p.name: p for p in providers}, config, **kwargs)


# ------------------------------------------------------------------ #
# Primary routing
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_primary_success_uses_no_fallback(make_provider, make_config, request_):
    a = make_provider("A")
    b = make_provider("B")
    config = make_config(
        defaults={"provider": "A", "model": "a-model"},
        fallback=_fallback("cascade", "B"),
    )
    router = _router([a, b], config)

    result = await router.route("score", request_)

    assert result.fallback_used is False
    assert result.attempted_providers == ["A"]
    assert result.provider == "A"
    assert result.content == "response from A"
    assert b.calls == 0


@pytest.mark.asyncio
async def test_step_override_selects_primary(make_provider, make_config, request_):
    a = make_provider("A")
    b = make_provider("B")
    config = make_config(
        defaults={"provider": "A", "model": "a-model"},
        steps={"score": {"provider": "B", "model": "b-cheap", "reason": "cheap"}},
    )
    router = _router([a, b], config)

    result = await router.route("score", request_)

    assert result.provider == "B"
    assert result.model == "b-cheap"
    assert a.calls == 0
    assert router.resolve_step("score") == ("B", "b-cheap")
    assert router.resolve_step("extract") == ("A", "a-model")


@pytest.mark.asyncio
async def test_successful_response_is_recorded(make_provider, make_config, request_):
    a = make_provider("A", cost_usd=0.02, usage=TokenUsage(input_tokens=100, output_tokens=50))
    router = _router([a], make_config(defaults={"provider": "A", "model": "m"}))

    await router.route("score", request_)

    stats = router.get_cost_statistics()
    assert stats.total_cost_usd == pytest.approx(0.02)
    assert stats.total_requests == 1
    assert stats.total_input_tokens == 100
    assert stats.total_output_tokens == 50


# ------------------------------------------------------------------ #
# End-to-end scenarios
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_unavailable_primary_falls_back_in_cascade(make_provider, make_config, request_):
    a = make_provider("A", available=False)
    b = make_provider("B", cost_usd=0.02, usage=TokenUsage(input_tokens=100, output_tokens=50))
    c = make_provider("C")
    config = make_config(
        defaults={"provider": "D", "model": "d-model"},
        steps={"score": {"provider": "A", "model": "a-model"}},
        fallback=_fallback("cascade", "B", "C"),
    )
    router = _router([a, b, c], config)

    result = await router.route("score", request_)

    assert result.fallback_used is True
    assert result.attempted_providers == ["A", "B"]
    assert result.provider == "B"
    assert a.calls == 0
    assert c.calls == 0
    stats = router.get_cost_statistics()
    assert stats.total_cost_usd == pytest.approx(0.02)
    assert stats.total_requests == 1


@pytest.mark.asyncio
async def test_budget_breach_blocks_execution(make_provider, make_config, request_):
    limits = CostManagementConfig(per_run_limit_usd=0.10)
    ledger = CostLedger(limits)
    ledger.record(GenerationResponse(content="x", provider="A", model="m", cost_usd=0.09))
    a = make_provider("A", estimate_usd=0.05)
    config = make_config(
        defaults={"provider": "A", "model": "a-model"},
        cost_management={"per_run_limit_usd": 0.10},
    )
    router = _router([a], config, ledger=ledger)

    assert router.ledger.can_afford(0.05) is False
    with pytest.raises(BudgetExceededError) as exc_info:
        await router.route("score", request_)

    assert a.calls == 0
    assert exc_info.value.limit_name == "per_run_limit_usd"
    assert exc_info.value.step == "score"
    assert exc_info.value.attempted_providers == ["A"]


@pytest.mark.asyncio
async def test_budget_rejection_is_logged_below_error(make_provider, make_config, request_):
    a = make_provider("A", estimate_usd=5.0)
    config = make_config(
        defaults={"provider": "A", "model": "a-model"},
        cost_management={"per_run_limit_usd": 1.0},
    )
    router = _router([a], config)

    with capture_logs() as logs, pytest.raises(BudgetExceededError):
        await router.route("score", request_)

    levels = {e["event"]: e["log_level"] for e in logs}
    assert levels["cost_ledger.limit_exceeded"] == "warning"
    assert levels["model_router.budget_rejected"] == "warning"
    assert "error" not in levels.values()


@pytest.mark.asyncio
async def test_budget_breach_on_primary_falls_back_to_local(make_provider, make_config, request_):
    a = make_provider("A", estimate_usd=5.0)
    local = make_provider("ollama", local=True)
    config = make_config(
        defaults={"provider": "A", "model": "a-model"},
        fallback=_fallback("cascade", "ollama"),
        cost_management={"per_run_limit_usd": 1.0},
    )
    router = _router([a, local], config)

    result = await router.route("score", request_)

    assert result.provider == "ollama"
    assert result.attempted_providers == ["A", "ollama"]
    assert a.calls == 0


# ------------------------------------------------------------------ #
# Fallback
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_primary_is_not_retried_from_fallback_list(
    make_provider, make_failing, make_config, request_
):
    a = make_failing("A")
    b = make_provider("B")
    config = make_config(
        defaults={"provider": "A", "model": "a-model"},
        fallback=_fallback("cascade", "A", "B"),
    )
    router = _router([a, b], config)

    result = await router.route("score", request_)

    assert result.attempted_providers == ["A", "B"]
    assert a.calls == 1


@pytest.mark.asyncio
async def test_fallback_list_holding_only_primary_exhausts(make_failing, make_config, request_):
    a = make_failing("A")
    config = make_config(
        defaults={"provider": "A", "model": "a-model"},
        fallback={
            "enabled": True,
            "strategy": "cascade",
            "providers": [{"provider": "A", "model": "a-other-model"}],
        },
    )
    router = _router([a], config)

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await router.route("score", request_)

    assert exc_info.value.attempted_providers == ["A"]
    assert exc_info.value.__cause__ is a.error
    assert [name for name, _ in exc_info.value.failures] == ["A"]
    assert a.calls == 1


@pytest.mark.asyncio
async def test_exhausted_fallback_reports_every_failure(make_failing, make_config, request_):
    a = make_failing("A")
    b = make_failing("B")
    c = make_failing("C")
    config = make_config(
        defaults={"provider": "A", "model": "a-model"},
        fallback=_fallback("cascade", "B", "C"),
    )
    router = _router([a, b, c], config)

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await router.route("score", request_)

    error = exc_info.value
    assert error.attempted_providers == ["A", "B", "C"]
    assert error.step == "score"
    assert error.__cause__ is a.error
    assert error.primary_failure is a.error
    assert [name for name, _ in error.failures] == ["A", "B", "C"]
    assert "score" in str(error)
    assert "A exploded" in str(error)


@pytest.mark.asyncio
async def test_round_robin_start_advances_each_consultation(make_failing, make_config, request_):
    providers = [make_failing(name) for name in ("P", "B", "C", "D")]
    config = make_config(
        defaults={"provider": "P", "model": "p-model"},
        fallback=_fallback("round-robin", "B", "C", "D"),
    )
    router = _router(providers, config)

    sequences = []
    for _ in range(4):
        with pytest.raises(AllProvidersFailedError) as exc_info:
            await router.route("score", request_)
        sequences.append(exc_info.value.attempted_providers)

    assert sequences[0] == ["P", "B", "C", "D"]
    assert sequences[1] == ["P", "C", "D", "B"]
    assert sequences[2] == ["P", "D", "B", "C"]
    assert sequences[3] == sequences[0]


@pytest.mark.asyncio
async def test_cheapest_first_tries_local_before_cheaper_remote(
    make_provider, make_failing, make_config, request_
):
    a = make_failing("A")
    remote = make_provider("remote", estimate_usd=0.0001)
    local = make_provider("local", local=True)
    config = make_config(
        defaults={"provider": "A", "model": "a-model"},
        fallback=_fallback("cheapest-first", "remote", "local"),
    )
    router = _router([a, remote, local], config)

    result = await router.route("score", request_)

    assert result.provider == "local"
    assert result.attempted_providers == ["A", "local"]
    assert remote.calls == 0


@pytest.mark.asyncio
async def test_unregistered_primary_is_a_fallback_eligible_failure(
    make_provider, make_config, request_
):
    b = make_provider("B")
    config = make_config(
        defaults={"provider": "ghost", "model": "g-model"},
        fallback=_fallback("cascade", "B"),
    )
    router = _router([b], config)

    result = await router.route("score", request_)

    assert result.attempted_providers == ["ghost", "B"]


@pytest.mark.asyncio
async def test_unregistered_candidate_recorded_in_failures(make_failing, make_config, request_):
    a = make_failing("A")
    config = make_config(
        defaults={"provider": "A", "model": "a-model"},
        fallback=_fallback("cascade", "ghost"),
    )
    router = _router([a], config)

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await router.route("score", request_)

    name, failure = exc_info.value.failures[-1]
    assert name == "ghost"
    assert isinstance(failure, ProviderNotRegisteredError)


@pytest.mark.asyncio
async def test_unexpected_exception_is_normalised(make_provider, make_config, request_):
    a = make_provider("A", error=RuntimeError("socket closed"))
    b = make_provider("B")
    config = make_config(
        defaults={"provider": "A", "model": "a-model"},
        fallback=_fallback("cascade", "B"),
    )
    router = _router([a, b], config)

    result = await router.route("score", request_)

    assert result.provider == "B"


@pytest.mark.asyncio
async def test_disabled_fallback_surfaces_primary_error(
    make_provider, make_failing, make_config, request_
):
    a = make_failing("A")
    b = make_provider("B")
    router = _router([a, b], make_config(defaults={"provider": "A", "model": "a-model"}))

    with pytest.raises(ProviderError) as exc_info:
        await router.route("extract", request_)

    assert exc_info.value is a.error
    assert exc_info.value.step == "extract"
    assert exc_info.value.attempted_providers == ["A"]
    assert b.calls == 0


# ------------------------------------------------------------------ #
# Offline mode
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_offline_mode_forces_local_provider(make_provider, make_config, request_):
    a = make_provider("A")
    local = make_provider("ollama", local=True)
    config = make_config(
        defaults={"provider": "A", "model": "a-model"},
        steps={"score": {"provider": "A", "model": "a-model"}},
        offline_mode={
            "enabled": True,
            "default_provider": "ollama",
            "default_model": "llama3.2:latest",
        },
    )
    router = _router([a, local], config)

    result = await router.route(
        "score", GenerationRequest(system_prompt="s", user_prompt="u", model="a-model")
    )

    assert result.provider == "ollama"
    assert result.model == "llama3.2:latest"
    assert result.attempted_providers == ["ollama"]
    assert a.calls == 0
    assert router.resolve_step("score") == ("ollama", "llama3.2:latest")


@pytest.mark.asyncio
async def test_offline_failure_never_consults_fallback(
    make_provider, make_config, request_
):
    b = make_provider("B")
    local = make_provider("ollama", local=True, available=False)
    config = make_config(
        defaults={"provider": "B", "model": "b-model"},
        fallback=_fallback("cascade", "B"),
        offline_mode={
            "enabled": True,
            "default_provider": "ollama",
            "default_model": "llama3.2:latest",
        },
    )
    router = _router([b, local], config)

    with pytest.raises(ProviderUnavailableError) as exc_info:
        await router.route("score", request_)

    assert exc_info.value.attempted_providers == ["ollama"]
    assert b.calls == 0


# ------------------------------------------------------------------ #
# Request overlay
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_defaults_fill_temperature_and_max_tokens(make_provider, make_config):
    a = make_provider("A")
    config = make_config(
        defaults={"provider": "A", "model": "a-model", "temperature": 0.2, "maxTokens": 512}
    )
    router = _router([a], config)

    await router.route("score", GenerationRequest(system_prompt="s", user_prompt="u"))

    (sent,) = a.requests
    assert sent.model == "a-model"
    assert sent.temperature == 0.2
    assert sent.max_tokens == 512


@pytest.mark.asyncio
async def test_explicit_request_values_win_on_primary(make_provider, make_config):
    a = make_provider("A")
    config = make_config(
        defaults={"provider": "A", "model": "a-model", "temperature": 0.2, "maxTokens": 512}
    )
    router = _router([a], config)

    await router.route(
        "score",
        GenerationRequest(
            system_prompt="s", user_prompt="u", model="a-large", temperature=0.9, max_tokens=64
        ),
    )

    (sent,) = a.requests
    assert sent.model == "a-large"
    assert sent.temperature == 0.9
    assert sent.max_tokens == 64


@pytest.mark.asyncio
async def test_fallback_attempt_uses_candidate_model(make_provider, make_failing, make_config):
    a = make_failing("A")
    b = make_provider("B")
    config = make_config(
        defaults={"provider": "A", "model": "a-model"},
        fallback=_fallback("cascade", "B"),
    )
    router = _router([a, b], config)

    await router.route(
        "score", GenerationRequest(system_prompt="s", user_prompt="u", model="a-large")
    )

    assert a.requests[0].model == "a-large"
    assert b.requests[0].model == "B-model"
    assert b.estimate_requests[0].model == "B-model"


# ------------------------------------------------------------------ #
# Diagnostics
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_provider_availability_queries(make_provider, make_config):
    a = make_provider("A")
    b = make_provider("B", available=False)
    router = _router([a, b], make_config(defaults={"provider": "A", "model": "m"}))

    assert router.get_registered_providers() == ["A", "B"]
    assert await router.get_available_providers() == ["A"]
    assert await router.is_provider_available("B") is False
    assert await router.is_provider_available("ghost") is False


@pytest.mark.asyncio
async def test_reset_cost_tracking(make_provider, make_config, request_):
    a = make_provider("A", cost_usd=0.3)
    router = _router([a], make_config(defaults={"provider": "A", "model": "m"}))
    await router.route("score", request_)

    assert "AI API COST SUMMARY" in router.format_cost_summary()
    router.reset_cost_tracking()

    stats = router.get_cost_statistics()
    assert stats.total_cost_usd == 0.0
    assert stats.total_requests == 0
    assert stats.duration_ms < 1000


# ------------------------------------------------------------------ #
# Concurrency
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
async def test_concurrent_routes_share_one_ledger(make_provider, make_config, request_):
    a = make_provider("A", cost_usd=0.001, usage=TokenUsage(input_tokens=1, output_tokens=1))
    router = _router([a], make_config(defaults={"provider": "A", "model": "m"}))

    results = await asyncio.gather(*(router.route("score", request_) for _ in range(200)))

    assert len(results) == 200
    stats = router.get_cost_statistics()
    assert stats.total_requests == 200
    assert stats.requests_by_provider == {"A": 200}
    assert stats.total_cost_usd == pytest.approx(0.2)
