"""backlog-router CLI - inspect routing configuration and route ad-hoc requests.

Commands::

    backlog-router validate <config.yaml>     - Validate a routing file and summarise it
    backlog-router providers                  - List registered providers and availability
    backlog-router route <step> --user TEXT   - Route one request and print the result

Usage::

    backlog-router validate config/routing.yaml
    backlog-router route score_confidence --system "You score items" --user "..." --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import textwrap

from src.config import Settings, get_settings
from src.providers.base import GenerationRequest, ProviderError
from src.providers.registry import NoProvidersConfiguredError, ProviderRegistry
from src.routing.config import (
    RoutingConfig,
    RoutingConfigError,
    create_default_routing_config,
    load_routing_config,
)
from src.routing.router import ModelRouter, RoutingResult
from src.telemetry.logging import bind_run_context, configure_logging

# ------------------------------------------------------------------ #
# Formatting helpers
# ------------------------------------------------------------------ #

_RESET = "\033[0m"
_GREEN = "\033[32m"
_YELLOW = "\033[33m"
_RED = "\033[31m"
_BOLD = "\033[1m"


def _ok(msg: str) -> None:
    print(f"{_GREEN}  [OK]{_RESET}  {msg}")


def _warn(msg: str) -> None:
    print(f"{_YELLOW} [WARN]{_RESET} {msg}")


def _err(msg: str) -> None:
    print(f"{_RED}[ERROR]{_RESET} {msg}", file=sys.stderr)


def _header(msg: str) -> None:
    print(f"\n{_BOLD}{msg}{_RESET}")


def _load_config(path: str | None, settings: Settings) -> RoutingConfig:
    effective = path or settings.routing_config_path
    if effective is None:
        return create_default_routing_config()
    return load_routing_config(effective)


def _print_config_summary(config: RoutingConfig) -> None:
    defaults = config.defaults
    print(f"Defaults:  {defaults.provider}/{defaults.model} (currency {defaults.currency.value})")

    if config.offline_mode.enabled:
        offline = config.offline_mode
        _warn(f"Offline mode forces {offline.default_provider}/{offline.default_model}")

    fallback = config.fallback
    if fallback.enabled and fallback.strategy is not None:
        chain = ", ".join(f"{c.provider}/{c.model}" for c in fallback.providers)
        print(f"Fallback:  {fallback.strategy.value} -> {chain}")
    else:
        print("Fallback:  disabled")

    if config.steps:
        print("Steps:")
        for name, step in config.steps.items():
            reason = f"  ({step.reason})" if step.reason else ""
            print(f"  {name:<24} {step.provider}/{step.model}{reason}")

    limits = config.cost_management
    for label, value in (
        ("Per-run limit", limits.per_run_limit_usd),
        ("Daily limit", limits.daily_limit_usd),
        ("Alert at", limits.alert_threshold_usd),
    ):
        if value is not None:
            print(f"{label + ':':<15}${value}")


# ------------------------------------------------------------------ #
# Commands
# ------------------------------------------------------------------ #


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a routing configuration file."""
    _header(f"Validating {args.config}")
    try:
        config = load_routing_config(args.config)
    except RoutingConfigError as exc:
        _err(str(exc))
        return 1

    _ok("Routing configuration is valid")
    _print_config_summary(config)
    return 0


def cmd_providers(args: argparse.Namespace) -> int:  # noqa: ARG001
    """List registered providers and check their availability."""
    settings = get_settings()
    try:
        registry = ProviderRegistry.from_settings(settings)
    except NoProvidersConfiguredError as exc:
        _err(str(exc))
        return 1

    _header("Providers")

    async def _check() -> dict[str, bool]:
        try:
            return await registry.check_availability()
        finally:
            await registry.aclose()

    availability = asyncio.run(_check())
    for name, available in availability.items():
        kind = registry[name].provider_type.value
        if available:
            _ok(f"{name:<14} {kind}")
        else:
            _warn(f"{name:<14} {kind}  unavailable")
    return 0


def cmd_route(args: argparse.Namespace) -> int:
    """Route one request through the configured providers."""
    settings = get_settings()
    configure_logging(
        json_logs=settings.json_logs or settings.is_prod,
        log_level="DEBUG" if settings.debug else settings.log_level,
    )
    bind_run_context()

    try:
        config = _load_config(args.config, settings)
        registry = ProviderRegistry.from_settings(settings)
    except (RoutingConfigError, NoProvidersConfiguredError) as exc:
        _err(str(exc))
        return 1

    router = ModelRouter(registry, config)
    request = GenerationRequest(
        system_prompt=args.system,
        user_prompt=args.user,
        model=args.model,
        temperature=args.temperature,
        max_tokens=args.max_tokens,
    )

    async def _route() -> RoutingResult:
        try:
            return await router.route(args.step, request)
        finally:
            await registry.aclose()

    try:
        result = asyncio.run(_route())

    except ProviderError as exc:
        _err(f"Step {args.step} failed: {exc}")
        if exc.attempted_providers:
            _err(f"Attempted: {', '.join(exc.attempted_providers)}")
        return 1

    if args.json:
        print(
            json.dumps(
                {
                    "content": result.content,
                    "provider": result.provider,
                    "model": result.model,
                    "cost_usd": result.cost_usd,
                    "input_tokens": result.usage.input_tokens,
                    "output_tokens": result.usage.output_tokens,
                    "attempted_providers": result.attempted_providers,
                    "fallback_used": result.fallback_used,
                    "statistics": router.get_cost_statistics().to_dict(),
                },
                indent=2,
            )
        )
        return 0

    print(result.content)
    _header("Routing")
    print(f"Served by: {result.provider}/{result.model}")
    print(f"Attempted: {', '.join(result.attempted_providers)}")
    if result.fallback_used:
        _warn("Fallback was used")
    print()
    print(router.format_cost_summary())
    return 0


# ------------------------------------------------------------------ #
# Parser
# ------------------------------------------------------------------ #


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser tree."""
    parser = argparse.ArgumentParser(
        prog="backlog-router",
        description="Provider routing and cost governance for backlog pipeline steps",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent(
            """\
            Examples:
              backlog-router validate config/routing.yaml
              backlog-router providers
              backlog-router route extract_candidates --user "Transcript..." --json
            """
        ),
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    validate_parser = subparsers.add_parser("validate", help="Validate a routing file")
    validate_parser.add_argument("config", help="Path to the routing YAML file")

    subparsers.add_parser("providers", help="List providers and their availability")

    route_parser = subparsers.add_parser("route", help="Route a single request")
    route_parser.add_argument("step", help="Pipeline step name used for routing")
    route_parser.add_argument("--user", required=True, help="User prompt text")
    route_parser.add_argument("--system", default="You are a helpful assistant.", help="System prompt text")
    route_parser.add_argument("--config", default=None, help="Routing YAML (overrides ROUTING_CONFIG_PATH)")
    route_parser.add_argument("--model", default=None, help="Explicit model for the primary provider")
    route_parser.add_argument("--temperature", type=float, default=None)
    route_parser.add_argument("--max-tokens", dest="max_tokens", type=int, default=None)
    route_parser.add_argument("--json", action="store_true", help="Print the result as JSON")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the backlog-router CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "validate":
        return cmd_validate(args)
    elif args.command == "providers":
        return cmd_providers(args)
    elif args.command == "route":
        return cmd_route(args)
    else:
        parser.print_help()
        return 0


if __name__ == "__main__":
    sys.exit(main())
