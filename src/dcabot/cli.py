from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from dataclasses import asdict, is_dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum

from dcabot.config import Settings
from dcabot.domain.errors import (
    PlanNotFoundError,
    PlanValidationError,
    RegistryUnavailableError,
    UserNotFoundError,
)
from dcabot.logging_utils import setup_logging
from dcabot.observability import configure_instrumentation, get_instrumentation
from dcabot.runtime.guards import normalize_db_path
from dcabot.security.secrets import build_default_provider, inject_runtime_secrets
from dcabot.services.dca_service import DCAService, build_dca_service
from dcabot.services.process_lock import SchedulerAlreadyRunningError, single_instance_lock

logger = logging.getLogger(__name__)

_INPUT_ERRORS = (PlanValidationError, PlanNotFoundError, UserNotFoundError)

# Must stay below the shortest cadence (one minute).
DEFAULT_RESYNC_SECONDS = 15.0


def main() -> int:
    parser = argparse.ArgumentParser(
        prog="dcabot",
        description="Recurring dollar-cost-averaging transfers.",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Optional dotenv file read for settings and runtime secrets",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the plan scheduler until stopped")
    serve_parser.add_argument(
        "--resync-seconds",
        type=float,
        default=DEFAULT_RESYNC_SECONDS,
        help="How often to pick up plans created or stopped by other processes",
    )

    user_add_parser = subparsers.add_parser("user-add", help="Register (or look up) a wallet")
    user_add_parser.add_argument("--address", required=True)

    plan_create_parser = subparsers.add_parser(
        "plan-create",
        help="Create a recurring plan",
        description=(
            "Create a recurring plan. A running serve process arms it at its next "
            "resync, within --resync-seconds of creation."
        ),
    )
    plan_create_parser.add_argument("--user-id", required=True)
    plan_create_parser.add_argument("--amount", required=True)
    plan_create_parser.add_argument("--frequency", required=True, help="minute|hour|day")
    plan_create_parser.add_argument("--to-address", required=True)
    plan_create_parser.add_argument(
        "--risk-level",
        default="no_risk",
        help="no_risk|low_risk|medium_risk|high_risk",
    )

    plan_stop_parser = subparsers.add_parser("plan-stop", help="Stop a plan")
    plan_stop_parser.add_argument("--plan-id", required=True)

    plan_list_parser = subparsers.add_parser("plan-list", help="List a user's plans")
    plan_list_parser.add_argument("--user-id", required=True)

    plan_total_parser = subparsers.add_parser("plan-total", help="Total invested by a user")
    plan_total_parser.add_argument("--user-id", required=True)

    plan_fire_parser = subparsers.add_parser(
        "plan-fire", help="Fire a plan once now (refused while a scheduler is running)"
    )
    plan_fire_parser.add_argument("--plan-id", required=True)

    plan_history_parser = subparsers.add_parser("plan-history", help="Recent firings of a plan")
    plan_history_parser.add_argument("--plan-id", required=True)
    plan_history_parser.add_argument("--last", type=int, default=20)

    args = parser.parse_args()
    try:
        settings = _load_settings(args.env_file)
    except ValueError as exc:
        print(json.dumps({"error": "invalid_configuration", "detail": str(exc)}), file=sys.stderr)
        return 2

    setup_logging(settings.log_level)
    configure_instrumentation(
        enabled=settings.observability_enabled,
        metrics_exporter=settings.observability_metrics_exporter,
        otlp_endpoint=settings.observability_otlp_endpoint,
        prometheus_port=settings.observability_prometheus_port,
    )
    logger.info(
        "runtime_prepared",
        extra={
            "extra": {
                "command": args.command,
                "db_path": settings.state_db_path,
                "ledger_backend": settings.ledger_backend.value,
                "price_factor_model": settings.price_factor_model.value,
                "pid": os.getpid(),
            }
        },
    )

    try:
        if args.command == "serve":
            return run_serve(settings, resync_seconds=args.resync_seconds)
        if args.command == "plan-fire":
            return run_plan_fire(settings, plan_id=args.plan_id)
        return asyncio.run(_run_admin_command(settings, args))
    finally:
        get_instrumentation().flush()


def _load_settings(env_file: str | None) -> Settings:
    resolved_env_file = None if env_file in (None, "") else env_file
    provider = build_default_provider(env_file=resolved_env_file)
    inject_runtime_secrets(provider)
    if resolved_env_file is None:
        return Settings()
    return Settings(_env_file=resolved_env_file)


def _json_default(value: object) -> object:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _emit(payload: object) -> None:
    print(json.dumps(payload, default=_json_default, sort_keys=True))


def _emit_error(kind: str, exc: Exception) -> None:
    print(json.dumps({"error": kind, "detail": str(exc)}), file=sys.stderr)


async def _run_admin_command(settings: Settings, args: argparse.Namespace) -> int:
    service = build_dca_service(settings)
    try:
        return await _dispatch_admin(service, args)
    except _INPUT_ERRORS as exc:
        _emit_error(type(exc).__name__, exc)
        return 2
    except Exception as exc:  # noqa: BLE001
        logger.exception("command_failed", extra={"extra": {"command": args.command}})
        _emit_error("command_failed", exc)
        return 1
    finally:
        await service.shutdown()


async def _dispatch_admin(service: DCAService, args: argparse.Namespace) -> int:
    if args.command == "user-add":
        _emit(await service.register_user(args.address))
        return 0
    if args.command == "plan-create":
        plan = await service.create_plan(
            args.user_id, args.amount, args.frequency, args.to_address, args.risk_level
        )
        _emit(plan)
        return 0
    if args.command == "plan-stop":
        _emit(await service.stop_plan(args.plan_id))
        return 0
    if args.command == "plan-list":
        _emit(await service.list_user_plans(args.user_id))
        return 0
    if args.command == "plan-total":
        total = await service.total_investment(args.user_id)
        _emit({"user_id": args.user_id, "total_invested": total})
        return 0
    if args.command == "plan-history":
        if args.last < 1:
            _emit_error("invalid_argument", ValueError("--last must be >= 1"))
            return 2
        _emit(await service.list_plan_firings(args.plan_id, limit=args.last))
        return 0
    if args.command == "plan-fire":
        outcome = await service.fire_plan_now(args.plan_id)
        _emit({"coalesced": True} if outcome is None else outcome)
        return 0 if outcome is not None and outcome.succeeded else 1
    _emit_error("unknown_command", ValueError(args.command))
    return 2


def run_plan_fire(settings: Settings, *, plan_id: str) -> int:
    args = argparse.Namespace(command="plan-fire", plan_id=plan_id)
    db_path = str(normalize_db_path(settings.state_db_path))
    try:
        with single_instance_lock(db_path=db_path):
            return asyncio.run(_run_admin_command(settings, args))
    except SchedulerAlreadyRunningError as exc:
        _emit_error("scheduler_running", exc)
        return 1


def run_serve(settings: Settings, *, resync_seconds: float = DEFAULT_RESYNC_SECONDS) -> int:
    if resync_seconds <= 0:
        _emit_error("invalid_argument", ValueError("--resync-seconds must be > 0"))
        return 2
    db_path = str(normalize_db_path(settings.state_db_path))
    try:
        with single_instance_lock(db_path=db_path):
            return asyncio.run(_serve(settings, resync_seconds=resync_seconds))
    except SchedulerAlreadyRunningError as exc:
        logger.error("scheduler_already_running", extra={"extra": {"db_path": db_path}})
        _emit_error("scheduler_running", exc)
        return 1
    except RegistryUnavailableError as exc:
        logger.critical("scheduler_start_failed", extra={"extra": {"db_path": db_path}})
        _emit_error("registry_unavailable", exc)
        return 1


async def _serve(settings: Settings, *, resync_seconds: float) -> int:
    service = build_dca_service(settings)
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            continue

    try:
        armed = await service.start()
        logger.info("serve_started", extra={"extra": {"armed_plans": armed}})
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=resync_seconds)
            except TimeoutError:
                try:
                    await service.scheduler.sync_with_registry()
                except Exception:  # noqa: BLE001
                    logger.warning("scheduler_resync_failed", exc_info=True)
        logger.info("serve_stopping")
        return 0
    finally:
        await service.shutdown()


if __name__ == "__main__":
    raise SystemExit(main())
