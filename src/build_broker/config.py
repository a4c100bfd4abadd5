"""Runtime configuration for the build broker."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from urllib.parse import urlparse

DEFAULT_DATABASE_URL = "sqlite:///.build_broker.db"


@dataclass(slots=True)
class WorkerSettings:
    """Worker pool and reaper settings."""

    worker_id: str = ""
    max_concurrent: int = 3
    poll_interval_seconds: float = 30.0
    reap_interval_seconds: float = 300.0
    stuck_timeout_seconds: int = 600
    max_retries: int = 3
    graceful_shutdown_seconds: int = 30


@dataclass(slots=True)
class EscrowSettings:
    """Escrow split and deposit verification settings."""

    platform_fee_bps: int = 200
    deposit_tolerance: Decimal = Decimal("0.01")


@dataclass(slots=True)
class SettlementSettings:
    """Remote settlement service settings."""

    base_url: str = "http://127.0.0.1:8787"
    api_token: str | None = None
    timeout_seconds: float = 30.0
    max_retries: int = 2


@dataclass(slots=True)
class ExecutorSettings:
    """Build-execution collaborator settings."""

    kind: str = "echo"
    base_url: str = "http://127.0.0.1:8788"
    api_token: str | None = None
    timeout_seconds: float = 900.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    database_url: str = DEFAULT_DATABASE_URL
    busy_timeout_ms: int = 5_000
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    escrow: EscrowSettings = field(default_factory=EscrowSettings)
    settlement: SettlementSettings = field(default_factory=SettlementSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)

    @classmethod
    def from_env(cls, database_url: str | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            database_url=database_url
            or os.getenv("BUILD_BROKER_DATABASE_URL", DEFAULT_DATABASE_URL),
            busy_timeout_ms=int(os.getenv("BUILD_BROKER_BUSY_TIMEOUT_MS", "5000")),
            worker=WorkerSettings(
                worker_id=os.getenv("BUILD_BROKER_WORKER_ID", "") or default_worker_id(),
                max_concurrent=int(os.getenv("BUILD_BROKER_WORKER_MAX_CONCURRENT", "3")),
                poll_interval_seconds=float(
                    os.getenv("BUILD_BROKER_WORKER_POLL_INTERVAL_SECONDS", "30"),
                ),
                reap_interval_seconds=float(
                    os.getenv("BUILD_BROKER_REAPER_INTERVAL_SECONDS", "300"),
                ),
                stuck_timeout_seconds=int(
                    os.getenv("BUILD_BROKER_REAPER_STUCK_TIMEOUT_SECONDS", "600"),
                ),
                max_retries=int(os.getenv("BUILD_BROKER_JOB_MAX_RETRIES", "3")),
                graceful_shutdown_seconds=int(
                    os.getenv("BUILD_BROKER_WORKER_GRACEFUL_SHUTDOWN_SECONDS", "30"),
                ),
            ),
            escrow=EscrowSettings(
                platform_fee_bps=int(os.getenv("BUILD_BROKER_PLATFORM_FEE_BPS", "200")),
                deposit_tolerance=_env_decimal("BUILD_BROKER_DEPOSIT_TOLERANCE", "0.01"),
            ),
            settlement=SettlementSettings(
                base_url=os.getenv("BUILD_BROKER_SETTLEMENT_URL", "http://127.0.0.1:8787"),
                api_token=os.getenv("BUILD_BROKER_SETTLEMENT_TOKEN") or None,
                timeout_seconds=float(
                    os.getenv("BUILD_BROKER_SETTLEMENT_TIMEOUT_SECONDS", "30"),
                ),
                max_retries=int(os.getenv("BUILD_BROKER_SETTLEMENT_MAX_RETRIES", "2")),
            ),
            executor=ExecutorSettings(
                kind=os.getenv("BUILD_BROKER_EXECUTOR", "echo").strip().lower(),
                base_url=os.getenv("BUILD_BROKER_EXECUTOR_URL", "http://127.0.0.1:8788"),
                api_token=os.getenv("BUILD_BROKER_EXECUTOR_TOKEN") or None,
                timeout_seconds=float(
                    os.getenv("BUILD_BROKER_EXECUTOR_TIMEOUT_SECONDS", "900"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error if any setting is out of range."""

        if not self.database_url.strip():
            raise ValueError("BUILD_BROKER_DATABASE_URL must not be empty.")
        if self.worker.max_concurrent <= 0:
            raise ValueError("BUILD_BROKER_WORKER_MAX_CONCURRENT must be > 0.")
        if self.worker.poll_interval_seconds <= 0:
            raise ValueError("BUILD_BROKER_WORKER_POLL_INTERVAL_SECONDS must be > 0.")
        if self.worker.reap_interval_seconds <= 0:
            raise ValueError("BUILD_BROKER_REAPER_INTERVAL_SECONDS must be > 0.")
        if self.worker.stuck_timeout_seconds <= 0:
            raise ValueError("BUILD_BROKER_REAPER_STUCK_TIMEOUT_SECONDS must be > 0.")
        if self.worker.max_retries <= 0:
            raise ValueError("BUILD_BROKER_JOB_MAX_RETRIES must be > 0.")
        if not 0 <= self.escrow.platform_fee_bps < 10_000:
            raise ValueError("BUILD_BROKER_PLATFORM_FEE_BPS must be within [0, 10000).")
        if self.escrow.deposit_tolerance < 0:
            raise ValueError("BUILD_BROKER_DEPOSIT_TOLERANCE must be >= 0.")
        if self.executor.kind not in {"echo", "http"}:
            raise ValueError(
                f"Unsupported BUILD_BROKER_EXECUTOR: {self.executor.kind!r}. "
                "Expected 'echo' or 'http'.",
            )
        _validate_service_url("BUILD_BROKER_SETTLEMENT_URL", self.settlement.base_url)
        if self.executor.kind == "http":
            _validate_service_url("BUILD_BROKER_EXECUTOR_URL", self.executor.base_url)


def default_worker_id() -> str:
    """Worker instance identifier unique per host process."""

    return f"{socket.gethostname()}-{os.getpid()}"


def _env_decimal(name: str, default: str) -> Decimal:
    raw = os.getenv(name, default).strip()
    try:
        return Decimal(raw)
    except InvalidOperation as error:
        raise ValueError(f"Invalid decimal value for {name}: {raw!r}") from error


def _validate_service_url(name: str, value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid {name}: {value!r}. "
            "Expected an absolute URL with http:// or https:// scheme.",
        )
