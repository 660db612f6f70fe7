"""Runtime configuration for the run store, processor, reconciler and API."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


@dataclass(slots=True)
class ProcessorSettings:
    """Trigger transport and in-process driving settings."""

    endpoint: str = ""
    path: str = "/stack-processor"
    trigger_timeout_seconds: float = 5.0
    trigger_max_retries: int = 3
    trigger_retry_backoff_seconds: float = 0.5
    drive_max_steps: int = 1_000


@dataclass(slots=True)
class ReconcilerSettings:
    """Liveness threshold and retry budget for stuck runs."""

    stale_after_seconds: int = 300
    max_attempts: int = 3
    interval_seconds: float = 60.0
    batch_size: int = 100
    lock_ttl_seconds: int = 60


@dataclass(slots=True)
class ApiSettings:
    host: str = "127.0.0.1"
    port: int = 8000


@dataclass(slots=True)
class RegistrySettings:
    """Where task functions and external services come from."""

    task_modules: tuple[str, ...] = ("stackrun.demo",)
    service_urls: dict[str, str] = field(default_factory=dict)
    service_timeout_seconds: float = 30.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".stackrun.db")
    sqlite_busy_timeout_ms: int = 5_000
    log_level: str = "INFO"
    log_json: bool = True
    processor: ProcessorSettings = field(default_factory=ProcessorSettings)
    reconciler: ReconcilerSettings = field(default_factory=ReconcilerSettings)
    api: ApiSettings = field(default_factory=ApiSettings)
    registry: RegistrySettings = field(default_factory=RegistrySettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("STACKRUN_DB_PATH", ".stackrun.db")),
            sqlite_busy_timeout_ms=int(os.getenv("STACKRUN_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            log_level=os.getenv("STACKRUN_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            log_json=_env_bool("STACKRUN_LOG_JSON", default=True),
            processor=ProcessorSettings(
                endpoint=os.getenv("STACKRUN_PROCESSOR_ENDPOINT", "").strip(),
                path=os.getenv("STACKRUN_PROCESSOR_PATH", "/stack-processor").strip()
                or "/stack-processor",
                trigger_timeout_seconds=float(
                    os.getenv("STACKRUN_TRIGGER_TIMEOUT_SECONDS", "5.0"),
                ),
                trigger_max_retries=int(os.getenv("STACKRUN_TRIGGER_MAX_RETRIES", "3")),
                trigger_retry_backoff_seconds=float(
                    os.getenv("STACKRUN_TRIGGER_RETRY_BACKOFF_SECONDS", "0.5"),
                ),
                drive_max_steps=int(os.getenv("STACKRUN_DRIVE_MAX_STEPS", "1000")),
            ),
            reconciler=ReconcilerSettings(
                stale_after_seconds=int(
                    os.getenv("STACKRUN_RECONCILE_STALE_AFTER_SECONDS", "300"),
                ),
                max_attempts=int(os.getenv("STACKRUN_RECONCILE_MAX_ATTEMPTS", "3")),
                interval_seconds=float(os.getenv("STACKRUN_RECONCILE_INTERVAL_SECONDS", "60")),
                batch_size=int(os.getenv("STACKRUN_RECONCILE_BATCH_SIZE", "100")),
                lock_ttl_seconds=int(os.getenv("STACKRUN_RECONCILE_LOCK_TTL_SECONDS", "60")),
            ),
            api=ApiSettings(
                host=os.getenv("STACKRUN_API_HOST", "127.0.0.1"),
                port=int(os.getenv("STACKRUN_API_PORT", "8000")),
            ),
            registry=RegistrySettings(
                task_modules=_collect_task_modules(),
                service_urls=_collect_service_urls(),
                service_timeout_seconds=float(
                    os.getenv("STACKRUN_SERVICE_TIMEOUT_SECONDS", "30.0"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the engine cannot run with."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("STACKRUN_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.reconciler.stale_after_seconds <= 0:
            raise ValueError("STACKRUN_RECONCILE_STALE_AFTER_SECONDS must be > 0.")
        if self.reconciler.max_attempts < 0:
            raise ValueError("STACKRUN_RECONCILE_MAX_ATTEMPTS must be >= 0.")
        if self.reconciler.interval_seconds <= 0:
            raise ValueError("STACKRUN_RECONCILE_INTERVAL_SECONDS must be > 0.")
        if self.reconciler.batch_size <= 0:
            raise ValueError("STACKRUN_RECONCILE_BATCH_SIZE must be > 0.")
        if self.processor.trigger_max_retries < 0:
            raise ValueError("STACKRUN_TRIGGER_MAX_RETRIES must be >= 0.")
        if self.processor.drive_max_steps <= 0:
            raise ValueError("STACKRUN_DRIVE_MAX_STEPS must be > 0.")
        if not self.processor.path.startswith("/"):
            raise ValueError("STACKRUN_PROCESSOR_PATH must start with '/'.")
        if self.processor.endpoint:
            _validate_url(self.processor.endpoint, name="STACKRUN_PROCESSOR_ENDPOINT")


def _collect_task_modules() -> tuple[str, ...]:
    raw = os.getenv("STACKRUN_TASK_MODULES")
    if raw is None:
        return RegistrySettings().task_modules
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _collect_service_urls() -> dict[str, str]:
    raw = os.getenv("STACKRUN_SERVICE_URLS", "").strip()
    if not raw:
        return {}

    urls: dict[str, str] = {}
    for part in raw.split(","):
        token = part.strip()
        if not token:
            continue
        if "|" not in token:
            raise ValueError(
                "Invalid STACKRUN_SERVICE_URLS entry: "
                f"{token!r}. Expected format '<service>|<url>'.",
            )
        name, url = token.split("|", 1)
        name = name.strip()
        url = url.strip()
        if not name:
            raise ValueError(f"Invalid STACKRUN_SERVICE_URLS entry: {token!r}. Empty service name.")
        _validate_url(url, name="STACKRUN_SERVICE_URLS")
        urls[name] = url
    return urls


def _validate_url(value: str, *, name: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            f"Invalid URL in {name}: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
