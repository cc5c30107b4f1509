"""
Configuration Management for Channel History Retrieval

Provides validated configuration with sensible defaults.
Supports environment variable overrides.

Design:
- Immutable after validation
- Fail-fast on invalid configuration
- Type-safe with dataclasses
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from history_fetch.core import constants as C
from history_fetch.core.types import Err, Ok, Result


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ServiceConfig:
    """Remote storage service endpoint configuration."""

    origin: str = C.DEFAULT_ORIGIN
    subscribe_key: str = "demo"
    secure: bool = True
    request_timeout_s: float = C.REQUEST_TIMEOUT_S
    max_connections: int = C.MAX_CONNECTIONS

    @property
    def base_url(self) -> str:
        """Scheme and host every history request is issued against."""
        if "://" in self.origin:
            return self.origin.rstrip("/")
        scheme = "https" if self.secure else "http"
        return f"{scheme}://{self.origin}"


@dataclass(frozen=True)
class FetchConfig:
    """Pagination behaviour shared by all logical fetches."""

    page_size: int = C.DEFAULT_PAGE_SIZE


@dataclass(frozen=True)
class ReliabilityConfig:
    """Caller-side resubmission of failed logical fetches."""

    max_attempts: int = C.RETRY_MAX_ATTEMPTS
    base_delay_ms: int = C.RETRY_BASE_MS
    max_delay_ms: int = C.RETRY_MAX_MS
    jitter: bool = True


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging and tracing configuration."""

    log_level: str = "INFO"
    log_json: bool = True
    tracing_enabled: bool = True
    tracing_sample_rate: float = 1.0


@dataclass(frozen=True)
class HistoryConfig:
    """Root configuration."""

    service: ServiceConfig = field(default_factory=ServiceConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    reliability: ReliabilityConfig = field(default_factory=ReliabilityConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> Result[HistoryConfig, str]:
        """
        Load configuration from environment variables.

        Environment variables are prefixed with HISTORY_.
        Example: HISTORY_ORIGIN, HISTORY_SUBSCRIBE_KEY, HISTORY_PAGE_SIZE
        """
        try:
            service = ServiceConfig(
                origin=os.getenv("HISTORY_ORIGIN", C.DEFAULT_ORIGIN),
                subscribe_key=os.getenv("HISTORY_SUBSCRIBE_KEY", "demo"),
                secure=_env_bool("HISTORY_SECURE", True),
                request_timeout_s=float(
                    os.getenv("HISTORY_REQUEST_TIMEOUT_S", str(C.REQUEST_TIMEOUT_S))
                ),
                max_connections=int(
                    os.getenv("HISTORY_MAX_CONNECTIONS", str(C.MAX_CONNECTIONS))
                ),
            )

            fetch = FetchConfig(
                page_size=int(os.getenv("HISTORY_PAGE_SIZE", str(C.DEFAULT_PAGE_SIZE))),
            )

            reliability = ReliabilityConfig(
                max_attempts=int(
                    os.getenv("HISTORY_RETRY_MAX_ATTEMPTS", str(C.RETRY_MAX_ATTEMPTS))
                ),
                base_delay_ms=int(os.getenv("HISTORY_RETRY_BASE_MS", str(C.RETRY_BASE_MS))),
            )

            observability = ObservabilityConfig(
                log_level=os.getenv("HISTORY_LOG_LEVEL", "INFO").upper(),
                log_json=_env_bool("HISTORY_LOG_JSON", True),
                tracing_enabled=_env_bool("HISTORY_TRACING_ENABLED", True),
            )

            return Ok(cls(
                service=service,
                fetch=fetch,
                reliability=reliability,
                observability=observability,
            ))
        except (ValueError, TypeError) as e:
            return Err(f"Configuration error: {e}")

    def validate(self) -> Result[None, str]:
        """Validate configuration invariants."""
        if not self.service.subscribe_key:
            return Err("Subscribe key must not be empty")
        if self.service.request_timeout_s <= 0:
            return Err("Request timeout must be positive")
        if self.service.max_connections < 1:
            return Err("max_connections must be >= 1")
        if not 1 <= self.fetch.page_size <= C.MAX_PAGE_SIZE:
            return Err(f"page_size must be within 1..{C.MAX_PAGE_SIZE}")
        if self.reliability.max_attempts < 1:
            return Err("Retry max_attempts must be >= 1")
        if self.reliability.base_delay_ms > self.reliability.max_delay_ms:
            return Err("Retry base_delay_ms cannot exceed max_delay_ms")
        if self.observability.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            return Err(f"Unknown log level: {self.observability.log_level}")
        return Ok(None)
