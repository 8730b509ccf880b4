"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="ticket-mirror", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Local Store ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/ticket_mirror",
        description="Local document store connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== ServiceNow ==========
    servicenow_instance_url: str = Field(
        default="https://example.service-now.com",
        description="ServiceNow instance base URL"
    )
    servicenow_username: Optional[str] = Field(default=None, description="Table API user")
    servicenow_password: Optional[str] = Field(default=None, description="Table API password")
    servicenow_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for ServiceNow API calls",
        ge=0.1,
        le=300
    )
    servicenow_max_retries: int = Field(default=3, description="Retries per remote call", ge=1, le=10)
    remote_call_timeout_seconds: Optional[float] = Field(
        default=90.0,
        description="Caller-side limit for one remote lookup, retries and backoff included",
        gt=0
    )
    circuit_failure_threshold: int = Field(
        default=5,
        description="Consecutive failures before the remote circuit opens",
        ge=1
    )
    circuit_recovery_seconds: float = Field(
        default=60.0,
        description="Seconds before an open circuit allows a trial request",
        ge=1
    )
    upstream_retry_after_seconds: int = Field(
        default=30,
        description="Retry hint returned when the remote system is unavailable",
        ge=1
    )

    # ========== SLA ==========
    sla_config_path: Path = Field(
        default=Path("sla_policy.yaml"),
        description="Path to SLA policy YAML file"
    )
    sla_check_interval_minutes: int = Field(
        default=15,
        description="Minutes between periodic SLA checks",
        ge=1
    )
    business_timezone: str = Field(
        default="UTC",
        description="IANA zone used for business-hours accounting"
    )

    # ========== Warmup ==========
    warmup_interval_seconds: int = Field(
        default=30,
        description="Seconds between warmup queue drains",
        ge=1
    )
    warmup_chunk_delay_seconds: float = Field(
        default=0.1,
        description="Pause between concurrency-bounded chunks",
        ge=0
    )
    warmup_drain_timeout_seconds: Optional[float] = Field(
        default=None,
        description="Optional wall-clock limit for a single drain"
    )

    # ========== Table Sync ==========
    sync_tables: List[str] = Field(
        default=["incident", "change_task", "sc_task"],
        description="Tables mirrored by the incremental sync job"
    )
    sync_interval_seconds: int = Field(
        default=300,
        description="Seconds between incremental table syncs",
        ge=10
    )
    sync_delta_hours: int = Field(
        default=1,
        description="Look-back window for incremental syncs",
        ge=1
    )
    sync_page_size: int = Field(default=100, description="Remote page size for syncs", ge=1, le=10000)

    # ========== Change Feed ==========
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for the change-notification stream"
    )
    change_stream: str = Field(
        default="servicenow:changes",
        description="Redis stream carrying ticket change notifications"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "test", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("sync_tables")
    @classmethod
    def validate_sync_tables(cls, v: List[str]) -> List[str]:
        unknown = [table for table in v if table not in VALID_TABLES]
        if unknown:
            raise ValueError(f"unknown tables: {unknown}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class TicketTable(str):
    """Remote tables mirrored into the local store."""
    INCIDENT = "incident"
    CHANGE_TASK = "change_task"
    SC_TASK = "sc_task"


class WarmupPriority(str):
    """Warmup queue tiers, highest first."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SLAStatus(str):
    """Lifecycle of a tracked SLA record."""
    ACTIVE = "active"
    BREACHED = "breached"
    RESOLVED = "resolved"


class ChangeType(str):
    """Audit entry change types."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class SyncSource(str):
    """Where the stored document came from."""
    REMOTE = "remote"
    RECONCILED = "reconciled"


class ResultSource(str):
    """Which store answered a query."""
    LOCAL = "local"
    REMOTE = "remote"


class ChangeAction(str):
    """Actions carried by change notifications."""
    CREATED = "created"
    UPDATED = "updated"


# ========== Lists for validation ==========

VALID_TABLES = [TicketTable.INCIDENT, TicketTable.CHANGE_TASK, TicketTable.SC_TASK]
WARMUP_PRIORITY_ORDER = [
    WarmupPriority.CRITICAL, WarmupPriority.HIGH,
    WarmupPriority.MEDIUM, WarmupPriority.LOW
]
VALID_CHANGE_ACTIONS = [ChangeAction.CREATED, ChangeAction.UPDATED]

# Logical state classes mapped to ServiceNow state codes. "all" means no filter.
STATE_CLASSES: Dict[str, Optional[List[int]]] = {
    "all": None,
    "active": [1, 2, 3, 18, -5],
    "new": [1],
    "in_progress": [2],
    "awaiting": [3],
    "assigned": [18],
    "pending": [-5],
    "resolved": [6],
    "closed": [7, 10],
    "cancelled": [8],
}

# States that stop the SLA clock.
RESOLVED_STATES = frozenset({6, 7})

# Per-tier drain limits: (batch_size, concurrency)
WARMUP_TIERS: Dict[str, tuple[int, int]] = {
    WarmupPriority.CRITICAL: (10, 2),
    WarmupPriority.HIGH: (25, 3),
    WarmupPriority.MEDIUM: (50, 5),
    WarmupPriority.LOW: (100, 3),
}
