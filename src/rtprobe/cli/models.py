"""Normalized CLI parameters, grouped the way settings consume them."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class SupabaseOverrides:
    url: str | None = None
    anon_key: str | None = None
    access_token: str | None = None


@dataclass(frozen=True)
class ProbeOverrides:
    watched_schema: str | None = None
    watched_table: str | None = None
    token_column: str | None = None
    remediation_rpc: str | None = None


@dataclass(frozen=True)
class RuntimeOverrides:
    disable_realtime: bool | None = None
    safe_boot: bool | None = None
    debug: bool | None = None


@dataclass(frozen=True)
class TlsOverrides:
    allow_insecure: bool | None = None
    ca_bundle_path: str | None = None


@dataclass(frozen=True)
class LoggingOverrides:
    level: str | None = None
    format: str | None = None
    file_path: str | None = None
    max_bytes: int | None = None
    backup_count: int | None = None


@dataclass(frozen=True)
class CliInvocation:
    config_path: str | None
    supabase: SupabaseOverrides = field(default_factory=SupabaseOverrides)
    probe: ProbeOverrides = field(default_factory=ProbeOverrides)
    runtime: RuntimeOverrides = field(default_factory=RuntimeOverrides)
    tls: TlsOverrides = field(default_factory=TlsOverrides)
    logging: LoggingOverrides = field(default_factory=LoggingOverrides)


__all__ = [
    "CliInvocation",
    "LoggingOverrides",
    "ProbeOverrides",
    "RuntimeOverrides",
    "SupabaseOverrides",
    "TlsOverrides",
]
