"""Typer option declarations and normalization helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Final

import typer

from rtprobe.config.constants import DEFAULT_CONFIG_FILENAME

LOG_FORMAT_CHOICES: Final[set[str]] = {"text", "json"}
LOG_LEVEL_CHOICES: Final[list[str]] = sorted(
    name
    for name in logging.getLevelNamesMapping()
    if isinstance(name, str) and not name.isdigit()
)
LOG_LEVEL_SET: Final[set[str]] = {choice.upper() for choice in LOG_LEVEL_CHOICES}

DEFAULT_CONFIG_PATH: Final = Path(DEFAULT_CONFIG_FILENAME)

ConfigPathOption = Annotated[
    Path,
    typer.Option(
        "--config",
        help="Path to an rtprobe configuration TOML file to load",
        envvar="RTPROBE_CONFIG",
        show_envvar=True,
        rich_help_panel="Configuration",
    ),
]

SupabaseUrlOption = Annotated[
    str | None,
    typer.Option(
        "--supabase-url",
        help="Supabase project URL (overrides SUPABASE_URL env var)",
        envvar="SUPABASE_URL",
        show_envvar=True,
        rich_help_panel="Supabase",
    ),
]

AnonKeyOption = Annotated[
    str | None,
    typer.Option(
        "--anon-key",
        help="Supabase anon key (overrides SUPABASE_ANON_KEY env var)",
        envvar="SUPABASE_ANON_KEY",
        show_envvar=True,
        rich_help_panel="Supabase",
    ),
]

AccessTokenOption = Annotated[
    str | None,
    typer.Option(
        "--access-token",
        help="User access token sent with channel joins and REST calls",
        envvar="RTPROBE_ACCESS_TOKEN",
        show_envvar=True,
        rich_help_panel="Supabase",
    ),
]

WatchedSchemaOption = Annotated[
    str | None,
    typer.Option(
        "--watched-schema",
        help="Schema of the table used for the change-notification probe",
        envvar="RTPROBE_WATCHED_SCHEMA",
        show_envvar=True,
        rich_help_panel="Probe",
    ),
]

WatchedTableOption = Annotated[
    str | None,
    typer.Option(
        "--watched-table",
        help="Table used for the change-notification probe",
        envvar="RTPROBE_WATCHED_TABLE",
        show_envvar=True,
        rich_help_panel="Probe",
    ),
]

TokenColumnOption = Annotated[
    str | None,
    typer.Option(
        "--token-column",
        help="Column of the watched table that receives the probe token",
        envvar="RTPROBE_TOKEN_COLUMN",
        show_envvar=True,
        rich_help_panel="Probe",
    ),
]

RemediationRpcOption = Annotated[
    str | None,
    typer.Option(
        "--remediation-rpc",
        help="RPC that (re)configures the realtime publication",
        envvar="RTPROBE_REMEDIATION_RPC",
        show_envvar=True,
        rich_help_panel="Probe",
    ),
]

DisableRealtimeOption = Annotated[
    bool | None,
    typer.Option(
        "--disable-realtime/--enable-realtime",
        help="Realtime circuit breaker; when set no diagnostics are attempted",
        envvar="RTPROBE_DISABLE_REALTIME",
        show_envvar=True,
        rich_help_panel="Runtime",
    ),
]

SafeBootOption = Annotated[
    bool | None,
    typer.Option(
        "--safe-boot/--no-safe-boot",
        help="Safe-boot mode; realtime diagnostics are skipped",
        envvar="RTPROBE_SAFE_BOOT",
        show_envvar=True,
        rich_help_panel="Runtime",
    ),
]

DebugOption = Annotated[
    bool | None,
    typer.Option(
        "--debug/--no-debug",
        help="Enable verbose diagnostics",
        envvar="RTPROBE_DEBUG",
        show_envvar=True,
        rich_help_panel="Runtime",
    ),
]

AllowInsecureTlsOption = Annotated[
    bool | None,
    typer.Option(
        "--allow-insecure-tls/--enforce-tls",
        help="Disable TLS verification for websocket and REST calls (not recommended)",
        envvar="RTPROBE_ALLOW_INSECURE_TLS",
        show_envvar=True,
        rich_help_panel="TLS",
    ),
]

CaBundleOption = Annotated[
    str | None,
    typer.Option(
        "--ca-bundle",
        help="Path to a custom certificate authority bundle, e.g. for TLS interception",
        envvar="RTPROBE_CA_BUNDLE",
        show_envvar=True,
        rich_help_panel="TLS",
    ),
]

LogLevelOption = Annotated[
    str | None,
    typer.Option(
        "--log-level",
        help="Logging level (e.g. INFO, DEBUG)",
        envvar="RTPROBE_LOG_LEVEL",
        show_envvar=True,
        rich_help_panel="Logging",
    ),
]

LogFormatOption = Annotated[
    str | None,
    typer.Option(
        "--log-format",
        help="Logging format (text or json)",
        envvar="RTPROBE_LOG_FORMAT",
        show_envvar=True,
        rich_help_panel="Logging",
    ),
]

LogFileOption = Annotated[
    str | None,
    typer.Option(
        "--log-file",
        help="Path to a log file (use '-', none, stderr to disable)",
        envvar="RTPROBE_LOG_FILE",
        show_envvar=True,
        rich_help_panel="Logging",
    ),
]

LogMaxBytesOption = Annotated[
    int | None,
    typer.Option(
        "--log-max-bytes",
        min=1,
        help="Maximum size in bytes for rotating log files",
        envvar="RTPROBE_LOG_MAX_BYTES",
        show_envvar=True,
        rich_help_panel="Logging",
    ),
]

LogBackupCountOption = Annotated[
    int | None,
    typer.Option(
        "--log-backup-count",
        min=1,
        help="Number of rotating log file backups to retain",
        envvar="RTPROBE_LOG_BACKUP_COUNT",
        show_envvar=True,
        rich_help_panel="Logging",
    ),
]

RemediateOption = Annotated[
    bool,
    typer.Option(
        "--remediate/--no-remediate",
        help="Run the publication remediation once and re-verify when notifications are missing",
        rich_help_panel="Diagnostics",
    ),
]

PreflightOption = Annotated[
    bool,
    typer.Option(
        "--preflight/--no-preflight",
        help="Check the watched table, inserts and the realtime publication before the run",
        rich_help_panel="Diagnostics",
    ),
]

JsonOutputOption = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Print a machine-readable JSON summary instead of tables",
        rich_help_panel="Diagnostics",
    ),
]

StatusOnlyOption = Annotated[
    bool,
    typer.Option(
        "--status-only",
        help="Only report the publication status; do not change anything",
        rich_help_panel="Diagnostics",
    ),
]


def clean_string(value: str | None) -> str | None:
    """Normalize optional string input."""

    if value is None:
        return None
    candidate = value.strip()
    return candidate or None


def validate_positive(name: str, value: int | None) -> int | None:
    if value is None:
        return None
    if value <= 0:
        raise typer.BadParameter(
            f"{name} must be a positive integer",
            param_hint=f"--{name.replace('_', '-')}",
        )
    return value


def normalize_log_format(value: str | None) -> str | None:
    if value is None:
        return None
    candidate = value.strip().lower()
    if not candidate:
        return None
    if candidate not in LOG_FORMAT_CHOICES:
        raise typer.BadParameter(
            "Log format must be either 'text' or 'json'",
            param_hint="--log-format",
        )
    return candidate


def normalize_log_level(value: str | None) -> str | None:
    if value is None:
        return None
    candidate = value.strip().upper()
    if not candidate:
        return None
    if candidate not in LOG_LEVEL_SET:
        raise typer.BadParameter(
            f"Log level must be one of: {', '.join(LOG_LEVEL_CHOICES)}",
            param_hint="--log-level",
        )
    return candidate


__all__ = [
    "AccessTokenOption",
    "AllowInsecureTlsOption",
    "AnonKeyOption",
    "CaBundleOption",
    "ConfigPathOption",
    "DEFAULT_CONFIG_PATH",
    "DebugOption",
    "DisableRealtimeOption",
    "JsonOutputOption",
    "LOG_FORMAT_CHOICES",
    "LOG_LEVEL_CHOICES",
    "LogBackupCountOption",
    "LogFileOption",
    "LogFormatOption",
    "LogLevelOption",
    "LogMaxBytesOption",
    "PreflightOption",
    "RemediateOption",
    "RemediationRpcOption",
    "SafeBootOption",
    "StatusOnlyOption",
    "SupabaseUrlOption",
    "TokenColumnOption",
    "WatchedSchemaOption",
    "WatchedTableOption",
    "clean_string",
    "normalize_log_format",
    "normalize_log_level",
    "validate_positive",
]
