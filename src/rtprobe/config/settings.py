"""Dynaconf-backed configuration helpers for rtprobe."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from dynaconf import Dynaconf

from rtprobe.domain.resources import (
    DEFAULT_REMEDIATION_RPC,
    DEFAULT_TOKEN_COLUMN,
    DEFAULT_WATCHED_SCHEMA,
    DEFAULT_WATCHED_TABLE,
)

from .constants import (
    DEFAULT_CONFIG_FILENAME,
    LOCAL_CONFIG_FILENAME,
    coerce_bool,
    parse_positive_int,
)

_REPO_ROOT = Path(__file__).resolve().parents[3]

LOG_FORMAT_TEXT = "text"
LOG_FORMAT_JSON = "json"
DEFAULT_LOG_FORMAT = LOG_FORMAT_TEXT
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_MAX_BYTES = 10_000_000
DEFAULT_BACKUP_COUNT = 5

_LOGFILE_DISABLED_VALUES = {"-", "none", "stderr", "off"}

# Dynaconf keys used throughout the module. Using constants helps avoid
# duplication and keeps environment and configuration lookups consistent.
SUPABASE_URL_KEY = "supabase.url"
SUPABASE_ANON_KEY_KEY = "supabase.anon_key"
SUPABASE_ACCESS_TOKEN_KEY = "supabase.access_token"

PROBE_WATCHED_SCHEMA_KEY = "probe.watched_schema"
PROBE_WATCHED_TABLE_KEY = "probe.watched_table"
PROBE_TOKEN_COLUMN_KEY = "probe.token_column"
PROBE_REMEDIATION_RPC_KEY = "probe.remediation_rpc"

RUNTIME_DISABLE_REALTIME_KEY = "runtime.disable_realtime"
RUNTIME_SAFE_BOOT_KEY = "runtime.safe_boot"
RUNTIME_DEBUG_KEY = "runtime.debug"
RUNTIME_ALLOW_INSECURE_TLS_KEY = "runtime.allow_insecure_tls"
RUNTIME_CA_BUNDLE_PATH_KEY = "runtime.ca_bundle_path"

LOGGING_LEVEL_KEY = "logging.level"
LOGGING_FORMAT_KEY = "logging.format"
LOGGING_FILE_KEY = "logging.file"
LOGGING_MAX_BYTES_KEY = "logging.max_bytes"
LOGGING_BACKUP_COUNT_KEY = "logging.backup_count"

_ENVIRONMENT_MAP = {
    "SUPABASE_URL": SUPABASE_URL_KEY,
    "SUPABASE_ANON_KEY": SUPABASE_ANON_KEY_KEY,
    "RTPROBE_ACCESS_TOKEN": SUPABASE_ACCESS_TOKEN_KEY,
    "RTPROBE_WATCHED_SCHEMA": PROBE_WATCHED_SCHEMA_KEY,
    "RTPROBE_WATCHED_TABLE": PROBE_WATCHED_TABLE_KEY,
    "RTPROBE_TOKEN_COLUMN": PROBE_TOKEN_COLUMN_KEY,
    "RTPROBE_REMEDIATION_RPC": PROBE_REMEDIATION_RPC_KEY,
    "RTPROBE_DISABLE_REALTIME": RUNTIME_DISABLE_REALTIME_KEY,
    "RTPROBE_SAFE_BOOT": RUNTIME_SAFE_BOOT_KEY,
    "RTPROBE_DEBUG": RUNTIME_DEBUG_KEY,
    "RTPROBE_ALLOW_INSECURE_TLS": RUNTIME_ALLOW_INSECURE_TLS_KEY,
    "RTPROBE_CA_BUNDLE": RUNTIME_CA_BUNDLE_PATH_KEY,
    "RTPROBE_LOG_LEVEL": LOGGING_LEVEL_KEY,
    "RTPROBE_LOG_FORMAT": LOGGING_FORMAT_KEY,
    "RTPROBE_LOG_FILE": LOGGING_FILE_KEY,
    "RTPROBE_LOG_MAX_BYTES": LOGGING_MAX_BYTES_KEY,
    "RTPROBE_LOG_BACKUP_COUNT": LOGGING_BACKUP_COUNT_KEY,
}


@dataclass(frozen=True)
class SupabaseInputs:
    url: Optional[str] = None
    anon_key: Optional[str] = None
    access_token: Optional[str] = None


@dataclass(frozen=True)
class ProbeInputs:
    watched_schema: Optional[str] = None
    watched_table: Optional[str] = None
    token_column: Optional[str] = None
    remediation_rpc: Optional[str] = None


@dataclass(frozen=True)
class RuntimeInputs:
    disable_realtime: Optional[bool] = None
    safe_boot: Optional[bool] = None
    debug: Optional[bool] = None


@dataclass(frozen=True)
class TlsInputs:
    allow_insecure: Optional[bool] = None
    ca_bundle_path: Optional[str] = None


@dataclass(frozen=True)
class LoggingInputs:
    level: Optional[str] = None
    format: Optional[str] = None
    file_path: Optional[str] = None
    max_bytes: Optional[int] = None
    backup_count: Optional[int] = None

    def as_kwargs(self) -> Dict[str, Optional[Any]]:
        return {
            "level_override": self.level,
            "format_override": self.format,
            "file_override": self.file_path,
            "max_bytes_override": self.max_bytes,
            "backup_count_override": self.backup_count,
        }


@dataclass(frozen=True)
class LoggingSettings:
    level: int
    format: str
    file_path: Optional[str]
    max_bytes: int
    backup_count: int

    @property
    def level_name(self) -> str:
        return logging.getLevelName(self.level)


@dataclass(frozen=True)
class RuntimeSettings:
    """Resolved runtime configuration for a diagnostics invocation."""

    supabase_url: Optional[str]
    anon_key: Optional[str]
    access_token: Optional[str]
    watched_schema: str
    watched_table: str
    token_column: str
    remediation_rpc: str
    disable_realtime: bool
    safe_boot: bool
    debug: bool
    allow_insecure_tls: bool
    ca_bundle_path: Optional[str]
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def realtime_blocked(self) -> bool:
        return self.disable_realtime or self.safe_boot


def is_logfile_disabled_value(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in _LOGFILE_DISABLED_VALUES


def _default_settings_files(config_path: Optional[str]) -> Tuple[Sequence[str], Optional[str]]:
    if config_path:
        config_file = Path(config_path)
        local_file = config_file.with_name(f"{config_file.stem}.local{config_file.suffix}")
        files: list[str] = []
        if config_file.exists():
            files.append(str(config_file))
        if local_file.exists():
            files.append(str(local_file))
        return files or [str(config_file)], None
    return [DEFAULT_CONFIG_FILENAME, LOCAL_CONFIG_FILENAME], str(_REPO_ROOT)


def _coerce_str(value: Optional[Any]) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        candidate = value.strip()
        return candidate or None
    return str(value)


def _apply_environment_overrides(settings: Dynaconf) -> None:
    for env_var, key in _ENVIRONMENT_MAP.items():
        raw = os.getenv(env_var)
        if raw is None:
            continue
        if isinstance(raw, str) and not raw.strip():
            continue
        settings.set(key, raw)
    debug_fallback = os.getenv("DEBUG")
    if debug_fallback and debug_fallback.strip():
        settings.set(RUNTIME_DEBUG_KEY, debug_fallback)


def _set_stripped(settings: Dynaconf, key: str, value: Optional[str]) -> None:
    if value is not None:
        settings.set(key, value.strip())


def _apply_supabase_inputs(
    settings: Dynaconf, supabase_inputs: Optional[SupabaseInputs]
) -> None:
    if supabase_inputs is None:
        return

    _set_stripped(settings, SUPABASE_URL_KEY, supabase_inputs.url)
    _set_stripped(settings, SUPABASE_ANON_KEY_KEY, supabase_inputs.anon_key)
    _set_stripped(settings, SUPABASE_ACCESS_TOKEN_KEY, supabase_inputs.access_token)


def _apply_probe_inputs(settings: Dynaconf, probe_inputs: Optional[ProbeInputs]) -> None:
    if probe_inputs is None:
        return

    _set_stripped(settings, PROBE_WATCHED_SCHEMA_KEY, probe_inputs.watched_schema)
    _set_stripped(settings, PROBE_WATCHED_TABLE_KEY, probe_inputs.watched_table)
    _set_stripped(settings, PROBE_TOKEN_COLUMN_KEY, probe_inputs.token_column)
    _set_stripped(settings, PROBE_REMEDIATION_RPC_KEY, probe_inputs.remediation_rpc)


def _apply_runtime_inputs(
    settings: Dynaconf, runtime_inputs: Optional[RuntimeInputs]
) -> None:
    if runtime_inputs is None:
        return

    if runtime_inputs.disable_realtime is not None:
        settings.set(RUNTIME_DISABLE_REALTIME_KEY, runtime_inputs.disable_realtime)
    if runtime_inputs.safe_boot is not None:
        settings.set(RUNTIME_SAFE_BOOT_KEY, runtime_inputs.safe_boot)
    if runtime_inputs.debug is not None:
        settings.set(RUNTIME_DEBUG_KEY, runtime_inputs.debug)


def _apply_tls_inputs(settings: Dynaconf, tls_inputs: Optional[TlsInputs]) -> None:
    if tls_inputs is None:
        return

    if tls_inputs.allow_insecure is not None:
        settings.set(RUNTIME_ALLOW_INSECURE_TLS_KEY, tls_inputs.allow_insecure)
    _set_stripped(settings, RUNTIME_CA_BUNDLE_PATH_KEY, tls_inputs.ca_bundle_path)


def _apply_logging_inputs(
    settings: Dynaconf, logging_inputs: Optional[LoggingInputs]
) -> None:
    if logging_inputs is None:
        return

    kwargs = logging_inputs.as_kwargs()
    _set_stripped(settings, LOGGING_LEVEL_KEY, kwargs["level_override"])
    _set_stripped(settings, LOGGING_FORMAT_KEY, kwargs["format_override"])
    _set_stripped(settings, LOGGING_FILE_KEY, kwargs["file_override"])

    max_bytes_override = kwargs["max_bytes_override"]
    if max_bytes_override is not None:
        settings.set(LOGGING_MAX_BYTES_KEY, max_bytes_override)

    backup_count_override = kwargs["backup_count_override"]
    if backup_count_override is not None:
        settings.set(LOGGING_BACKUP_COUNT_KEY, backup_count_override)


def _build_dynaconf(config_path: Optional[str]) -> Dynaconf:
    files, root_path = _default_settings_files(config_path)
    settings = Dynaconf(
        settings_files=list(files),
        envvar_prefix="RTPROBE",
        environments=False,
        load_dotenv=True,
        merge_enabled=True,
        root_path=root_path,
    )
    _apply_environment_overrides(settings)
    return settings


def load_settings(config_path: Optional[str] = None) -> Dynaconf:
    """Create a Dynaconf instance configured for the supplied path."""

    return _build_dynaconf(config_path)


def apply_cli_overrides(
    settings: Dynaconf,
    *,
    supabase_inputs: Optional[SupabaseInputs] = None,
    probe_inputs: Optional[ProbeInputs] = None,
    runtime_inputs: Optional[RuntimeInputs] = None,
    tls_inputs: Optional[TlsInputs] = None,
    logging_inputs: Optional[LoggingInputs] = None,
) -> None:
    """Apply CLI overrides to the provided settings instance."""

    _apply_supabase_inputs(settings, supabase_inputs)
    _apply_probe_inputs(settings, probe_inputs)
    _apply_runtime_inputs(settings, runtime_inputs)
    _apply_tls_inputs(settings, tls_inputs)
    _apply_logging_inputs(settings, logging_inputs)


def _resolve_bool(settings: Dynaconf, key: str, *, default: bool = False) -> bool:
    return coerce_bool(settings.get(key), default=default)


def _resolve_identifier(
    settings: Dynaconf, key: str, default: str, warnings: list[str]
) -> str:
    raw = settings.get(key)
    value = _coerce_str(raw)
    if value is None:
        if raw is not None:
            warnings.append(f"Empty {key} override; using default '{default}'")
        return default
    return value


def runtime_from_settings(
    settings: Dynaconf, *, require_credentials: bool = True
) -> RuntimeSettings:
    """Extract runtime settings and validation messages from Dynaconf."""

    warnings: list[str] = []

    supabase_url = _coerce_str(settings.get(SUPABASE_URL_KEY))
    anon_key = _coerce_str(settings.get(SUPABASE_ANON_KEY_KEY))
    if require_credentials:
        if not supabase_url:
            raise ValueError("SUPABASE_URL is required (config/env/CLI)")
        if not anon_key:
            raise ValueError("SUPABASE_ANON_KEY is required (config/env/CLI)")

    allow_insecure_tls = _resolve_bool(settings, RUNTIME_ALLOW_INSECURE_TLS_KEY)
    ca_bundle_path = _coerce_str(settings.get(RUNTIME_CA_BUNDLE_PATH_KEY))
    if allow_insecure_tls and ca_bundle_path:
        warnings.append(
            "allow_insecure_tls takes precedence over ca_bundle_path; TLS verification will be disabled"
        )
        ca_bundle_path = None

    return RuntimeSettings(
        supabase_url=supabase_url.rstrip("/") if supabase_url else None,
        anon_key=anon_key,
        access_token=_coerce_str(settings.get(SUPABASE_ACCESS_TOKEN_KEY)),
        watched_schema=_resolve_identifier(
            settings, PROBE_WATCHED_SCHEMA_KEY, DEFAULT_WATCHED_SCHEMA, warnings
        ),
        watched_table=_resolve_identifier(
            settings, PROBE_WATCHED_TABLE_KEY, DEFAULT_WATCHED_TABLE, warnings
        ),
        token_column=_resolve_identifier(
            settings, PROBE_TOKEN_COLUMN_KEY, DEFAULT_TOKEN_COLUMN, warnings
        ),
        remediation_rpc=_resolve_identifier(
            settings, PROBE_REMEDIATION_RPC_KEY, DEFAULT_REMEDIATION_RPC, warnings
        ),
        disable_realtime=_resolve_bool(settings, RUNTIME_DISABLE_REALTIME_KEY),
        safe_boot=_resolve_bool(settings, RUNTIME_SAFE_BOOT_KEY),
        debug=_resolve_bool(settings, RUNTIME_DEBUG_KEY),
        allow_insecure_tls=allow_insecure_tls,
        ca_bundle_path=ca_bundle_path,
        warnings=tuple(warnings),
    )


def logging_from_settings(settings: Dynaconf) -> LoggingSettings:
    """Extract logging configuration from Dynaconf."""

    level_value = _coerce_str(settings.get(LOGGING_LEVEL_KEY)) or DEFAULT_LOG_LEVEL
    format_value = (
        _coerce_str(settings.get(LOGGING_FORMAT_KEY)) or DEFAULT_LOG_FORMAT
    ).lower()
    if format_value not in {LOG_FORMAT_TEXT, LOG_FORMAT_JSON}:
        raise ValueError(f"Unsupported log format: {format_value}")

    file_path = _coerce_str(settings.get(LOGGING_FILE_KEY))
    if is_logfile_disabled_value(file_path):
        file_path = None

    max_bytes_value = parse_positive_int(settings.get(LOGGING_MAX_BYTES_KEY)) or DEFAULT_MAX_BYTES
    backup_count_value = (
        parse_positive_int(settings.get(LOGGING_BACKUP_COUNT_KEY)) or DEFAULT_BACKUP_COUNT
    )

    mapping = logging.getLevelNamesMapping()
    level_upper = level_value.upper()
    if level_upper.isdigit():
        resolved_level = int(level_upper)
    else:
        resolved_level = mapping.get(level_upper, logging.INFO)

    return LoggingSettings(
        level=resolved_level,
        format=format_value,
        file_path=file_path,
        max_bytes=max_bytes_value,
        backup_count=backup_count_value,
    )


def resolve_application_settings(
    *,
    config_path: Optional[str] = DEFAULT_CONFIG_FILENAME,
    supabase_inputs: Optional[SupabaseInputs] = None,
    probe_inputs: Optional[ProbeInputs] = None,
    runtime_inputs: Optional[RuntimeInputs] = None,
    tls_inputs: Optional[TlsInputs] = None,
    logging_inputs: Optional[LoggingInputs] = None,
    require_credentials: bool = True,
) -> Tuple[RuntimeSettings, LoggingSettings]:
    settings = load_settings(config_path)
    apply_cli_overrides(
        settings,
        supabase_inputs=supabase_inputs,
        probe_inputs=probe_inputs,
        runtime_inputs=runtime_inputs,
        tls_inputs=tls_inputs,
        logging_inputs=logging_inputs,
    )
    runtime_settings = runtime_from_settings(
        settings, require_credentials=require_credentials
    )
    logging_settings = logging_from_settings(settings)

    if runtime_settings.debug and logging_settings.level > logging.DEBUG:
        logging_settings = replace(logging_settings, level=logging.DEBUG)

    return runtime_settings, logging_settings


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "DEFAULT_LOG_LEVEL",
    "DEFAULT_MAX_BYTES",
    "DEFAULT_BACKUP_COUNT",
    "LOG_FORMAT_TEXT",
    "LOG_FORMAT_JSON",
    "load_settings",
    "apply_cli_overrides",
    "runtime_from_settings",
    "logging_from_settings",
    "is_logfile_disabled_value",
    "SupabaseInputs",
    "ProbeInputs",
    "RuntimeInputs",
    "TlsInputs",
    "LoggingInputs",
    "LoggingSettings",
    "RuntimeSettings",
    "resolve_application_settings",
]
