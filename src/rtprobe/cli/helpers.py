"""Reusable helper utilities for the rtprobe CLI."""

from __future__ import annotations

from pathlib import Path

import typer

from rtprobe.cli import options as cli_options
from rtprobe.cli.models import (
    CliInvocation,
    LoggingOverrides,
    ProbeOverrides,
    RuntimeOverrides,
    SupabaseOverrides,
    TlsOverrides,
)
from rtprobe.config.settings import (
    LoggingInputs,
    LoggingSettings,
    ProbeInputs,
    RuntimeInputs,
    RuntimeSettings,
    SupabaseInputs,
    TlsInputs,
    is_logfile_disabled_value,
    resolve_application_settings,
)
from rtprobe.domain.models import WatchedResource
from rtprobe.infrastructure.logging import BoundLogger, configure_logging, get_logger

_MASK = "********"


def build_invocation(
    *,
    config_path: Path | str | None,
    supabase_url: str | None = None,
    anon_key: str | None = None,
    access_token: str | None = None,
    watched_schema: str | None = None,
    watched_table: str | None = None,
    token_column: str | None = None,
    remediation_rpc: str | None = None,
    disable_realtime: bool | None = None,
    safe_boot: bool | None = None,
    debug: bool | None = None,
    allow_insecure_tls: bool | None = None,
    ca_bundle: str | None = None,
    log_level: str | None = None,
    log_format: str | None = None,
    log_file: str | None = None,
    log_max_bytes: int | None = None,
    log_backup_count: int | None = None,
) -> CliInvocation:
    """Construct a :class:`CliInvocation` with normalized CLI parameters."""

    clean = cli_options.clean_string
    return CliInvocation(
        config_path=str(config_path) if config_path is not None else None,
        supabase=SupabaseOverrides(
            url=clean(supabase_url),
            anon_key=clean(anon_key),
            access_token=clean(access_token),
        ),
        probe=ProbeOverrides(
            watched_schema=clean(watched_schema),
            watched_table=clean(watched_table),
            token_column=clean(token_column),
            remediation_rpc=clean(remediation_rpc),
        ),
        runtime=RuntimeOverrides(
            disable_realtime=disable_realtime,
            safe_boot=safe_boot,
            debug=debug,
        ),
        tls=TlsOverrides(allow_insecure=allow_insecure_tls, ca_bundle_path=clean(ca_bundle)),
        logging=LoggingOverrides(
            level=cli_options.normalize_log_level(log_level),
            format=cli_options.normalize_log_format(log_format),
            file_path=clean(log_file),
            max_bytes=cli_options.validate_positive("log_max_bytes", log_max_bytes),
            backup_count=cli_options.validate_positive("log_backup_count", log_backup_count),
        ),
    )


def supabase_inputs(overrides: SupabaseOverrides) -> SupabaseInputs | None:
    if overrides.url is None and overrides.anon_key is None and overrides.access_token is None:
        return None
    return SupabaseInputs(
        url=overrides.url,
        anon_key=overrides.anon_key,
        access_token=overrides.access_token,
    )


def probe_inputs(overrides: ProbeOverrides) -> ProbeInputs | None:
    if (
        overrides.watched_schema is None
        and overrides.watched_table is None
        and overrides.token_column is None
        and overrides.remediation_rpc is None
    ):
        return None
    return ProbeInputs(
        watched_schema=overrides.watched_schema,
        watched_table=overrides.watched_table,
        token_column=overrides.token_column,
        remediation_rpc=overrides.remediation_rpc,
    )


def runtime_inputs(overrides: RuntimeOverrides) -> RuntimeInputs | None:
    if (
        overrides.disable_realtime is None
        and overrides.safe_boot is None
        and overrides.debug is None
    ):
        return None
    return RuntimeInputs(
        disable_realtime=overrides.disable_realtime,
        safe_boot=overrides.safe_boot,
        debug=overrides.debug,
    )


def tls_inputs(overrides: TlsOverrides) -> TlsInputs | None:
    if overrides.allow_insecure is None and overrides.ca_bundle_path is None:
        return None
    return TlsInputs(
        allow_insecure=overrides.allow_insecure,
        ca_bundle_path=overrides.ca_bundle_path,
    )


def logging_inputs(overrides: LoggingOverrides) -> LoggingInputs | None:
    """Convert CLI logging overrides to :class:`LoggingInputs`."""

    if (
        overrides.level is None
        and overrides.format is None
        and overrides.file_path is None
        and overrides.max_bytes is None
        and overrides.backup_count is None
    ):
        return None

    file_override: str | None
    if overrides.file_path is None:
        file_override = None
    elif is_logfile_disabled_value(overrides.file_path):
        file_override = ""
    else:
        file_override = overrides.file_path

    return LoggingInputs(
        level=overrides.level,
        format=overrides.format,
        file_path=file_override,
        max_bytes=overrides.max_bytes,
        backup_count=overrides.backup_count,
    )


def resolve_runtime_and_logging(
    invocation: CliInvocation,
) -> tuple[RuntimeSettings, LoggingSettings]:
    """Resolve settings without requiring credentials; commands check them."""

    try:
        return resolve_application_settings(
            config_path=invocation.config_path,
            supabase_inputs=supabase_inputs(invocation.supabase),
            probe_inputs=probe_inputs(invocation.probe),
            runtime_inputs=runtime_inputs(invocation.runtime),
            tls_inputs=tls_inputs(invocation.tls),
            logging_inputs=logging_inputs(invocation.logging),
            require_credentials=False,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def require_credentials(runtime_settings: RuntimeSettings) -> None:
    if not runtime_settings.supabase_url:
        raise typer.BadParameter(
            "SUPABASE_URL is required (config/env/CLI)", param_hint="--supabase-url"
        )
    if not runtime_settings.anon_key:
        raise typer.BadParameter(
            "SUPABASE_ANON_KEY is required (config/env/CLI)", param_hint="--anon-key"
        )


def initialize_logging(
    runtime_settings: RuntimeSettings, logging_settings: LoggingSettings
) -> BoundLogger:
    """Configure logging and emit runtime warnings."""

    configure_logging(logging_settings)
    logger = get_logger("rtprobe")
    for message in runtime_settings.warnings:
        logger.warning(message)
    return logger


def watched_resource(runtime_settings: RuntimeSettings) -> WatchedResource:
    return WatchedResource(
        schema=runtime_settings.watched_schema,
        table=runtime_settings.watched_table,
        token_column=runtime_settings.token_column,
    )


def mask_secret(value: str | None) -> str:
    if not value:
        return "<unset>"
    if len(value) <= 8:
        return _MASK
    return f"{value[:4]}{_MASK}"


__all__ = [
    "build_invocation",
    "initialize_logging",
    "logging_inputs",
    "mask_secret",
    "probe_inputs",
    "require_credentials",
    "resolve_runtime_and_logging",
    "runtime_inputs",
    "supabase_inputs",
    "tls_inputs",
    "watched_resource",
]
