from __future__ import annotations

import logging
from pathlib import Path

import pytest

from rtprobe.config.constants import (
    DEFAULT_CONFIG_FILENAME,
    coerce_bool,
    parse_positive_int,
)
from rtprobe.config.settings import (
    DEFAULT_LOG_FORMAT,
    LoggingInputs,
    LoggingSettings,
    ProbeInputs,
    RuntimeInputs,
    RuntimeSettings,
    SupabaseInputs,
    TlsInputs,
    apply_cli_overrides,
    load_settings,
    logging_from_settings,
    resolve_application_settings,
    runtime_from_settings,
)
from rtprobe.domain.resources import (
    DEFAULT_REMEDIATION_RPC,
    DEFAULT_TOKEN_COLUMN,
    DEFAULT_WATCHED_TABLE,
)


def _write_base_config(path: Path) -> None:
    path.write_text(
        "\n".join(
            [
                "[supabase]",
                'url = "https://file-project.supabase.co/"',
                'anon_key = "file-anon-key"',
                "",
                "[probe]",
                'watched_schema = "public"',
                f'watched_table = "{DEFAULT_WATCHED_TABLE}"',
                f'token_column = "{DEFAULT_TOKEN_COLUMN}"',
                "",
                "[runtime]",
                "disable_realtime = false",
                "safe_boot = false",
                "debug = false",
                "allow_insecure_tls = false",
                'ca_bundle_path = ""',
                "",
                "[logging]",
                'level = "INFO"',
                'format = "text"',
                'file = ""',
                "max_bytes = 10000000",
                "backup_count = 5",
            ]
        )
        + "\n",
        encoding="utf-8",
    )


def test_runtime_defaults_from_config(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / DEFAULT_CONFIG_FILENAME
    _write_base_config(config_path)

    runtime = runtime_from_settings(load_settings(str(config_path)))

    assert isinstance(runtime, RuntimeSettings)
    assert runtime.supabase_url == "https://file-project.supabase.co"
    assert runtime.anon_key == "file-anon-key"
    assert runtime.access_token is None
    assert runtime.watched_schema == "public"
    assert runtime.watched_table == DEFAULT_WATCHED_TABLE
    assert runtime.token_column == DEFAULT_TOKEN_COLUMN
    assert runtime.remediation_rpc == DEFAULT_REMEDIATION_RPC
    assert runtime.disable_realtime is False
    assert runtime.safe_boot is False
    assert runtime.realtime_blocked is False
    assert runtime.warnings == ()


def test_environment_overrides_take_precedence(
    tmp_path: Path, clean_env: pytest.MonkeyPatch
) -> None:
    config_path = tmp_path / DEFAULT_CONFIG_FILENAME
    _write_base_config(config_path)

    clean_env.setenv("SUPABASE_URL", "https://env-project.supabase.co")
    clean_env.setenv("SUPABASE_ANON_KEY", "env-anon-key")
    clean_env.setenv("RTPROBE_ACCESS_TOKEN", "env-jwt")
    clean_env.setenv("RTPROBE_WATCHED_TABLE", "probe_rows")
    clean_env.setenv("RTPROBE_DISABLE_REALTIME", "true")
    clean_env.setenv("RTPROBE_ALLOW_INSECURE_TLS", "true")
    clean_env.setenv("RTPROBE_CA_BUNDLE", " /tmp/custom.pem ")

    runtime = runtime_from_settings(load_settings(str(config_path)))

    assert runtime.supabase_url == "https://env-project.supabase.co"
    assert runtime.anon_key == "env-anon-key"
    assert runtime.access_token == "env-jwt"
    assert runtime.watched_table == "probe_rows"
    assert runtime.disable_realtime is True
    assert runtime.realtime_blocked is True
    assert runtime.allow_insecure_tls is True
    assert runtime.ca_bundle_path is None
    assert runtime.warnings == (
        "allow_insecure_tls takes precedence over ca_bundle_path; "
        "TLS verification will be disabled",
    )


def test_cli_overrides_supersede_environment(
    tmp_path: Path, clean_env: pytest.MonkeyPatch
) -> None:
    config_path = tmp_path / DEFAULT_CONFIG_FILENAME
    _write_base_config(config_path)

    clean_env.setenv("SUPABASE_ANON_KEY", "env-anon-key")
    clean_env.setenv("RTPROBE_SAFE_BOOT", "true")

    settings_obj = load_settings(str(config_path))
    apply_cli_overrides(
        settings_obj,
        supabase_inputs=SupabaseInputs(anon_key=" cli-anon-key "),
        probe_inputs=ProbeInputs(watched_schema="diag", token_column="probe_id"),
        runtime_inputs=RuntimeInputs(safe_boot=False, debug=True),
        tls_inputs=TlsInputs(allow_insecure=False, ca_bundle_path=" /etc/ssl/custom.pem "),
    )

    runtime = runtime_from_settings(settings_obj)
    assert runtime.anon_key == "cli-anon-key"
    assert runtime.watched_schema == "diag"
    assert runtime.token_column == "probe_id"
    assert runtime.safe_boot is False
    assert runtime.debug is True
    assert runtime.ca_bundle_path == "/etc/ssl/custom.pem"


def test_blank_environment_values_are_ignored(
    tmp_path: Path, clean_env: pytest.MonkeyPatch
) -> None:
    config_path = tmp_path / DEFAULT_CONFIG_FILENAME
    _write_base_config(config_path)

    clean_env.setenv("RTPROBE_WATCHED_TABLE", "   ")
    clean_env.setenv("SUPABASE_ANON_KEY", "")

    runtime = runtime_from_settings(load_settings(str(config_path)))

    assert runtime.watched_table == DEFAULT_WATCHED_TABLE
    assert runtime.anon_key == "file-anon-key"
    assert runtime.warnings == ()


def test_empty_identifier_override_falls_back_with_warning(
    tmp_path: Path, clean_env: pytest.MonkeyPatch
) -> None:
    config_path = tmp_path / DEFAULT_CONFIG_FILENAME
    _write_base_config(config_path)

    settings_obj = load_settings(str(config_path))
    apply_cli_overrides(settings_obj, probe_inputs=ProbeInputs(token_column="  "))

    runtime = runtime_from_settings(settings_obj)
    assert runtime.token_column == DEFAULT_TOKEN_COLUMN
    assert runtime.warnings == (
        f"Empty probe.token_column override; using default '{DEFAULT_TOKEN_COLUMN}'",
    )


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ('[supabase]\nanon_key = "k"\n', "SUPABASE_URL is required"),
        ('[supabase]\nurl = "https://x.supabase.co"\n', "SUPABASE_ANON_KEY is required"),
    ],
)
def test_missing_credentials_are_rejected(
    tmp_path: Path, clean_env: pytest.MonkeyPatch, content: str, message: str
) -> None:
    config_path = tmp_path / DEFAULT_CONFIG_FILENAME
    config_path.write_text(content, encoding="utf-8")
    settings_obj = load_settings(str(config_path))

    with pytest.raises(ValueError, match=message):
        runtime_from_settings(settings_obj)

    relaxed = runtime_from_settings(settings_obj, require_credentials=False)
    assert relaxed.warnings == ()


def test_logging_overrides_follow_cli(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / DEFAULT_CONFIG_FILENAME
    _write_base_config(config_path)

    settings_obj = load_settings(str(config_path))
    apply_cli_overrides(
        settings_obj,
        logging_inputs=LoggingInputs(
            level="DEBUG",
            format="json",
            file_path=str(tmp_path / "rtprobe.log"),
            max_bytes=2048,
            backup_count=2,
        ),
    )

    logging_settings = logging_from_settings(settings_obj)
    assert isinstance(logging_settings, LoggingSettings)
    assert logging_settings.level == logging.DEBUG
    assert logging_settings.format == "json"
    assert logging_settings.file_path and logging_settings.file_path.endswith("rtprobe.log")
    assert logging_settings.max_bytes == 2048
    assert logging_settings.backup_count == 2


def test_unsupported_log_format_is_rejected(
    tmp_path: Path, clean_env: pytest.MonkeyPatch
) -> None:
    config_path = tmp_path / DEFAULT_CONFIG_FILENAME
    _write_base_config(config_path)
    clean_env.setenv("RTPROBE_LOG_FORMAT", "yaml")

    with pytest.raises(ValueError, match="Unsupported log format"):
        logging_from_settings(load_settings(str(config_path)))


@pytest.mark.parametrize("sentinel", ["stderr", "none", "-"])
def test_logging_file_disable_sentinels(
    tmp_path: Path, clean_env: pytest.MonkeyPatch, sentinel: str
) -> None:
    config_path = tmp_path / DEFAULT_CONFIG_FILENAME
    _write_base_config(config_path)
    clean_env.setenv("RTPROBE_LOG_FILE", sentinel)

    logging_settings = logging_from_settings(load_settings(str(config_path)))

    assert logging_settings.file_path is None


def test_local_config_layers_over_base(tmp_path: Path, clean_env: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "custom.toml"
    _write_base_config(config_path)
    config_path.with_name("custom.local.toml").write_text(
        "\n".join(
            [
                "[supabase]",
                'anon_key = "local-anon-key"',
                "",
                "[runtime]",
                "safe_boot = true",
            ]
        )
        + "\n",
        encoding="utf-8",
    )

    runtime = runtime_from_settings(load_settings(str(config_path)))

    assert runtime.supabase_url == "https://file-project.supabase.co"
    assert runtime.anon_key == "local-anon-key"
    assert runtime.safe_boot is True


def test_resolve_application_settings_debug_forces_debug_level(
    tmp_path: Path, clean_env: pytest.MonkeyPatch
) -> None:
    config_path = tmp_path / DEFAULT_CONFIG_FILENAME
    _write_base_config(config_path)
    clean_env.setenv("DEBUG", "1")

    runtime, logging_settings = resolve_application_settings(
        config_path=str(config_path),
        supabase_inputs=SupabaseInputs(url="https://cli.supabase.co"),
        logging_inputs=LoggingInputs(level="WARNING"),
    )

    assert runtime.supabase_url == "https://cli.supabase.co"
    assert runtime.debug is True
    assert logging_settings.level == logging.DEBUG
    assert logging_settings.format == DEFAULT_LOG_FORMAT
    assert logging_settings.max_bytes == 10_000_000
    assert logging_settings.backup_count == 5


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("yes", True), (" ON ", True), ("0", False), ("off", False), ("maybe", None), ("", None), (None, None), (1, True)],
)
def test_coerce_bool_markers(raw: object, expected: bool | None) -> None:
    assert coerce_bool(raw) is (False if expected is None else expected)
    assert coerce_bool(raw, default=True) is (True if expected is None else expected)


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("2048", 2048), (7, 7), ("0", None), (-3, None), ("many", None), (True, None), (None, None)],
)
def test_parse_positive_int(raw: object, expected: int | None) -> None:
    assert parse_positive_int(raw) == expected


def test_invalid_rotation_values_fall_back_to_defaults(
    tmp_path: Path, clean_env: pytest.MonkeyPatch
) -> None:
    config_path = tmp_path / DEFAULT_CONFIG_FILENAME
    _write_base_config(config_path)
    clean_env.setenv("RTPROBE_LOG_MAX_BYTES", "lots")
    clean_env.setenv("RTPROBE_LOG_BACKUP_COUNT", "-1")

    logging_settings = logging_from_settings(load_settings(str(config_path)))

    assert logging_settings.max_bytes == 10_000_000
    assert logging_settings.backup_count == 5
