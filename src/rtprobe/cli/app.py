"""rtprobe Typer CLI entrypoint."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from rtprobe.cli.commands import config as config_command
from rtprobe.cli.commands import remediate as remediate_command
from rtprobe.cli.commands import selftest as selftest_command

PROJECT_ROOT = Path(__file__).resolve().parents[3]
DISTRIBUTION_NAME = "rtprobe"

stderr_console = Console(stderr=True)
stdout_console = Console(stderr=False)

app = typer.Typer(
    help="Realtime connectivity diagnostics for Supabase projects",
    rich_markup_mode="rich",
    no_args_is_help=True,
)

config_command.register(app, stdout_console=stdout_console)
selftest_command.register(app, stdout_console=stdout_console, stderr_console=stderr_console)
remediate_command.register(app, stdout_console=stdout_console)


@app.command(help="Show the installed rtprobe package version.")
def version() -> None:
    """Print the version discovered from the package metadata."""
    from importlib import metadata

    try:
        resolved_version = metadata.version(DISTRIBUTION_NAME)
    except metadata.PackageNotFoundError:
        pyproject = PROJECT_ROOT / "pyproject.toml"
        if not pyproject.exists():
            stdout_console.print("Version information unavailable")
            return
        import tomllib

        data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
        resolved_version = data.get("project", {}).get("version", "unknown")
    stdout_console.print(resolved_version)


def main(argv: list[str] | None = None) -> None:
    app(args=argv, prog_name=DISTRIBUTION_NAME)


__all__ = ["app", "main"]
