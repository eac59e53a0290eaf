"""optisync CLI — Typer application root.

Entry point for the ``optisync`` console script.

Commands:
    diff      Print the minimal patch between two JSON entity files.
    settings  Print the effective overlay configuration.

``optisync diff`` uses the same diff engine as the write path, so it answers
"what would this edit send to the server?" without a running UI::

    $ optisync diff before.json after.json --exclude id
    {
      "status": "closed"
    }
"""
from __future__ import annotations

import enum
import json
import logging
from pathlib import Path
from typing import Any, List, Optional

import typer

from optisync.config import get_settings
from optisync.core.diff import compute_diff, is_diff_empty
from optisync.core.errors import ValidationError

logger = logging.getLogger(__name__)


class ExitCode(enum.IntEnum):
    """Standardised CLI exit codes.

    0 — success
    1 — user error (bad arguments, invalid input)
    3 — internal error
    """

    SUCCESS = 0
    USER_ERROR = 1
    INTERNAL_ERROR = 3


cli = typer.Typer(
    name="optisync",
    help="optisync — optimistic overlay and diff tooling.",
    no_args_is_help=True,
)


@cli.callback()
def _main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    level = logging.DEBUG if verbose or get_settings().debug else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _load_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        typer.echo(f"❌ File not found: {path}", err=True)
        raise typer.Exit(code=ExitCode.USER_ERROR)
    except json.JSONDecodeError as exc:
        typer.echo(f"❌ Invalid JSON in {path}: {exc}", err=True)
        raise typer.Exit(code=ExitCode.USER_ERROR)


@cli.command("diff", help="Print the fields of CANDIDATE that differ from ORIGINAL.")
def diff_cmd(
    original: Path = typer.Argument(..., help="JSON file with the prior entity state ('null' for none)."),
    candidate: Path = typer.Argument(..., help="JSON file with the proposed entity state."),
    exclude: Optional[List[str]] = typer.Option(
        None, "--exclude", "-x", help="Field never included (repeatable)."
    ),
    include: Optional[List[str]] = typer.Option(
        None, "--include", "-i", help="Field always included (repeatable)."
    ),
    check: bool = typer.Option(
        False, "--check", help="Exit 1 when the diff is non-empty (like `git diff --exit-code`)."
    ),
) -> None:
    prior = _load_json(original)
    proposed = _load_json(candidate)
    try:
        diff = compute_diff(
            prior,
            proposed,
            exclude_fields=exclude or (),
            always_include_fields=include or (),
        )
    except ValidationError as exc:
        typer.echo(f"❌ {exc}", err=True)
        raise typer.Exit(code=ExitCode.USER_ERROR)
    except Exception as exc:
        typer.echo(f"❌ optisync diff failed: {exc}", err=True)
        logger.error(f"❌ optisync diff error: {exc}", exc_info=True)
        raise typer.Exit(code=ExitCode.INTERNAL_ERROR)

    typer.echo(json.dumps(diff, indent=2, ensure_ascii=False, default=str))
    if check and not is_diff_empty(diff):
        raise typer.Exit(code=ExitCode.USER_ERROR)


@cli.command("settings", help="Print the effective configuration as JSON.")
def settings_cmd() -> None:
    typer.echo(get_settings().model_dump_json(indent=2))


if __name__ == "__main__":
    cli()
