from __future__ import annotations

import click

from . import commands_admin, commands_jobs


@click.group(name="clipping-pipeline", help="clipping-pipeline CLI (submit, serve, captions)")
def cli() -> None:
    pass


commands_jobs.add_commands(cli)
commands_admin.add_commands(cli)


def main() -> None:
    cli()


__all__ = ["cli", "main"]
