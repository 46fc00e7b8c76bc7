"""CLI entry point — Click group with global options."""

from __future__ import annotations

import logging

import click

from netpolc import __version__
from netpolc.config import CompilerConfig


@click.group()
@click.version_option(version=__version__, prog_name="netpolc")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """netpolc — compile allow-list catalogs into Cilium network policies."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config"] = CompilerConfig.load()

    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _register_commands() -> None:
    from netpolc.cli.check import check  # noqa: F811
    from netpolc.cli.compile import compile_  # noqa: F811

    main.add_command(compile_)
    main.add_command(check)


_register_commands()
