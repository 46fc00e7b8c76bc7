"""CLI command: netpolc compile <catalog> — emit policy manifests as YAML."""

from __future__ import annotations

import sys
from pathlib import Path

import click
import yaml
from rich.console import Console

from netpolc.policy.loader import load_catalog

console = Console(stderr=True)


@click.command(name="compile")
@click.argument("catalog", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write manifests to this file instead of stdout.",
)
@click.pass_context
def compile_(ctx: click.Context, catalog: str, output: str | None) -> None:
    """Compile a YAML catalog into policy manifests."""
    config = ctx.obj["config"]
    try:
        compiled = load_catalog(catalog, config=config)
        manifests = compiled.manifests()
    except (ValueError, OSError) as exc:
        console.print(f"[red]Compilation failed:[/red] {exc}")
        sys.exit(1)

    text: str = yaml.safe_dump_all(
        manifests, default_flow_style=False, sort_keys=False
    )

    if output:
        Path(output).write_text(text, encoding="utf-8")
        console.print(
            f"[green]{len(manifests)} policies from "
            f"[cyan]{compiled.name}[/cyan] written to {output}[/green]"
        )
    else:
        click.echo(text, nl=False)
