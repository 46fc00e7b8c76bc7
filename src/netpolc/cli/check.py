"""CLI command: netpolc check <catalog> — compile and summarize without output."""

from __future__ import annotations

import sys

import click
from rich.console import Console
from rich.table import Table

from netpolc.policy.loader import load_catalog
from netpolc.policy.models import PolicyDocument

console = Console(stderr=True)


@click.command()
@click.argument("catalog", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def check(ctx: click.Context, catalog: str) -> None:
    """Validate a catalog and list the documents it compiles to."""
    config = ctx.obj["config"]
    try:
        compiled = load_catalog(catalog, config=config)
        documents = compiled.documents()
    except (ValueError, OSError) as exc:
        console.print(f"[red]Compilation failed:[/red] {exc}")
        sys.exit(1)

    console.print(f"[bold]netpolc[/bold] checked [cyan]{compiled.name}[/cyan]\n")

    if not documents:
        console.print("[yellow]Catalog declares no policies.[/yellow]")
        return

    table = Table(title="Policies", show_lines=False)
    table.add_column("Name", style="cyan")
    table.add_column("Anchor")
    table.add_column("Ingress", justify="right")
    table.add_column("Egress", justify="right")
    table.add_column("Router sync")

    for doc in documents:
        table.add_row(
            doc.name,
            doc.anchor_kind,
            str(len(doc.ingress)),
            str(len(doc.egress)),
            "yes" if _syncs_with_router(doc, config.router_sync_annotation) else "",
        )

    console.print(table)

    wildcard_count = sum(1 for rule in compiled.rules() if rule.dns_wildcard)
    console.print(
        f"\n{len(documents)} policies from {len(compiled.rules())} rules "
        f"({wildcard_count} with DNS wildcard)"
    )


def _syncs_with_router(doc: PolicyDocument, annotation: str) -> bool:
    return any(key == annotation for key, _ in doc.annotations)
