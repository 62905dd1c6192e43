"""
Metrics CLI commands.

  crosspost metrics refresh --user <id>          — fetch and reconcile remote metrics
  crosspost metrics show    [<post-id>] [-n …]   — show stored metrics
"""

from __future__ import annotations

from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config.settings import settings
from src.content.models import Network
from src.factory import build_engine
from src.metrics.store import MetricStore

console = Console()
app = typer.Typer(help="Collect and inspect engagement metrics.")


@app.command()
def refresh(
    user: str = typer.Option(..., "--user", "-u", help="Author whose posts are reconciled."),
) -> None:
    """Fetch remote metrics for every network and match them to local variants."""
    with build_engine() as engine:
        try:
            with console.status("[bold]Fetching metrics…"):
                report = engine.refresh_metrics(user)
        finally:
            engine.post_store.close()
            engine.metric_store.close()

    table = Table(title="📊 Metrics refresh", show_lines=False)
    table.add_column("Network", style="cyan", width=12)
    table.add_column("Matched", justify="right", width=8)
    for network, count in sorted(report.per_network.items()):
        table.add_row(network, str(count))
    console.print(table)

    rprint(
        f"[green]✓[/green] {report.processed_count} variant(s) matched, "
        f"{report.written_count} updated"
    )
    for warning in report.warnings:
        rprint(f"  [yellow]⚠[/yellow]  {warning}")


@app.command()
def show(
    post_id: Optional[str] = typer.Argument(None, help="Post ID (omit for a summary)."),
    network: Optional[str] = typer.Option(None, "--network", "-n", help="Filter by network."),
    metric: str = typer.Option("likes", "--metric", help="Counter to rank by in the summary."),
    limit: int = typer.Option(10, "--limit", "-l", help="Rows in the ranking."),
) -> None:
    """Show the stored metrics of a post, or a per-network summary and ranking."""
    try:
        net = Network(network.lower()) if network else None
    except ValueError:
        rprint(f"[red]Unknown network:[/red] {network!r}")
        raise typer.Exit(1)

    with MetricStore(settings.db_path) as store:
        if post_id:
            rows = [m for m in store.list_for_post(post_id) if net is None or m.network == net]
            if not rows:
                rprint(
                    f"[yellow]No metrics stored for post [bold]{post_id}[/bold].[/yellow]\n"
                    "[dim]Run [cyan]crosspost metrics refresh[/cyan] first.[/dim]"
                )
                return
            table = Table(title=f"📊 Post {post_id}", show_lines=False)
            table.add_column("Network", style="cyan", width=10)
            table.add_column("Variant", style="dim", width=10)
            for name in ("Likes", "Comments", "Shares", "Impressions"):
                table.add_column(name, justify="right", width=11)
            table.add_column("Collected", style="dim", width=17)
            for m in rows:
                table.add_row(
                    m.network.value,
                    m.variant_id,
                    *(f"{v:,}" for v in m.counters()),
                    m.collected_at.strftime("%d/%m/%Y %H:%M"),
                )
            console.print(table)
            return

        summary = store.summary(net)
        rprint(
            f"[bold]{summary['network']}[/bold]: {summary['variants']} variant(s) "
            f"across {summary['distinct_posts']} post(s) — "
            f"likes {summary['likes']:,} · comments {summary['comments']:,} · "
            f"shares {summary['shares']:,} · impressions {summary['impressions']:,}"
        )
        if net is None:
            return
        try:
            top = store.top_variants(net, metric=metric, limit=limit)
        except ValueError as exc:
            rprint(f"[red]{exc}[/red]")
            raise typer.Exit(1)
        table = Table(title=f"🏆 Top {net.value} variants by {metric}", show_lines=False)
        table.add_column("Variant", style="dim", width=10)
        table.add_column("Post", style="cyan", width=10)
        table.add_column(metric.capitalize(), justify="right", width=12)
        for row in top:
            table.add_row(row["variant_id"], row["post_id"], f"{row[metric]:,}")
        console.print(table)
