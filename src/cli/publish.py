"""
Publishing CLI commands.

  crosspost publish send     <post-id> <variant-id>   — publish one variant now
  crosspost publish all      <post-id>                — publish every pending variant
  crosspost publish run-due  [--dry-run]              — publish all due scheduled posts
  crosspost publish check    -n … -m …                — inspect media constraints
"""

from __future__ import annotations

import datetime as dt
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from config.settings import settings
from src.content.models import Network
from src.content.rules import can_add_media, check_media_set, evaluate_constraints
from src.content.storage import PostStore
from src.factory import build_orchestrator
from src.publish.errors import PublishError
from src.publish.orchestrator import VariantPublishResult

console = Console()
app = typer.Typer(help="Publish posts to Bluesky, Instagram, Facebook, TikTok and X.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _format_dt(value: Optional[dt.datetime]) -> str:
    if value is None:
        return "—"
    return value.strftime("%d/%m/%Y %H:%M")


def _parse_networks(values: list[str]) -> list[Network]:
    try:
        return [Network(v.lower()) for v in values]
    except ValueError:
        valid = ", ".join(n.value for n in Network)
        rprint(f"[red]Unknown network in {values!r}.[/red] Use: {valid}")
        raise typer.Exit(1)


def _results_table(title: str, results: list[VariantPublishResult]) -> Table:
    table = Table(title=title, show_lines=False)
    table.add_column("Variant", style="dim", width=10)
    table.add_column("Network", style="cyan", width=10)
    table.add_column("Result", width=12)
    table.add_column("External ID / error", width=60)

    for r in results:
        network = r.network.value if r.network else "—"
        if r.skipped:
            table.add_row(r.variant_id, network, "⏭  skipped", r.external_id or "")
        elif r.ok:
            label = "⏳ accepted" if r.accepted_only else "✅ published"
            table.add_row(r.variant_id, network, label, r.permalink or r.external_id or "")
        else:
            kind = r.error_kind.value if r.error_kind else "error"
            table.add_row(r.variant_id, network, "❌ failed", f"[red]{kind}[/red] {r.error}")
    return table


# ---------------------------------------------------------------------------
# send
# ---------------------------------------------------------------------------


@app.command()
def send(
    post_id: str = typer.Argument(..., help="Post ID"),
    variant_id: str = typer.Argument(..., help="Variant ID to publish"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Acting user (defaults to the post author)."),
) -> None:
    """Publish one variant of a post now."""
    with PostStore(settings.db_path) as store, build_orchestrator(store=store) as orchestrator:
        with console.status("[bold]Publishing…"):
            result = orchestrator.publish_variant(post_id, variant_id, acting_user_id=user)

    console.print(_results_table(f"📤 Post {post_id}", [result]))
    if not result.ok:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# all
# ---------------------------------------------------------------------------


@app.command("all")
def publish_all(
    post_id: str = typer.Argument(..., help="Post ID"),
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Acting user (defaults to the post author)."),
) -> None:
    """Publish every pending variant of a post, one network per worker."""
    with PostStore(settings.db_path) as store, build_orchestrator(store=store) as orchestrator:
        with console.status("[bold]Publishing to all networks…"):
            try:
                results = orchestrator.publish_all_pending(post_id, acting_user_id=user)
            except PublishError as exc:
                rprint(f"[red]Error:[/red] {exc.message}")
                raise typer.Exit(1)

    if not results:
        rprint(f"[green]✓ Post {post_id} has no pending variants.[/green]")
        return
    console.print(_results_table(f"📤 Post {post_id}", results))
    if not all(r.ok for r in results):
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# run-due
# ---------------------------------------------------------------------------


@app.command("run-due")
def run_due(
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Show what would run, without posting."
    ),
) -> None:
    """Publish all scheduled posts that are due (run_at <= now)."""
    if dry_run:
        with PostStore(settings.db_path) as store:
            due = store.list_due_posts()
        if not due:
            rprint("[green]✓ No posts due.[/green]")
            return
        rprint(f"[bold]{len(due)} post(s) due:[/bold]")
        for post in due:
            networks = ", ".join(sorted(v.network.value for v in post.pending_variants))
            rprint(
                f"  [cyan]{post.id}[/cyan]  {post.title!r}  "
                f"scheduled={_format_dt(post.schedule.run_at if post.schedule else None)}  "
                f"networks={networks}"
            )
        rprint("[yellow][DRY RUN] nothing published[/yellow]")
        return

    with PostStore(settings.db_path) as store, build_orchestrator(store=store) as orchestrator:
        by_post = orchestrator.run_due()

    if not by_post:
        rprint("[green]✓ No posts due.[/green]")
        return
    for post_id, results in by_post.items():
        console.print(_results_table(f"📤 Post {post_id}", results))


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------


@app.command()
def check(
    network: list[str] = typer.Option(..., "--network", "-n", help="Target network (repeatable)."),
    media: Optional[list[str]] = typer.Option(
        None, "--media", "-m", help="Media kind or MIME type, in order (repeatable)."
    ),
) -> None:
    """Show the combined media constraints and test a media sequence against them."""
    networks = _parse_networks(network)
    constraints = evaluate_constraints(networks)

    rprint(
        f"[bold]Networks:[/bold] {', '.join(n.value for n in networks)}\n"
        f"  max images : {constraints.max_images}\n"
        f"  max videos : {constraints.max_videos}\n"
        f"  mix allowed: {'yes' if constraints.allow_mix else 'no'}\n"
        f"  min media  : {constraints.min_media}"
    )

    accepted: list[str] = []
    for item in media or []:
        decision = can_add_media(item, accepted, constraints)
        if decision:
            accepted.append(item)
            rprint(f"  [green]✓[/green] {item}")
        else:
            rprint(f"  [red]✗[/red] {item}: {decision.reason}")

    final = check_media_set(accepted, constraints, require_minimum=True)
    if final:
        rprint("[green]✓ Media set is publishable.[/green]")
    else:
        rprint(f"[yellow]⚠  {final.reason}[/yellow]")
        raise typer.Exit(1)
