#!/usr/bin/env python3
"""
CLI de manutenção do catálogo local e do espaço de embeddings.

Uso:
    python -m helpers.manage_catalog sync [--force]
    python -m helpers.manage_catalog embed [--limit N]
    python -m helpers.manage_catalog backfill
    python -m helpers.manage_catalog status
    python -m helpers.manage_catalog galaxy --output galaxy.json
    python -m helpers.manage_catalog clear --confirm [--embeddings] [--bandit] [--history]
"""

import json
import logging
import sys
import threading
from itertools import islice
from typing import Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from oracle.catalog.store import CatalogSyncProgress
from oracle.compute.pca import project_embeddings, select_strategy
from oracle.config import OracleConfig
from oracle.context import AppContext

app = typer.Typer(help="Manage the local Steam catalog, embeddings and ANN index")
console = Console()


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _flatten(ctx: AppContext):
    for batch in ctx.catalog.iter_entries():
        yield from batch


@app.command()
def sync(
    force: bool = typer.Option(False, "--force", "-f", help="Sync even if the catalog is fresh"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
):
    """Mirror the Steam catalog into the local store."""
    setup_logging(verbose)
    cfg = OracleConfig()
    if not cfg.STEAM_API_KEY:
        console.print("[yellow]STEAM_API_KEY not set; the app list request may be rejected[/yellow]")

    with AppContext.from_config(cfg) as ctx:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console,
        ) as progress:
            task = progress.add_task("Syncing catalog...", total=None)

            def _on_progress(p: CatalogSyncProgress) -> None:
                progress.update(
                    task,
                    description=f"{p.stage} ({p.games_stored} games)",
                    completed=p.batches_completed,
                    total=p.batches_total or None,
                )

            unsubscribe = ctx.catalog.subscribe(_on_progress)
            try:
                result = ctx.catalog.sync(force=force)
            except KeyboardInterrupt:
                ctx.catalog.cancel_sync()
                console.print("[yellow]Sync cancelled; stored batches are kept[/yellow]")
                sys.exit(130)
            finally:
                unsubscribe()

        if result.stage == "error":
            console.print(f"[red]Sync failed: {result.error}[/red]")
            sys.exit(1)
        console.print(f"[green]Catalog holds {ctx.catalog.count()} games[/green]")


@app.command()
def embed(
    limit: Optional[int] = typer.Option(None, "--limit", help="Embed at most N catalog entries"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
):
    """Generate catalog-tier embeddings for the local catalog."""
    setup_logging(verbose)
    with AppContext.from_config(OracleConfig(), with_steam=False) as ctx:
        if not ctx.embeddings.is_available():
            console.print("[red]Embedding backend unavailable[/red]")
            sys.exit(1)

        entries = _flatten(ctx)
        if limit:
            entries = islice(entries, limit)

        cancel = threading.Event()
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=console,
        ) as progress:
            task = progress.add_task("Embedding catalog...", total=None)
            try:
                generated = ctx.embeddings.generate_catalog_embeddings(
                    entries,
                    cancel_event=cancel,
                    on_progress=lambda done, total: progress.update(task, completed=done, total=total),
                )
            except KeyboardInterrupt:
                cancel.set()
                console.print("[yellow]Embedding cancelled; persisted batches are kept[/yellow]")
                sys.exit(130)
        console.print(f"[green]{generated} catalog embeddings generated[/green]")


@app.command()
def backfill(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
):
    """Rebuild the ANN index from every persisted embedding."""
    setup_logging(verbose)
    with AppContext.from_config(OracleConfig(), with_steam=False) as ctx:
        ctx.ann_index.clear()
        sent = ctx.embeddings.backfill_ann_index()
        if sent == 0:
            console.print("[yellow]No persisted embeddings to index[/yellow]")
        else:
            console.print(f"[green]ANN index rebuilt with {sent} vectors[/green]")


@app.command()
def status(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
):
    """Show catalog, embedding, index and bandit status."""
    setup_logging(verbose)
    with AppContext.from_config(OracleConfig(), with_steam=False) as ctx:
        sync_state = ctx.catalog.get_sync_state()
        emb = ctx.embeddings.stats()

        table = Table(title="Oracle Status")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        table.add_column("Details", style="yellow")

        table.add_row("Catalog Games", str(ctx.catalog.count()), "fresh" if ctx.catalog.is_fresh() else "stale")
        if sync_state is not None:
            table.add_row(
                "Last Sync",
                str(sync_state.last_sync_timestamp or "Never"),
                "in progress" if sync_state.in_progress else "complete",
            )
        for tier in ("library", "catalog"):
            t = emb.get(tier, {})
            table.add_row(
                f"{tier.title()} Embeddings",
                str(t.get("valid", 0)),
                f"{t.get('expired', 0)} expired / {t.get('stored', 0)} stored",
            )
        index_status = ctx.ann_index.status()
        table.add_row("ANN Vectors", str(index_status.get("vectorCount", 0)), f"{index_status.get('dims')} dims")
        table.add_row("Dismissed Games", str(ctx.history.dismissed_count()), "")
        table.add_row("Conversion Rate", f"{ctx.history.conversion_rate():.1%}", "")
        console.print(table)

        arms = ctx.bandit.get_stats()
        if arms:
            bandit_table = Table(title="Shelf Bandit")
            bandit_table.add_column("Shelf", style="cyan")
            bandit_table.add_column("Alpha")
            bandit_table.add_column("Beta")
            bandit_table.add_column("Impressions")
            bandit_table.add_column("CTR", style="green")
            for key, arm in sorted(arms.items()):
                bandit_table.add_row(
                    key, f"{arm['alpha']:.0f}", f"{arm['beta']:.0f}", str(arm["impressions"]), f"{arm['ctr']:.1%}"
                )
            console.print(bandit_table)


@app.command()
def galaxy(
    output: str = typer.Option("galaxy.json", "--output", "-o", help="Where to write the 3D positions"),
    spread: float = typer.Option(100.0, "--spread", help="Half-width of each axis"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
):
    """Project every embedding to 3D for the galaxy map."""
    setup_logging(verbose)
    with AppContext.from_config(OracleConfig(), with_steam=False) as ctx:
        ids, vectors = ctx.embeddings.load_all_vectors()
        if not ids:
            console.print("[yellow]No embeddings to project[/yellow]")
            sys.exit(1)

        strategy = select_strategy()
        console.print(f"[bold blue]Projecting {len(ids)} vectors with {strategy.name}[/bold blue]")
        try:
            positions = project_embeddings(vectors, spread=spread, strategy=strategy)
        except ValueError as e:
            console.print(f"[red]Projection failed: {e}[/red]")
            sys.exit(1)

        points = [{"id": gid, "x": float(p[0]), "y": float(p[1]), "z": float(p[2])} for gid, p in zip(ids, positions)]
        with open(output, "w", encoding="utf-8") as f:
            json.dump(points, f)
        console.print(f"[green]{len(points)} positions written to {output}[/green]")


@app.command()
def clear(
    confirm: bool = typer.Option(False, "--confirm", help="Confirm deletion"),
    embeddings: bool = typer.Option(False, "--embeddings", help="Also clear embeddings and the ANN index"),
    bandit: bool = typer.Option(False, "--bandit", help="Also reset the shelf bandit"),
    history: bool = typer.Option(False, "--history", help="Also clear dismissals and conversions"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
):
    """Delete the local catalog (and optionally other collections)."""
    setup_logging(verbose)
    if not confirm:
        console.print("[red]This deletes local data. Re-run with --confirm.[/red]")
        sys.exit(1)

    with AppContext.from_config(OracleConfig(), with_steam=False) as ctx:
        ctx.catalog.clear()
        ctx.browse_cache.clear()
        ctx.orchestrator.refresh()
        cleared = ["catalog", "browse cache", "result cache"]
        if embeddings:
            ctx.embeddings.clear()
            ctx.ann_index.clear()
            cleared.append("embeddings")
        if bandit:
            ctx.bandit.reset()
            cleared.append("bandit")
        if history:
            ctx.history.reset()
            cleared.append("history")
        console.print(f"[green]Cleared: {', '.join(cleared)}[/green]")


if __name__ == "__main__":
    app()
