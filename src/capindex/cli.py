"""CLI entry point for the capability-relationship index."""

import asyncio
import logging
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config import (
    CONFIG_DIR_NAME,
    CONFIG_FILENAMES,
    IndexConfig,
    find_config_file,
    load_config,
    portfolio_path,
    save_config,
)
from .errors import ConfigValidationError

console = Console()


@click.group()
@click.option("--portfolio", "-p", "portfolio", default=None, envvar="CAPINDEX_PORTFOLIO",
              help="Portfolio root (default ~/.capindex/portfolio)")
@click.option("--config", "-c", "config_path", default=None, help="Path to index config file")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx, portfolio, config_path, verbose):
    """Capability index - discover relationships between portfolio elements."""
    ctx.ensure_object(dict)
    ctx.obj["portfolio"] = portfolio_path(portfolio)
    ctx.obj["config_path"] = config_path
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _get_config(ctx) -> IndexConfig:
    try:
        return load_config(ctx.obj.get("config_path"), portfolio=ctx.obj["portfolio"])
    except ConfigValidationError as e:
        console.print(f"[red]{escape(str(e))}[/]")
        ctx.exit(1)


def _get_manager(ctx, **kwargs):
    from .index.manager import IndexManager

    return IndexManager.for_portfolio(ctx.obj["portfolio"], _get_config(ctx), **kwargs)


@cli.command()
@click.pass_context
def init(ctx):
    """Create the portfolio folders and a default index config."""
    from .storage.filesystem import FilesystemElementStore

    root: Path = ctx.obj["portfolio"]
    console.print(f"[bold green]Initializing portfolio at {root}[/]")

    created = FilesystemElementStore(root).init_layout()
    for folder in created:
        console.print(f"  Created folder: {folder}")

    config_file = root / CONFIG_DIR_NAME / CONFIG_FILENAMES[0]
    if not config_file.exists():
        save_config(IndexConfig.defaults(), config_file)
        console.print(f"  Created config: {config_file}")

    console.print("[bold green]✓ Portfolio initialized![/]")
    console.print("  Add elements, then run: capindex rebuild")


@cli.command()
@click.argument("element_id")
@click.option("--limit", "-n", "limit", default=10, help="Number of relationships to show")
@click.option("--depth", "-d", default=1, help="Hops to traverse (1 = direct relationships)")
@click.pass_context
def related(ctx, element_id, limit, depth):
    """Show elements related to ELEMENT_ID (type:name)."""
    manager = _get_manager(ctx)

    if depth > 1:
        from .lazy import LazyProvider
        from .query.graph import RelationshipGraph

        async def _traverse():
            graph = RelationshipGraph(LazyProvider.of(manager, "index manager"))
            try:
                return await graph.find_related(element_id, depth=depth)
            finally:
                await manager.flush()

        result = asyncio.run(_traverse())
        if not result["total"]:
            console.print(f"[yellow]No relationships found for {element_id}.[/]")
            return
        for level, ids in result["related"].items():
            console.print(f"[bold]Depth {level}[/] ({len(ids)})")
            for other in ids:
                console.print(f"  → {other}")
        return

    async def _query():
        try:
            return await manager.related(element_id, limit=limit)
        finally:
            await manager.flush()

    result = asyncio.run(_query())
    if result.notice:
        console.print(f"[yellow]{result.notice}[/]")
    if not result.edges:
        console.print(f"[yellow]No relationships found for {element_id}.[/]")
        return

    table = Table(title=f"Related to {element_id}")
    table.add_column("#", style="dim", width=3)
    table.add_column("Element", style="cyan")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Jaccard", justify="right")
    table.add_column("Band")

    for i, edge in enumerate(result.edges, 1):
        table.add_row(str(i), edge.other(element_id), f"{edge.score:.3f}", f"{edge.jaccard:.3f}", edge.band.value)

    console.print(table)


@cli.command()
@click.argument("from_id")
@click.argument("to_id")
@click.option("--max-depth", default=5, help="Maximum hops")
@click.pass_context
def path(ctx, from_id, to_id, max_depth):
    """Find the shortest relationship path between two elements."""
    from .lazy import LazyProvider
    from .query.graph import RelationshipGraph

    manager = _get_manager(ctx)

    async def _find():
        graph = RelationshipGraph(LazyProvider.of(manager, "index manager"))
        try:
            return await graph.find_path(from_id, to_id, max_depth=max_depth)
        finally:
            await manager.flush()

    found = asyncio.run(_find())
    if found is None:
        console.print(f"[yellow]No path from {from_id} to {to_id} within {max_depth} hops.[/]")
        return
    console.print(" → ".join(found.path))
    console.print(f"[dim]strength {found.strength:.3f}[/]")


@cli.command()
@click.pass_context
def rebuild(ctx):
    """Rebuild the relationship index now and persist it."""
    from .index.stats import snapshot_stats

    manager = _get_manager(ctx)

    async def _rebuild():
        snapshot = await manager.rebuild()
        await manager.flush()
        return snapshot

    console.print("[blue]Rebuilding relationship index...[/]")
    snapshot = asyncio.run(_rebuild())
    s = snapshot_stats(snapshot)
    console.print(f"[green]✓ Indexed {s['elements']} element(s), {s['edges']} relationship(s)[/]")
    console.print(f"  Strategy: {s['strategy']} ({s['comparisons']} comparisons)")
    if s["skipped"]:
        console.print(f"  [yellow]Skipped unreadable: {', '.join(s['skipped'])}[/]")
    if manager.last_persist_ok is False:
        console.print("[yellow]Index could not be saved to disk; see log for details.[/]")


@cli.command()
@click.pass_context
def stats(ctx):
    """Show relationship index statistics."""
    from .index.stats import snapshot_stats

    manager = _get_manager(ctx)

    async def _load():
        try:
            return await manager.snapshot()
        finally:
            await manager.flush()

    s = snapshot_stats(asyncio.run(_load()))

    console.print("\n[bold]📊 Relationship Index[/]")
    console.print(f"  Elements: {s['elements']}")
    console.print(f"  Relationships: {s['edges']}")
    console.print(f"  Strategy: {s['strategy']} ({s['comparisons']} comparisons)")
    console.print(f"  Age: {s['age_seconds']:.0f}s (config {s['config_version']})")
    console.print("\n  [bold]Bands:[/]")
    for band, count in s["bands"].items():
        console.print(f"    {band}: {count}")
    if s["edges_by_type"]:
        console.print("\n  [bold]Edge endpoints by type:[/]")
        for element_type, count in s["edges_by_type"].items():
            console.print(f"    {element_type}: {count}")


@cli.group()
def config():
    """Inspect the index configuration."""


@config.command("show")
@click.pass_context
def config_show(ctx):
    """Print the effective configuration."""
    cfg = _get_config(ctx)
    table = Table(title=f"Index configuration ({cfg.version})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", justify="right")
    for section, values in cfg.to_dict().items():
        for key, value in values.items():
            table.add_row(f"{section}.{key}", str(value))
    console.print(table)


@config.command("validate")
@click.argument("file", required=False, type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def config_validate(ctx, file):
    """Validate FILE (or the portfolio config) and list every problem."""
    target = file or ctx.obj.get("config_path") or find_config_file(ctx.obj["portfolio"])
    if target is None or not Path(target).exists():
        console.print("[yellow]No config file found; defaults are in effect.[/]")
        return

    try:
        cfg = load_config(target)
    except ConfigValidationError as e:
        console.print(f"[red]✗ {target} has {len(e.violations)} problem(s):[/]")
        for v in e.violations:
            console.print(f"  • {v.field}: {escape(v.reason)}")
        ctx.exit(1)

    console.print(f"[green]✓ {target} is valid (version {cfg.version})[/]")


@cli.command()
@click.option("--debounce", default=1.0, help="Seconds to wait after last change before rebuilding")
@click.pass_context
def watch(ctx, debounce):
    """Watch the portfolio and rebuild the index when elements change."""
    from .watcher import PortfolioWatcher

    manager = _get_manager(ctx)

    async def _watch():
        loop = asyncio.get_running_loop()
        changes: asyncio.Queue = asyncio.Queue()
        watcher = PortfolioWatcher(
            ctx.obj["portfolio"],
            lambda paths: loop.call_soon_threadsafe(changes.put_nowait, paths),
            debounce=debounce,
        )
        watcher.start()
        console.print(f"[bold]👀 Watching {watcher.root} for element changes... (Ctrl+C to stop)[/]")
        try:
            await manager.snapshot()
            while True:
                paths = await changes.get()
                console.print(f"[blue]{len(paths)} element file(s) changed, rebuilding...[/]")
                manager.store.notify_changed()
                snapshot = await manager.snapshot()
                console.print(f"  [green]✓ {snapshot.element_count} element(s), {len(snapshot.edges)} relationship(s)[/]")
        finally:
            watcher.stop()
            await manager.flush()

    try:
        asyncio.run(_watch())
    except KeyboardInterrupt:
        console.print("\n[green]✓ Watcher stopped.[/]")


if __name__ == "__main__":
    cli()
