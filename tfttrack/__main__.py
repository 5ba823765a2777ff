from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import List, Optional

import typer
from rich import print as rprint
from rich.console import Console

from .config import (
    config_path,
    configure_logging,
    db_path,
    ensure_paths,
    get_api_key,
    get_config,
    open_config_in_editor,
    set_api_key,
)
from .dashboards import render_leaderboard, render_match, render_players, render_previews, render_sync_result
from .errors import InvalidPayload
from .tracker import Tracker


app = typer.Typer(add_completion=False, no_args_is_help=True, help="TFT player tracker")
console = Console()


def _tracker() -> Tracker:
    return Tracker.from_config(get_config())


@app.callback()
def main_callback() -> None:
    ensure_paths()
    configure_logging(get_config())


@app.command()
def auth(api_key: Optional[str] = typer.Option(None, help="Riot API key (stored in the OS keyring)")):
    """Store the Riot API key, or report where the current one comes from."""
    if api_key:
        set_api_key(api_key)
        rprint("[green]Saved API key to keyring.[/green]")
        return
    if get_api_key():
        rprint("[green]API key present.[/green]")
    else:
        rprint("[yellow]No API key found. Pass --api-key or set RIOT_API_KEY.[/yellow]")
        raise typer.Exit(code=1)


@app.command()
def add(
    riot_id: str = typer.Argument(..., help="Riot ID as GameName#TAG"),
    region: Optional[str] = typer.Option(None, help="Platform region, e.g. EUW1"),
    image: Optional[str] = typer.Option(None, help="Profile image URL"),
):
    t = _tracker()
    try:
        row, warning = asyncio.run(t.players.create_tracked_player(riot_id, region, image))
    except InvalidPayload as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    rprint(f"[green]Tracking[/green] {row['riot_id']} as [bold]{row['slug']}[/bold]")
    if warning:
        rprint(f"[yellow]{warning}[/yellow]")


@app.command()
def players():
    t = _tracker()
    render_players(asyncio.run(t.players.list_tracked_players()), console)


@app.command()
def sync(
    player: Optional[str] = typer.Argument(None, help="Player id, slug or Riot ID; omit for a batch"),
    force: bool = typer.Option(True, help="Ignore freshness windows"),
    limit: int = typer.Option(10, help="Batch size when no player is given"),
):
    t = _tracker()
    if player is None:
        render_sync_result("Batch sync", asyncio.run(t.sync.sync_players_batch(limit)), console)
        return
    row = t.store.get_tracked_player(player) or asyncio.run(t.players.find_player(player))
    if not row:
        rprint("[red]Tracked player not found.[/red]")
        raise typer.Exit(code=1)
    render_sync_result(row["riot_id"], asyncio.run(t.sync.sync_tracked_player_by_id(row["id"], force=force)), console)


@app.command("sync-all")
def sync_all(limit: int = typer.Option(10, help="Players per run, stalest first")):
    t = _tracker()
    result = asyncio.run(t.sync.sync_all(limit))
    if not result["ok"]:
        rprint(f"[yellow]Job locked until {result['lockedUntil']}[/yellow]")
        raise typer.Exit(code=2)
    render_sync_result("sync-all", result, console)


@app.command("sync-leaderboard")
def sync_leaderboard(concurrency: int = typer.Option(5, help="Parallel workers (max 5)")):
    t = _tracker()
    render_sync_result("Leaderboard sync", asyncio.run(t.sync.sync_leaderboard(None, concurrency)), console)


@app.command()
def match(match_id: str):
    t = _tracker()
    try:
        result = asyncio.run(t.matches.get_or_fetch_match(match_id))
    except InvalidPayload as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    if result is None:
        rprint("[red]Riot API unavailable.[/red]")
        raise typer.Exit(code=1)
    render_match(result, console)


@app.command()
def previews(
    puuid: str = typer.Argument(...),
    match_ids: List[str] = typer.Argument(..., help="Up to 10 match IDs"),
    region: Optional[str] = typer.Option(None),
):
    t = _tracker()
    try:
        result = asyncio.run(t.matches.get_previews_for_player(puuid.strip().lower(), match_ids, region))
    except InvalidPayload as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    render_previews(result, console)


@app.command()
def leaderboard():
    t = _tracker()
    render_leaderboard(asyncio.run(t.stats.get_leaderboard()), console)


@app.command()
def config(action: str = typer.Argument("show", help="show|edit|path")):
    if action == "show":
        rprint(Path(config_path()).read_text())
    elif action == "path":
        rprint(config_path())
    elif action == "edit":
        if not open_config_in_editor():
            rprint("[yellow]Could not open editor. Edit the file manually:[/yellow]")
            rprint(config_path())
    else:
        rprint("[red]Unknown action. Use show|edit|path[/red]")


@app.command()
def serve(host: str = typer.Option("127.0.0.1"), port: int = typer.Option(8000)):
    import uvicorn

    uvicorn.run("backend.server.app:create_app", host=host, port=port, factory=True)


@app.command()
def doctor():
    cfg = get_config()
    ok = True
    rprint("[bold]Config[/bold]", config_path())
    if not Path(config_path()).exists():
        rprint("[red]Missing config file[/red]")
        ok = False
    if get_api_key(cfg):
        rprint("[green]API key present[/green]")
    else:
        rprint("[yellow]No API key found (set RIOT_API_KEY or run auth).[/yellow]")
    path = db_path(cfg)
    rprint("[bold]DB[/bold]", path)
    rprint("[green]DB present[/green]" if Path(path).exists() else "[yellow]DB will be created on first run[/yellow]")
    t = _tracker()
    index = asyncio.run(t.catalog.get())
    if len(index):
        rprint(f"[green]Asset catalog loaded[/green]: {len(index)} entries")
    else:
        rprint("[yellow]Asset catalog unavailable; placeholder icons will be used.[/yellow]")
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    app()
