from __future__ import annotations

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text


PLACEMENT_STYLES = {1: "bold yellow", 2: "green", 3: "green", 4: "green"}


def _placement(value: Optional[int]) -> Text:
    if value is None:
        return Text("-", style="dim")
    return Text(str(value), style=PLACEMENT_STYLES.get(value, "red"))


def _rank(ranked: Optional[Dict[str, Any]]) -> str:
    if not ranked:
        return "Unranked"
    return f"{ranked['tier'].title()} {ranked['rank']} {ranked['leaguePoints']} LP"


def render_leaderboard(rows: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not rows:
        console.print("[yellow]No active players. Add one with `tfttrack add`.[/yellow]")
        return
    table = Table(title="Leaderboard", box=box.ROUNDED)
    table.add_column("#", justify="right")
    table.add_column("Player")
    table.add_column("Rank")
    table.add_column("Avg (10)", justify="right")
    table.add_column("Live")
    for i, r in enumerate(rows, start=1):
        avg = r.get("avgPlacement")
        table.add_row(
            str(i),
            r["riot_id"],
            _rank(r.get("ranked")),
            f"{avg:.2f}" if isinstance(avg, (int, float)) else "-",
            "[green]in game[/green]" if r["live"]["inGame"] else "",
        )
    console.print(table)


def render_players(rows: List[Dict[str, Any]], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Tracked players", box=box.ROUNDED)
    table.add_column("ID", style="dim")
    table.add_column("Riot ID")
    table.add_column("Slug")
    table.add_column("Active")
    table.add_column("Last sync")
    for r in rows:
        table.add_row(
            r["id"],
            r["riot_id"],
            r["slug"],
            "yes" if r.get("is_active") else "no",
            r.get("riot_data_updated_at") or "never",
        )
    console.print(table)


def render_sync_result(title: str, result: Dict[str, Any], console: Optional[Console] = None) -> None:
    console = console or Console()
    if "results" not in result:
        # single-player result
        statuses = result.get("statuses") or {}
        lines = [Text(f"updated: {result.get('updated')}")]
        if result.get("warning"):
            lines.append(Text(f"warning: {result['warning']}", style="yellow"))
        for fact, status in statuses.items():
            lines.append(Text(f"{fact}: {status}", style="cyan"))
        console.print(Panel(Group(*lines), title=title, box=box.ROUNDED))
        return
    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Riot ID")
    table.add_column("Status")
    table.add_column("Warning", style="yellow")
    for r in result["results"]:
        table.add_row(r["riot_id"], r["status"], r.get("warning") or "")
    console.print(table)
    if result.get("rateLimited"):
        console.print("[red]Stopped early: upstream rate limit.[/red]")


def render_match(match: Dict[str, Any], console: Optional[Console] = None) -> None:
    console = console or Console()
    header = f"{match['matchId']}  queue={match.get('queueId')}  cached={match['cached']}"
    table = Table(title=header, box=box.ROUNDED)
    table.add_column("Place", justify="right")
    table.add_column("Player")
    table.add_column("Lvl", justify="right")
    table.add_column("Units")
    for p in match["participants"]:
        name = p.get("riotIdGameName") or p.get("puuid", "?")[:8]
        tag = p.get("riotIdTagline")
        units = ", ".join(
            f"{u['character_id'].split('_')[-1]}{'*' * (u.get('tier') or 0)}" for u in p.get("units") or []
        )
        table.add_row(_placement(p.get("placement")), f"{name}#{tag}" if tag else name, str(p.get("level") or "-"), units)
    console.print(table)


def render_previews(previews: Dict[str, Dict[str, Any]], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Previews", box=box.ROUNDED)
    table.add_column("Match")
    table.add_column("Place", justify="right")
    table.add_column("Top traits")
    table.add_column("Note", style="dim")
    for match_id, p in previews.items():
        traits = ", ".join(f"{t['name']} ({t['num_units']})" for t in p.get("topTraits") or [])
        table.add_row(match_id, _placement(p.get("placement")), traits, p.get("reason") or "")
    console.print(table)
