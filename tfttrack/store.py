from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from dateutil import parser as dateparser

from .config import db_path


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def iso(dt: datetime) -> str:
    # fixed width so ISO strings compare lexicographically in SQL
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    return iso(utcnow())


def parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        dt = dateparser.isoparse(value)
    except (ValueError, OverflowError):
        return None
    if not dt.tzinfo:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def ms_to_iso(ms: Optional[int]) -> Optional[str]:
    if not isinstance(ms, (int, float)) or isinstance(ms, bool) or ms <= 0:
        return None
    return iso(datetime.fromtimestamp(ms / 1000, tz=timezone.utc))


def iso_to_ms(value: Optional[str]) -> Optional[int]:
    dt = parse_ts(value)
    return int(dt.timestamp() * 1000) if dt else None


def is_fresh(value: Optional[str], ttl_s: float, now: Optional[datetime] = None) -> bool:
    dt = parse_ts(value)
    if dt is None:
        return False
    return ((now or utcnow()) - dt).total_seconds() < ttl_s


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS meta (
        key TEXT PRIMARY KEY,
        value TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tracked_players (
        id TEXT PRIMARY KEY,
        riot_id TEXT NOT NULL,
        region TEXT NOT NULL,
        slug TEXT NOT NULL UNIQUE,
        puuid TEXT UNIQUE,
        summoner_id TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        ranked_tier TEXT,
        ranked_rank TEXT,
        ranked_lp INTEGER,
        ranked_queue TEXT,
        ranked_updated_at TEXT,
        avg_placement_10 REAL,
        avg_placement_updated_at TEXT,
        live_in_game INTEGER,
        live_game_start_time INTEGER,
        live_updated_at TEXT,
        riot_data_updated_at TEXT,
        profile_image_url TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_tracked_players_active ON tracked_players(is_active, riot_data_updated_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS tft_match_cache (
        match_id TEXT PRIMARY KEY,
        region TEXT,
        game_datetime TEXT,
        queue_id INTEGER,
        data TEXT,
        player_previews TEXT,
        fetched_at TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_match_cache_datetime ON tft_match_cache(game_datetime)
    """,
    """
    CREATE TABLE IF NOT EXISTS job_locks (
        name TEXT PRIMARY KEY,
        locked_until TEXT NOT NULL
    )
    """,
]

# Columns an admin or sync may write directly.
PLAYER_COLUMNS = (
    "riot_id",
    "region",
    "slug",
    "puuid",
    "summoner_id",
    "is_active",
    "ranked_tier",
    "ranked_rank",
    "ranked_lp",
    "ranked_queue",
    "ranked_updated_at",
    "avg_placement_10",
    "avg_placement_updated_at",
    "live_in_game",
    "live_game_start_time",
    "live_updated_at",
    "riot_data_updated_at",
    "profile_image_url",
)

_BOOL_COLUMNS = ("is_active", "live_in_game")


def _player_row(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    out = dict(row)
    for k in _BOOL_COLUMNS:
        if out.get(k) is not None:
            out[k] = bool(out[k])
    return out


def _loads(raw: Optional[str]) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


def _match_row(row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    out = dict(row)
    if "data" in out:
        out["data"] = _loads(out["data"])
    if "player_previews" in out:
        out["player_previews"] = _loads(out["player_previews"])
    return out


def _like_escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


@dataclass
class Store:
    db_path: str = ""

    def __post_init__(self):
        if not self.db_path:
            self.db_path = db_path()
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as con:
            cur = con.cursor()
            for stmt in SCHEMA:
                cur.execute(stmt)
            cur.execute("INSERT OR IGNORE INTO meta(key,value) VALUES('schema_version','1')")
            con.commit()

    @contextmanager
    def connect(self):
        con = sqlite3.connect(self.db_path, timeout=10)
        con.row_factory = sqlite3.Row
        try:
            con.execute("PRAGMA journal_mode=WAL")
            con.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.DatabaseError:
            pass
        try:
            yield con
        finally:
            con.close()

    # ---- tracked players ----
    def insert_tracked_player(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        row = {k: fields.get(k) for k in PLAYER_COLUMNS if k in fields}
        row.setdefault("is_active", True)
        row["id"] = fields.get("id") or uuid.uuid4().hex
        row["created_at"] = fields.get("created_at") or now_iso()
        keys = list(row.keys())
        with self.connect() as con:
            con.execute(
                f"INSERT INTO tracked_players({','.join(keys)}) VALUES({','.join(['?'] * len(keys))})",
                [row[k] for k in keys],
            )
            con.commit()
        return self.get_tracked_player(row["id"])  # type: ignore[return-value]

    def get_tracked_player(self, player_id: str) -> Optional[Dict[str, Any]]:
        with self.connect() as con:
            row = con.execute("SELECT * FROM tracked_players WHERE id=?", (player_id,)).fetchone()
        return _player_row(row)

    def find_player_by_slug(self, slug: str) -> Optional[Dict[str, Any]]:
        with self.connect() as con:
            row = con.execute("SELECT * FROM tracked_players WHERE lower(slug)=lower(?)", (slug,)).fetchone()
        return _player_row(row)

    def find_player_by_riot_id(self, riot_id: str) -> Optional[Dict[str, Any]]:
        with self.connect() as con:
            row = con.execute("SELECT * FROM tracked_players WHERE lower(riot_id)=lower(?)", (riot_id,)).fetchone()
        return _player_row(row)

    def find_player_by_game_name(self, game_name: str) -> Optional[Dict[str, Any]]:
        with self.connect() as con:
            row = con.execute(
                "SELECT * FROM tracked_players WHERE lower(riot_id) LIKE lower(?) ESCAPE '\\' ORDER BY created_at LIMIT 1",
                (_like_escape(game_name) + "#%",),
            ).fetchone()
        return _player_row(row)

    def list_tracked_players(self) -> List[Dict[str, Any]]:
        with self.connect() as con:
            rows = con.execute("SELECT * FROM tracked_players ORDER BY created_at DESC").fetchall()
        return [_player_row(r) for r in rows]  # type: ignore[misc]

    def list_active_players(self, limit: Optional[int] = None, stalest_first: bool = False) -> List[Dict[str, Any]]:
        q = "SELECT * FROM tracked_players WHERE is_active=1"
        # NULL sorts first under ASC, so never-synced players lead
        q += " ORDER BY riot_data_updated_at ASC" if stalest_first else " ORDER BY created_at DESC"
        params: list[Any] = []
        if limit is not None:
            q += " LIMIT ?"
            params.append(int(limit))
        with self.connect() as con:
            rows = con.execute(q, params).fetchall()
        return [_player_row(r) for r in rows]  # type: ignore[misc]

    def update_tracked_player(self, player_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        updates = {k: v for k, v in fields.items() if k in PLAYER_COLUMNS}
        if not updates:
            raise ValueError("Missing fields.")
        assignments = ", ".join(f"{k}=?" for k in updates)
        with self.connect() as con:
            con.execute(
                f"UPDATE tracked_players SET {assignments} WHERE id=?",
                [*updates.values(), player_id],
            )
            con.commit()
        return self.get_tracked_player(player_id)

    def set_player_puuid(self, player_id: str, puuid: str) -> bool:
        """Persist the resolved identifier; never replaces a different one."""
        with self.connect() as con:
            cur = con.execute(
                """
                UPDATE tracked_players SET puuid=?, riot_data_updated_at=?
                WHERE id=? AND (puuid IS NULL OR puuid=?)
                """,
                (puuid, now_iso(), player_id, puuid),
            )
            con.commit()
            return cur.rowcount > 0

    def delete_tracked_player(self, player_id: str) -> bool:
        with self.connect() as con:
            cur = con.execute("DELETE FROM tracked_players WHERE id=?", (player_id,))
            con.commit()
            return cur.rowcount > 0

    def search_players(self, query: str, limit: int = 8) -> List[Dict[str, Any]]:
        esc = _like_escape(query)
        cols = "riot_id, region, slug"
        with self.connect() as con:
            starts = con.execute(
                f"SELECT {cols} FROM tracked_players WHERE is_active=1 AND lower(riot_id) LIKE lower(?) ESCAPE '\\' "
                "ORDER BY riot_id ASC LIMIT ?",
                (esc + "%", limit),
            ).fetchall()
            contains: list = []
            remaining = max(0, limit - len(starts))
            if remaining:
                contains = con.execute(
                    f"SELECT {cols} FROM tracked_players WHERE is_active=1 AND lower(riot_id) LIKE lower(?) ESCAPE '\\' "
                    "ORDER BY riot_id ASC LIMIT ?",
                    ("%" + esc + "%", remaining + len(starts)),
                ).fetchall()
        seen: set[str] = set()
        out: List[Dict[str, Any]] = []
        for r in [*starts, *contains]:
            if r["slug"] in seen:
                continue
            seen.add(r["slug"])
            out.append(dict(r))
        return out[:limit]

    # ---- match cache ----
    def get_match_cache(self, match_id: str) -> Optional[Dict[str, Any]]:
        with self.connect() as con:
            row = con.execute("SELECT * FROM tft_match_cache WHERE match_id=?", (match_id,)).fetchone()
        return _match_row(row)

    def get_match_previews(self, match_ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        ids = list(match_ids)
        if not ids:
            return {}
        ph = ",".join(["?"] * len(ids))
        with self.connect() as con:
            rows = con.execute(
                f"SELECT match_id, queue_id, player_previews FROM tft_match_cache WHERE match_id IN ({ph})",
                ids,
            ).fetchall()
        return {r["match_id"]: _match_row(r) for r in rows}  # type: ignore[misc]

    def cached_match_ids(self, match_ids: Iterable[str]) -> set[str]:
        ids = list(match_ids)
        if not ids:
            return set()
        ph = ",".join(["?"] * len(ids))
        with self.connect() as con:
            rows = con.execute(f"SELECT match_id FROM tft_match_cache WHERE match_id IN ({ph})", ids).fetchall()
        return {r[0] for r in rows}

    def insert_match_cache(
        self,
        match_id: str,
        region: Optional[str],
        game_datetime: Optional[str],
        queue_id: Optional[int],
        data: Any,
        player_previews: Dict[str, Any],
    ) -> bool:
        """Insert once; returns False when the row already existed."""
        with self.connect() as con:
            cur = con.execute(
                """
                INSERT INTO tft_match_cache(match_id, region, game_datetime, queue_id, data, player_previews, fetched_at)
                VALUES(?,?,?,?,?,?,?)
                ON CONFLICT(match_id) DO NOTHING
                """,
                (match_id, region, game_datetime, queue_id, json.dumps(data), json.dumps(player_previews), now_iso()),
            )
            con.commit()
            return cur.rowcount > 0

    def merge_player_previews(self, match_id: str, previews: Dict[str, Any]) -> None:
        """Overlay ``previews`` onto the stored map; the raw payload is untouched."""
        with self.connect() as con:
            # write lock before the read so concurrent merges serialize
            con.execute("BEGIN IMMEDIATE")
            row = con.execute("SELECT player_previews FROM tft_match_cache WHERE match_id=?", (match_id,)).fetchone()
            if row is None:
                con.rollback()
                return
            current = _loads(row[0]) or {}
            current.update(previews)
            con.execute(
                "UPDATE tft_match_cache SET player_previews=? WHERE match_id=?",
                (json.dumps(current), match_id),
            )
            con.commit()

    def recent_cached_matches_for_puuid(self, puuid: str, count: int = 10) -> List[Dict[str, Any]]:
        with self.connect() as con:
            rows = con.execute(
                """
                SELECT match_id, game_datetime, queue_id, data, player_previews
                FROM tft_match_cache
                WHERE json_type(player_previews, '$."' || ? || '"') IS NOT NULL
                ORDER BY game_datetime DESC
                LIMIT ?
                """,
                (puuid, int(count)),
            ).fetchall()
        return [_match_row(r) for r in rows]  # type: ignore[misc]

    # ---- job locks ----
    def try_lock(self, name: str, locked_until: str, now: str) -> bool:
        with self.connect() as con:
            cur = con.execute(
                """
                INSERT INTO job_locks(name, locked_until) VALUES(?,?)
                ON CONFLICT(name) DO UPDATE SET locked_until=excluded.locked_until
                WHERE job_locks.locked_until <= ?
                """,
                (name, locked_until, now),
            )
            con.commit()
            return cur.rowcount > 0

    def get_lock(self, name: str) -> Optional[str]:
        with self.connect() as con:
            row = con.execute("SELECT locked_until FROM job_locks WHERE name=?", (name,)).fetchone()
        return row[0] if row else None

    def release_lock(self, name: str) -> None:
        with self.connect() as con:
            con.execute("UPDATE job_locks SET locked_until=? WHERE name=?", (iso(EPOCH), name))
            con.commit()

    def get_meta(self, key: str) -> Optional[str]:
        with self.connect() as con:
            row = con.execute("SELECT value FROM meta WHERE key=?", (key,)).fetchone()
            return row[0] if row else None
