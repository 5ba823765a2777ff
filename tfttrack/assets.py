from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional

import httpx

from .caches import InflightLoads


log = logging.getLogger(__name__)

UNKNOWN_UNIT_ICON = "/icons/unknown-unit.png"
UNKNOWN_ITEM_ICON = "/icons/unknown-item.png"
UNKNOWN_TRAIT_ICON = "/icons/unknown-trait.png"
PLACEHOLDER_ICONS = frozenset({UNKNOWN_UNIT_ICON, UNKNOWN_ITEM_ICON, UNKNOWN_TRAIT_ICON})

RASTER_EXTENSIONS = (".png", ".webp")
TEXTURE_MARKERS = (".tex", ".dds")

# square/tile art reads better at board size than the splash-derived icon
CHAMPION_ICON_FIELDS = ("squareIconPath", "squareIcon", "tileIconPath", "tileIcon", "iconPath", "icon")
ITEM_ICON_FIELDS = ("squareIconPath", "iconPath", "icon")
TRAIT_ICON_FIELDS = ("iconPath", "icon")

_LOAD_KEY = "tft-catalog"


def sanitize_icon_url(url: Optional[str]) -> Optional[str]:
    """Final gate for every icon URL handed to a caller.

    Rejects anything still naming a texture format and accepts only
    raster URLs or the bundled placeholder icons.
    """
    if not url or not isinstance(url, str):
        return None
    if url in PLACEHOLDER_ICONS:
        return url
    lower = url.strip().lower()
    if any(marker in lower for marker in TEXTURE_MARKERS):
        return None
    if lower.endswith(RASTER_EXTENSIONS):
        return url
    return None


def is_placeholder(url: Optional[str]) -> bool:
    return url in PLACEHOLDER_ICONS


def to_asset_url(path_value: Optional[str], base_url: str) -> Optional[str]:
    if not path_value or not isinstance(path_value, str):
        return None
    normalized = path_value.strip().lower()
    if not normalized:
        return None
    normalized = normalized.lstrip("/")
    if normalized.startswith("lol-game-data/assets/"):
        normalized = normalized[len("lol-game-data/assets/"):]
    if not normalized.startswith("assets/"):
        return None
    for marker in TEXTURE_MARKERS:
        if normalized.endswith(marker):
            normalized = normalized[: -len(marker)] + ".png"
    return base_url.rstrip("/") + "/" + normalized


def _first_str(record: Dict[str, Any], fields: Iterable[str]) -> Optional[str]:
    for name in fields:
        value = record.get(name)
        if isinstance(value, str) and value.strip():
            return value
    return None


@dataclass
class AssetIndex:
    """Immutable snapshot of the catalog: lower-cased identifier -> asset URL."""

    champions: Dict[str, str] = field(default_factory=dict)
    items: Dict[str, str] = field(default_factory=dict)
    traits: Dict[str, str] = field(default_factory=dict)
    loaded_at: float = 0.0
    load_ms: float = 0.0

    @staticmethod
    def _resolve(table: Dict[str, str], key: Optional[str]) -> Optional[str]:
        ident = (key or "").strip()
        if not ident:
            return None
        return sanitize_icon_url(table.get(ident.lower()))

    def champion_icon(self, character_id: Optional[str]) -> Optional[str]:
        return self._resolve(self.champions, character_id)

    def item_icon(self, api_name: Optional[str]) -> Optional[str]:
        return self._resolve(self.items, api_name)

    def trait_icon(self, trait_name: Optional[str]) -> Optional[str]:
        return self._resolve(self.traits, trait_name)

    def __len__(self) -> int:
        return len(self.champions) + len(self.items) + len(self.traits)


def build_index(document: Any, base_url: str) -> AssetIndex:
    """Build lookups from a CommunityDragon-style TFT document.

    Accepts ``{"items": [...], "setData": [{"champions", "traits"}]}`` (or a
    ``"sets"`` mapping of the same), plus bare champion/item lists.
    """
    index = AssetIndex()

    def add(table: Dict[str, str], keys: Iterable[Optional[str]], path: Optional[str]) -> None:
        url = to_asset_url(path, base_url)
        if not url:
            return
        for key in keys:
            if isinstance(key, str) and key.strip():
                table.setdefault(key.strip().lower(), url)

    def add_champions(entries: Any) -> None:
        for rec in entries if isinstance(entries, list) else []:
            if isinstance(rec, dict):
                add(index.champions, (rec.get("apiName"), rec.get("characterName")), _first_str(rec, CHAMPION_ICON_FIELDS))

    def add_traits(entries: Any) -> None:
        for rec in entries if isinstance(entries, list) else []:
            if isinstance(rec, dict):
                add(index.traits, (rec.get("apiName"), rec.get("name")), _first_str(rec, TRAIT_ICON_FIELDS))

    def add_items(entries: Any) -> None:
        for rec in entries if isinstance(entries, list) else []:
            if isinstance(rec, dict):
                add(index.items, (rec.get("apiName"),), _first_str(rec, ITEM_ICON_FIELDS))

    if isinstance(document, list):
        # bare tftchampions.json / tftitems.json style arrays
        if any(isinstance(r, dict) and ("characterName" in r or "squareIconPath" in r) for r in document):
            add_champions(document)
        else:
            add_items(document)
        return index
    if not isinstance(document, dict):
        return index

    set_blocks: list = []
    if isinstance(document.get("setData"), list):
        set_blocks.extend(document["setData"])
    if isinstance(document.get("sets"), dict):
        set_blocks.extend(document["sets"].values())
    for block in set_blocks:
        if isinstance(block, dict):
            add_champions(block.get("champions"))
            add_traits(block.get("traits"))
    add_champions(document.get("champions"))
    add_traits(document.get("traits"))
    add_items(document.get("items"))
    return index


class AssetCatalog:
    """Lazily loaded, TTL-bound icon resolver.

    Cold-cache callers share one in-flight load. A load that yields nothing
    is returned to its callers but not kept, so the next call retries.
    """

    def __init__(
        self,
        catalog_url: Optional[str],
        asset_base_url: str,
        catalog_path: Optional[str] = None,
        ttl_s: float = 6 * 60 * 60,
        timeout_s: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.catalog_url = catalog_url or None
        self.catalog_path = catalog_path or None
        self.asset_base_url = asset_base_url
        self.ttl_s = float(ttl_s)
        self.timeout_s = float(timeout_s)
        self.transport = transport
        self._clock = clock
        self._index: Optional[AssetIndex] = None
        self._inflight = InflightLoads()
        self.loads = 0

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], **kwargs: Any) -> "AssetCatalog":
        a = cfg["assets"]
        return cls(
            catalog_url=a.get("catalog_url"),
            asset_base_url=a.get("asset_base_url"),
            catalog_path=a.get("catalog_path") or None,
            ttl_s=float(a.get("ttl_s", 6 * 60 * 60)),
            timeout_s=float(a.get("timeout_s", 5)),
            **kwargs,
        )

    def info(self) -> Optional[Dict[str, float]]:
        if self._index is None:
            return None
        return {"loaded_at": self._index.loaded_at, "load_ms": self._index.load_ms, "entries": len(self._index)}

    def invalidate(self) -> None:
        self._index = None

    def _fresh(self) -> Optional[AssetIndex]:
        idx = self._index
        if idx is not None and self._clock() - idx.loaded_at < self.ttl_s:
            return idx
        return None

    async def get(self) -> AssetIndex:
        idx = self._fresh()
        if idx is not None:
            return idx
        return await self._inflight.run(_LOAD_KEY, self._load)

    async def _read_document(self) -> Any:
        if self.catalog_path and Path(self.catalog_path).exists():
            try:
                text = await asyncio.to_thread(Path(self.catalog_path).read_text, encoding="utf-8")
                return json.loads(text)
            except (OSError, ValueError) as e:
                log.warning("asset catalog file unreadable path=%s err=%s", self.catalog_path, e)
                return None
        if not self.catalog_url:
            return None
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self.transport) as h:
                r = await h.get(self.catalog_url)
                r.raise_for_status()
                return r.json()
        except (httpx.HTTPError, ValueError) as e:
            log.warning("asset catalog fetch failed url=%s err=%s", self.catalog_url, e)
            return None

    async def _load(self) -> AssetIndex:
        started = time.perf_counter()
        self.loads += 1
        document = await self._read_document()
        idx = build_index(document, self.asset_base_url)
        idx.loaded_at = self._clock()
        idx.load_ms = (time.perf_counter() - started) * 1000
        if len(idx):
            self._index = idx
            log.debug("asset catalog loaded entries=%d ms=%.1f", len(idx), idx.load_ms)
        return idx

    async def resolve_champion_icon(self, character_id: Optional[str]) -> Optional[str]:
        if not (character_id or "").strip():
            return None
        return (await self.get()).champion_icon(character_id)

    async def resolve_item_icon(self, api_name: Optional[str]) -> Optional[str]:
        if not (api_name or "").strip():
            return None
        return (await self.get()).item_icon(api_name)

    async def resolve_trait_icon(self, trait_name: Optional[str]) -> Optional[str]:
        if not (trait_name or "").strip():
            return None
        return (await self.get()).trait_icon(trait_name)
