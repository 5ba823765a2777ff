import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from tfttrack.assets import AssetCatalog
from tfttrack.config import merge_defaults
from tfttrack.riot import RiotClient
from tfttrack.store import Store
from tfttrack.tracker import Tracker


ASSET_BASE = "https://cdn.test/game/"

CATALOG = {
    "items": [
        {"apiName": "TFT_Item_BFSword", "squareIconPath": "ASSETS/Maps/TFT/Icons/Items/BFSword.TFT_Set13.tex"},
        {"apiName": "TFT_Item_GiantsBelt", "iconPath": "/lol-game-data/assets/ASSETS/Maps/TFT/Icons/Items/GiantsBelt.png"},
    ],
    "setData": [
        {
            "champions": [
                {"apiName": "TFT13_Jinx", "squareIconPath": "ASSETS/Characters/TFT13_Jinx/HUD/TFT13_Jinx_Square.TFT_Set13.tex"},
                {"apiName": "TFT13_Vi", "tileIconPath": "ASSETS/Characters/TFT13_Vi/HUD/TFT13_Vi.dds"},
            ],
            "traits": [
                {"apiName": "TFT13_Sniper", "name": "Sniper", "icon": "ASSETS/UX/TraitIcons/Trait_Icon_13_Sniper.tex"},
                {"apiName": "TFT13_Bruiser", "name": "Bruiser", "icon": "ASSETS/UX/TraitIcons/Trait_Icon_13_Bruiser.tex"},
            ],
        }
    ],
}


def unit(character_id: str, tier: int = 1, items: Optional[List[str]] = None) -> Dict[str, Any]:
    return {"character_id": character_id, "tier": tier, "itemNames": items or []}


def participant(puuid: str, placement: int, units=None, traits=None, name: str = "Player", tag: str = "EUW") -> Dict[str, Any]:
    return {
        "puuid": puuid,
        "placement": placement,
        "level": 8,
        "riotIdGameName": name,
        "riotIdTagline": tag,
        "units": units if units is not None else [unit("TFT13_Jinx", 2, ["TFT_Item_BFSword"])],
        "traits": traits if traits is not None else [
            {"name": "TFT13_Sniper", "num_units": 2, "style": 1, "tier_current": 1, "tier_total": 3},
        ],
    }


def match_payload(match_id: str, participants: List[Dict[str, Any]], queue_id: int = 1100, game_datetime: int = 1_700_000_000_000):
    return {
        "metadata": {"match_id": match_id},
        "info": {"game_datetime": game_datetime, "queue_id": queue_id, "participants": participants},
    }


class FakeRiot:
    """In-memory upstream served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.matches: Dict[str, Dict[str, Any]] = {}
        self.match_ids: Dict[str, List[str]] = {}
        self.league: Dict[str, List[Dict[str, Any]]] = {}
        self.league_by_summoner: Dict[str, List[Dict[str, Any]]] = {}
        self.live: Dict[str, Dict[str, Any]] = {}
        self.summoners: Dict[str, Dict[str, Any]] = {}
        self.calls: List[str] = []
        self.rate_limited: bool = False
        self.down: bool = False

    def add_account(self, riot_id: str, puuid: str) -> None:
        self.accounts[riot_id.lower()] = {"puuid": puuid, "gameName": riot_id.split("#")[0], "tagLine": riot_id.split("#")[1]}

    def add_match(self, match_id: str, participants: List[Dict[str, Any]], **kw: Any) -> Dict[str, Any]:
        payload = match_payload(match_id, participants, **kw)
        self.matches[match_id] = payload
        return payload

    def count(self, fragment: str) -> int:
        return sum(1 for c in self.calls if fragment in c)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append(path)
        if self.rate_limited:
            return httpx.Response(429, headers={"Retry-After": "1"})
        if self.down:
            return httpx.Response(503)
        parts = path.strip("/").split("/")
        if path.startswith("/riot/account/v1/accounts/by-riot-id/"):
            acct = self.accounts.get(f"{parts[-2]}#{parts[-1]}".lower())
            return httpx.Response(200, json=acct) if acct else httpx.Response(404)
        if path.startswith("/tft/match/v1/matches/by-puuid/"):
            count = int(request.url.params.get("count", "20"))
            return httpx.Response(200, json=self.match_ids.get(parts[-2], [])[:count])
        if path.startswith("/tft/match/v1/matches/"):
            m = self.matches.get(parts[-1])
            return httpx.Response(200, json=m) if m else httpx.Response(404)
        if path.startswith("/tft/league/v1/entries/by-summoner/"):
            entries = self.league_by_summoner.get(parts[-1])
            return httpx.Response(200, json=entries) if entries is not None else httpx.Response(404)
        if path.startswith("/tft/league/v1/by-puuid/"):
            entries = self.league.get(parts[-1])
            return httpx.Response(200, json=entries) if entries is not None else httpx.Response(404)
        if path.startswith("/tft/spectator/v5/active-games/by-puuid/"):
            g = self.live.get(parts[-1])
            return httpx.Response(200, json=g) if g else httpx.Response(404)
        if path.startswith("/tft/summoner/v1/summoners/by-puuid/"):
            s = self.summoners.get(parts[-1])
            return httpx.Response(200, json=s) if s else httpx.Response(404)
        return httpx.Response(404)


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def cfg(tmp_path):
    catalog_file = tmp_path / "tft.json"
    catalog_file.write_text(json.dumps(CATALOG), encoding="utf-8")
    c = merge_defaults({})
    c["db"]["path"] = str(tmp_path / "tfttrack.db")
    c["assets"]["catalog_path"] = str(catalog_file)
    c["assets"]["catalog_url"] = ""
    c["assets"]["asset_base_url"] = ASSET_BASE
    c["sync"]["pause_s"] = 0
    return c


@pytest.fixture
def fake_riot():
    return FakeRiot()


@pytest.fixture
def store(cfg):
    return Store(db_path=cfg["db"]["path"])


def make_riot(fake: FakeRiot, api_key: Optional[str] = "test-key") -> RiotClient:
    return RiotClient(
        region="europe",
        platform="euw1",
        api_key=api_key,
        transport=httpx.MockTransport(fake.handler),
        sleep=no_sleep,
    )


@pytest.fixture
def riot(fake_riot):
    return make_riot(fake_riot)


@pytest.fixture
def catalog(cfg):
    return AssetCatalog.from_config(cfg)


@pytest.fixture
def tracker(cfg, store, riot, catalog):
    t = Tracker(cfg, store, riot, catalog)
    t.sync.sleep = no_sleep
    return t
