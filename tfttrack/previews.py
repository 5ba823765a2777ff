from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from .assets import (
    UNKNOWN_ITEM_ICON,
    UNKNOWN_UNIT_ICON,
    AssetIndex,
    is_placeholder,
    sanitize_icon_url,
)


log = logging.getLogger(__name__)

REASON_NOT_FOUND = "PLAYER_NOT_FOUND"
REASON_FALLBACK = "no_puuid_match_fallback_top1"
REASON_NO_UNITS = "no_units_in_match"

TOP_TRAITS_LIMIT = 5
NO_PLACEMENT = 999


def normalize_puuid(value: Optional[str]) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def _int(value: Any, default: Optional[int] = 0) -> Optional[int]:
    if isinstance(value, bool):
        return default
    return value if isinstance(value, int) else default


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def placement_of(participant: Dict[str, Any]) -> int:
    p = participant.get("placement")
    return p if isinstance(p, int) and not isinstance(p, bool) else NO_PLACEMENT


def build_unit(unit: Dict[str, Any], index: AssetIndex) -> Dict[str, Any]:
    character_id = unit.get("character_id") or ""
    item_names = [n for n in _list(unit.get("itemNames")) if isinstance(n, str)]
    champ = index.champion_icon(character_id) if character_id else None
    if champ is None and character_id:
        log.debug("missing champion icon %s", character_id)
    return {
        "character_id": character_id,
        "tier": _int(unit.get("tier")),
        "itemNames": item_names,
        "champIconUrl": champ or UNKNOWN_UNIT_ICON,
        "itemIconUrls": [index.item_icon(n) or UNKNOWN_ITEM_ICON for n in item_names],
    }


def build_traits(traits: Any) -> List[Dict[str, Any]]:
    out = []
    for t in _list(traits):
        if not isinstance(t, dict):
            continue
        out.append(
            {
                "name": t.get("name") or "",
                "num_units": _int(t.get("num_units")),
                "style": _int(t.get("style")),
                "tier_current": _int(t.get("tier_current")),
                "tier_total": _int(t.get("tier_total")),
            }
        )
    return out


def top_traits(traits: List[Dict[str, Any]], index: AssetIndex) -> List[Dict[str, Any]]:
    """Active traits, strongest style first, then by unit count; at most five."""
    active = [t for t in traits if t["style"] > 0 or t["tier_current"] > 0]
    # stable sort keeps payload order on full ties
    active.sort(key=lambda t: (-t["style"], -t["num_units"]))
    return [
        {
            "name": t["name"],
            "num_units": t["num_units"],
            "style": t["style"],
            "iconUrl": index.trait_icon(t["name"]) if t["name"] else None,
        }
        for t in active[:TOP_TRAITS_LIMIT]
    ]


def build_preview(
    participant: Dict[str, Any],
    index: AssetIndex,
    puuid_override: Optional[str] = None,
    reason: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    puuid = puuid_override or participant.get("puuid")
    if not isinstance(puuid, str) or not puuid.strip():
        return None
    units_src = [u for u in _list(participant.get("units")) if isinstance(u, dict)]
    traits = build_traits(participant.get("traits"))
    preview: Dict[str, Any] = {
        "puuid": puuid,
        "riotIdGameName": participant.get("riotIdGameName"),
        "riotIdTagline": participant.get("riotIdTagline"),
        "placement": _int(participant.get("placement"), None),
        "level": _int(participant.get("level"), None),
        "units": [build_unit(u, index) for u in units_src],
        "traits": traits,
        "topTraits": top_traits(traits, index),
    }
    if reason is None and not units_src:
        reason = REASON_NO_UNITS
    if reason:
        preview["reason"] = reason
    return preview


def build_player_previews(participants: List[Dict[str, Any]], index: AssetIndex) -> Dict[str, Dict[str, Any]]:
    """One preview per participant carrying an identifier, keyed by it."""
    out: Dict[str, Dict[str, Any]] = {}
    for participant in participants:
        if not isinstance(participant, dict):
            continue
        preview = build_preview(participant, index)
        if preview is not None:
            out[preview["puuid"]] = preview
    return out


def missing_preview(puuid: str) -> Dict[str, Any]:
    return {
        "puuid": puuid,
        "riotIdGameName": None,
        "riotIdTagline": None,
        "placement": None,
        "level": None,
        "units": [],
        "traits": [],
        "topTraits": [],
        "reason": REASON_NOT_FOUND,
    }


def _icon_incomplete(url: Any) -> bool:
    clean = sanitize_icon_url(url)
    return clean is None or is_placeholder(clean)


def preview_needs_icons(preview: Optional[Dict[str, Any]]) -> bool:
    """True when any unit still lacks a resolved champion or item icon.

    Placeholders count as unresolved so previews heal once the catalog
    learns a previously unknown identifier.
    """
    if not isinstance(preview, dict):
        return True
    for unit in _list(preview.get("units")):
        if not isinstance(unit, dict):
            return True
        names = _list(unit.get("itemNames"))
        urls = _list(unit.get("itemIconUrls"))
        if _icon_incomplete(unit.get("champIconUrl")):
            return True
        if len(urls) != len(names):
            return True
        if any(_icon_incomplete(u) for u in urls):
            return True
    return False


def hydrate_preview_icons(preview: Dict[str, Any], index: AssetIndex) -> Tuple[Dict[str, Any], bool]:
    """Re-resolve unit and trait icons of a stored preview."""
    changed = False
    units = []
    for unit in _list(preview.get("units")):
        if not isinstance(unit, dict):
            changed = True
            continue
        rebuilt = {**unit, **build_unit(unit, index)}
        if rebuilt["champIconUrl"] != unit.get("champIconUrl") or rebuilt["itemIconUrls"] != unit.get("itemIconUrls"):
            changed = True
        units.append(rebuilt)
    tops = []
    for trait in _list(preview.get("topTraits")):
        if not isinstance(trait, dict):
            continue
        icon = trait.get("iconUrl")
        if sanitize_icon_url(icon) is None and trait.get("name"):
            icon = index.trait_icon(trait["name"])
            if icon is not None:
                changed = True
        tops.append({**trait, "iconUrl": icon})
    return {**preview, "units": units, "topTraits": tops}, changed


def repair_previews(
    participants: List[Dict[str, Any]],
    stored: Optional[Dict[str, Any]],
    index: AssetIndex,
) -> Tuple[Dict[str, Dict[str, Any]], bool]:
    """Rebuild missing or incomplete previews from the stored raw participants.

    Complete previews are kept as they are, so a second pass over the
    result changes nothing once the first one reported no change.
    """
    current: Dict[str, Dict[str, Any]] = dict(stored) if isinstance(stored, dict) else {}
    changed = False
    for participant in participants:
        if not isinstance(participant, dict):
            continue
        puuid = participant.get("puuid")
        if not isinstance(puuid, str) or not puuid.strip():
            continue
        existing = current.get(puuid)
        if existing is not None and not preview_needs_icons(existing):
            continue
        rebuilt = build_preview(participant, index)
        if rebuilt is not None and rebuilt != existing:
            current[puuid] = rebuilt
            changed = True
    return current, changed


def select_participant_for_puuid(participants: List[Dict[str, Any]], puuid: str) -> Optional[Dict[str, Any]]:
    wanted = normalize_puuid(puuid)
    if not wanted:
        return None
    for p in participants:
        if isinstance(p, dict) and normalize_puuid(p.get("puuid")) == wanted:
            return p
    return None


def select_fallback_participant(participants: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Best-placed participant; the first one wins a tie."""
    candidates = [p for p in participants if isinstance(p, dict)]
    if not candidates:
        return None
    placed = [p for p in candidates if placement_of(p) != NO_PLACEMENT]
    if not placed:
        return candidates[0]
    return min(placed, key=placement_of)


def find_preview_for_puuid(previews: Optional[Dict[str, Any]], puuid: str) -> Optional[Dict[str, Any]]:
    if not isinstance(previews, dict):
        return None
    wanted = normalize_puuid(puuid)
    if not wanted:
        return None
    if isinstance(previews.get(puuid), dict):
        return previews[puuid]
    for key, value in previews.items():
        if normalize_puuid(key) == wanted and isinstance(value, dict):
            return value
    return None


def preview_for_player(
    participants: List[Dict[str, Any]],
    previews: Dict[str, Dict[str, Any]],
    puuid: str,
    index: AssetIndex,
) -> Dict[str, Any]:
    """The requesting player's preview, falling back to the match winner.

    The fallback returns another participant's board under ``puuid`` and is
    tagged with a diagnostic reason so callers can tell.
    """
    found = find_preview_for_puuid(previews, puuid)
    if found is not None:
        return found
    participant = select_participant_for_puuid(participants, puuid)
    if participant is not None:
        built = build_preview(participant, index, puuid_override=puuid)
        if built is not None:
            return built
    fallback = select_fallback_participant(participants)
    if fallback is not None:
        log.warning("preview fallback to best-placed participant puuid=%s", puuid)
        built = build_preview(fallback, index, puuid_override=puuid, reason=REASON_FALLBACK)
        if built is not None:
            return built
    return missing_preview(puuid)


def enrich_participants(participants: List[Dict[str, Any]], index: AssetIndex) -> List[Dict[str, Any]]:
    """Participants sorted by placement with resolved unit icons merged in."""
    ordered = sorted((p for p in participants if isinstance(p, dict)), key=placement_of)
    out = []
    for participant in ordered:
        units = [
            {**u, **build_unit(u, index)}
            for u in _list(participant.get("units"))
            if isinstance(u, dict)
        ]
        out.append({**participant, "units": units})
    return out
