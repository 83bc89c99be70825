"""Fuzzy matching of event tiles against a target date and venue.

Venues render dates inconsistently, so a date is expanded into several
textual candidates and a tile matches when its text contains any of them.
Ambiguity (e.g. ``11/07`` vs ``07/11``) is accepted.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Mapping, Optional, Sequence

MONTH_SHORT = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")
MONTH_LONG = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)


def build_date_candidates(date_iso: str) -> list[str]:
    """Expand ``YYYY-MM-DD`` into the textual forms tiles commonly use."""
    parsed = date.fromisoformat(date_iso.strip())
    y, m, d = parsed.year, parsed.month, parsed.day
    short = MONTH_SHORT[m - 1]
    long = MONTH_LONG[m - 1]
    dd = f"{d:02d}"
    mm = f"{m:02d}"

    candidates = [
        f"{short} {d}",
        f"{short} {dd}",
        f"{short}. {d}",
        f"{short}. {dd}",
        f"{short.upper()} {d}",
        f"{short.upper()} {dd}",
        f"{long} {d}",
        f"{long.upper()} {d}",
        f"{m}/{dd}",
        f"{mm}/{dd}",
        f"{dd}/{m}",
        f"{short} {dd}, {y}",
    ]
    return list(dict.fromkeys(candidates))


def contains_any(text: str, candidates: Iterable[str]) -> bool:
    lowered = text.lower()
    return any(candidate.lower() in lowered for candidate in candidates if candidate)


def contains_all(text: str, constraints: Iterable[str]) -> bool:
    lowered = text.lower()
    return all(constraint.lower() in lowered for constraint in constraints if constraint)


def tile_matches(text: str, date_candidates: Sequence[str], constraints: Sequence[str] = ()) -> bool:
    return contains_any(text, date_candidates) and contains_all(text, constraints)


def select_tile(
    tiles: Sequence[Mapping[str, Any]],
    date_candidates: Sequence[str],
    constraints: Sequence[str] = (),
) -> Optional[int]:
    """Pick the container to click from the collected tile texts.

    Only containers whose own text matches are considered. Containers with a
    "find tickets" affordance come first, then the shortest text, so a
    wrapper that merely concatenates several tiles loses to the tile inside
    it. Returns the container ``index`` or ``None``.
    """
    matching = [
        tile
        for tile in tiles
        if tile_matches(str(tile.get("text") or ""), date_candidates, constraints)
    ]
    if not matching:
        return None
    best = min(
        matching,
        key=lambda tile: (
            not tile.get("hasAffordance"),
            len(str(tile.get("text") or "")),
            int(tile.get("index", 0)),
        ),
    )
    return int(best["index"])


TILE_COLLECT_JS = """
({ affordance, minTextLength }) => {
    const affordanceRe = new RegExp(affordance, 'i');
    const tiles = [];
    let index = 0;
    for (const el of Array.from(document.querySelectorAll('section, li, div, article'))) {
        const text = el.innerText || '';
        if (text.length <= minTextLength) continue;
        el.setAttribute('data-tw-tile', String(index));
        tiles.push({ index, text, hasAffordance: affordanceRe.test(el.textContent || '') });
        index += 1;
    }
    return tiles;
}
"""

TILE_CLICK_JS = """
({ index, affordance }) => {
    const el = document.querySelector(`[data-tw-tile="${index}"]`);
    if (!el) return null;
    const affordanceRe = new RegExp(affordance, 'i');
    for (const btn of Array.from(el.querySelectorAll('button,[role="button"],a'))) {
        if (affordanceRe.test((btn.textContent || '').trim())) {
            btn.scrollIntoView({ block: 'center' });
            btn.click();
            return 'affordance';
        }
    }
    const link = el.querySelector('a[href]');
    if (link) {
        link.scrollIntoView({ block: 'center' });
        link.click();
        return 'link';
    }
    return null;
}
"""
