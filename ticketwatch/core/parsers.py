"""Price extraction from captured page HTML.

Each parser is a pure ``html -> PriceStats`` function. Every price hit is kept
(repeats count as listings); values outside a sane ticket range are dropped.
"""

from __future__ import annotations

import json
import re
import statistics
from typing import Any, Callable, Iterable

from ticketwatch.core.state_models import PriceStats

PRICE_MIN = 1.0
PRICE_MAX = 5_000.0

_AMOUNT = r"[0-9]{1,3}(?:,[0-9]{3})*(?:\.[0-9]{2})?"
DOLLAR_RE = re.compile(r"\$\s*(" + _AMOUNT + r")")
LD_JSON_RE = re.compile(
    r"<script[^>]+type=[\"']application/ld\+json[\"'][^>]*>(.*?)</script>",
    re.IGNORECASE | re.DOTALL,
)
SCRIPT_RE = re.compile(r"<script[^>]*>(.*?)</script>", re.IGNORECASE | re.DOTALL)
PRICE_KEY_RE = re.compile(r"\"price\"\s*:\s*\"?(" + _AMOUNT + r")\"?")
RANGE_KEY_RE = re.compile(r"\"(?:minPrice|maxPrice|lowPrice|highPrice)\"\s*:\s*\"?(" + _AMOUNT + r")\"?")
ANY_PRICE_KEY_RE = re.compile(
    r"\"(?:price|minPrice|maxPrice|lowPrice|highPrice)\"\s*:\s*\"?(" + _AMOUNT + r")\"?"
)

HtmlParser = Callable[[str], PriceStats]


def to_price(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value.replace(",", "")) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if number != number or number < PRICE_MIN or number > PRICE_MAX:
        return None
    return number


def summarize(prices: Iterable[float]) -> PriceStats:
    values = tuple(prices)
    if not values:
        return PriceStats(prices=(), count=0, avg=0.0, median=0.0, min=0.0)
    return PriceStats(
        prices=values,
        count=len(values),
        avg=sum(values) / len(values),
        median=float(statistics.median(values)),
        min=min(values),
    )


def _ld_json_blobs(html: str) -> list[Any]:
    blobs: list[Any] = []
    for match in LD_JSON_RE.finditer(html):
        try:
            blobs.append(json.loads(match.group(1).strip()))
        except ValueError:
            continue
    return blobs


def _offers(data: Any) -> list[Any]:
    if not isinstance(data, dict):
        return []
    offers = data.get("offers")
    if isinstance(offers, list):
        return offers
    if offers:
        return [offers]
    return []


def _regex_prices(pattern: re.Pattern[str], text: str) -> list[float]:
    found: list[float] = []
    for match in pattern.finditer(text):
        price = to_price(match.group(1))
        if price is not None:
            found.append(price)
    return found


def dollar_prices(html: str) -> list[float]:
    return _regex_prices(DOLLAR_RE, html)


def parse_stubhub(html: str) -> PriceStats:
    return summarize(dollar_prices(html))


def parse_ticketmaster(html: str) -> PriceStats:
    prices: list[float] = []

    for data in _ld_json_blobs(html):
        for offer in _offers(data):
            if not isinstance(offer, dict):
                continue
            spec = offer.get("priceSpecification")
            candidates = [
                offer.get("price"),
                offer.get("lowPrice"),
                offer.get("highPrice"),
                spec.get("price") if isinstance(spec, dict) else None,
            ]
            prices.extend(p for p in map(to_price, candidates) if p is not None)

        aggregate = None
        if isinstance(data, dict):
            aggregate = data.get("aggregateOffer")
            if aggregate is None and isinstance(data.get("offers"), dict):
                aggregate = data["offers"].get("aggregateOffer")
        if isinstance(aggregate, dict):
            for key in ("lowPrice", "highPrice", "price"):
                price = to_price(aggregate.get(key))
                if price is not None:
                    prices.append(price)

    for match in SCRIPT_RE.finditer(html):
        script = match.group(1) or ""
        prices.extend(_regex_prices(PRICE_KEY_RE, script))
        prices.extend(_regex_prices(RANGE_KEY_RE, script))

    prices.extend(dollar_prices(html))
    return summarize(prices)


def parse_vividseats(html: str) -> PriceStats:
    prices: list[float] = []

    for data in _ld_json_blobs(html):
        if isinstance(data, dict):
            offers_field = data.get("offers")
            aggregate = data.get("aggregateOffer")
            if aggregate is None and isinstance(offers_field, dict):
                aggregate = offers_field.get("aggregateOffer") or offers_field
            if isinstance(aggregate, dict):
                for key in ("price", "lowPrice", "highPrice"):
                    price = to_price(aggregate.get(key))
                    if price is not None:
                        prices.append(price)

        for offer in _offers(data):
            if not isinstance(offer, dict):
                continue
            for key in ("price", "lowPrice", "highPrice", "minPrice", "maxPrice"):
                price = to_price(offer.get(key))
                if price is not None:
                    prices.append(price)
            spec = offer.get("priceSpecification")
            if isinstance(spec, dict):
                price = to_price(spec.get("price"))
                if price is not None:
                    prices.append(price)

    for match in SCRIPT_RE.finditer(html):
        prices.extend(_regex_prices(ANY_PRICE_KEY_RE, match.group(1) or ""))

    prices.extend(dollar_prices(html))
    return summarize(prices)


def parse_generic(html: str) -> PriceStats:
    return parse_stubhub(html)
