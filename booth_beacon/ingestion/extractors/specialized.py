"""
Specialized Extractors
======================

Deterministic, hand-tuned extraction rules for known source families.
These never call an LLM.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from bs4 import Tag

from booth_beacon.core.enums import ExtractorVariant
from booth_beacon.core.schema import ExtractionCandidate
from booth_beacon.ingestion.extractors.base import (
    ExtractionContext,
    SpecializedExtractor,
    absolute_url,
    clean_text,
    element_text,
    make_candidate,
    parse_html,
    to_float,
)

logger = logging.getLogger(__name__)

VARIANT = ExtractorVariant.SPECIALIZED


# ============================================================================
# schema.org JSON-LD
# ============================================================================

JSON_LD_PLACE_TYPES = frozenset(
    {
        "LocalBusiness",
        "Place",
        "BarOrPub",
        "Restaurant",
        "CafeOrCoffeeShop",
        "Store",
        "EntertainmentBusiness",
        "TouristAttraction",
        "NightClub",
        "ShoppingCenter",
    }
)


def _iter_json_ld_nodes(data: Any):
    """Yield every dict node in a JSON-LD document, following @graph and lists."""
    if isinstance(data, list):
        for item in data:
            yield from _iter_json_ld_nodes(item)
    elif isinstance(data, dict):
        yield data
        if "@graph" in data:
            yield from _iter_json_ld_nodes(data["@graph"])


def _node_types(node: dict[str, Any]) -> set[str]:
    raw = node.get("@type", [])
    if isinstance(raw, str):
        return {raw}
    if isinstance(raw, list):
        return {t for t in raw if isinstance(t, str)}
    return set()


def _text_value(value: Any) -> str | None:
    if isinstance(value, dict):
        value = value.get("name")
    if isinstance(value, str):
        return clean_text(value) or None
    return None


def extract_json_ld(content: str, context: ExtractionContext) -> list[ExtractionCandidate]:
    """
    Extract venues from schema.org JSON-LD blocks.

    Accepts LocalBusiness/Place-like nodes with a name. PostalAddress and
    GeoCoordinates are mapped onto candidate fields.
    """
    soup = parse_html(content)
    candidates: list[ExtractionCandidate] = []

    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.debug(f"Skipping malformed JSON-LD block on {context.url}: {e}")
            continue

        for node in _iter_json_ld_nodes(data):
            if not _node_types(node) & JSON_LD_PLACE_TYPES:
                continue
            name = _text_value(node.get("name"))
            if not name:
                continue

            address = node.get("address")
            fields: dict[str, Any] = {}
            if isinstance(address, dict):
                fields = {
                    "address": _text_value(address.get("streetAddress")),
                    "city": _text_value(address.get("addressLocality")),
                    "region": _text_value(address.get("addressRegion")),
                    "country": _text_value(address.get("addressCountry")),
                    "postal_code": _text_value(address.get("postalCode")),
                }
            elif isinstance(address, str):
                fields = {"address": clean_text(address) or None}

            geo = node.get("geo")
            if isinstance(geo, dict):
                fields["latitude"] = to_float(geo.get("latitude"))
                fields["longitude"] = to_float(geo.get("longitude"))

            candidates.append(
                make_candidate(
                    context,
                    VARIANT,
                    "json_ld",
                    confidence=0.9,
                    name=name,
                    description=_text_value(node.get("description")),
                    website=_text_value(node.get("url")),
                    **fields,
                )
            )

    return candidates


# ============================================================================
# Configurable list markup
# ============================================================================

LISTING_FIELDS = ("name", "address", "city", "region", "country", "postal_code", "description")


def extract_listing_markup(content: str, context: ExtractionContext) -> list[ExtractionCandidate]:
    """
    Extract venues from repeating list markup.

    Selectors come from the source's custom_config:

        item_selector: ".location"
        fields:
          name: ".location-name"
          address: ".location-address"
        link_selector: "a.website"     # optional, href becomes website
        lat_attr: "data-lat"           # optional, read from the item element
        lng_attr: "data-lng"
    """
    config = context.custom_config
    item_selector = config.get("item_selector")
    field_selectors: dict[str, str] = config.get("fields", {})
    if not item_selector or "name" not in field_selectors:
        logger.warning(
            f"Source '{context.source.name}' uses listing_markup without "
            f"item_selector and a name selector"
        )
        return []

    soup = parse_html(content)
    candidates: list[ExtractionCandidate] = []

    for item in soup.select(item_selector):
        fields: dict[str, Any] = {}
        for field_name in LISTING_FIELDS:
            selector = field_selectors.get(field_name)
            if selector:
                fields[field_name] = element_text(item.select_one(selector))
        if not fields.get("name"):
            continue

        link_selector = config.get("link_selector")
        if link_selector:
            link = item.select_one(link_selector)
            if isinstance(link, Tag):
                fields["website"] = absolute_url(context.url, link.get("href"))

        lat_attr = config.get("lat_attr")
        lng_attr = config.get("lng_attr")
        if lat_attr and lng_attr:
            fields["latitude"] = to_float(item.get(lat_attr))
            fields["longitude"] = to_float(item.get(lng_attr))

        candidates.append(
            make_candidate(context, VARIANT, "listing_markup", confidence=0.8, **fields)
        )

    return candidates


# ============================================================================
# photobooth.net directory
# ============================================================================

PHOTOBOOTH_NET_LINK_RE = re.compile(r"browse\.php\?ddState=(\d+)&(?:amp;)?locationID=(\d+)")
PHOTOBOOTH_NET_BASE = "https://www.photobooth.net/locations/"


def _photobooth_net_geography(link: Tag) -> tuple[str | None, str | None]:
    """Country and state from the nearest preceding section headers."""
    country: str | None = None
    state: str | None = None

    state_header = link.find_previous("h4")
    country_header = link.find_previous("h3")
    if country_header is not None:
        header = clean_text(country_header.get_text())
        if "United States" in header:
            country = "United States"
        elif "Canada" in header:
            country = "Canada"
        elif header and "World" not in header:
            country = header
    # Only trust a state header that sits inside the current country section
    if state_header is not None and (
        country_header is None or state_header.find_previous("h3") is country_header
    ):
        state = clean_text(state_header.get_text()) or None
    return country, state


def extract_photobooth_net(content: str, context: ExtractionContext) -> list[ExtractionCandidate]:
    """
    Extract booths from the photobooth.net location directory.

    Each entry is a ``browse.php?ddState=..&locationID=..`` link whose
    text is the venue name, followed by ``, City``. The directory lists
    no street addresses.
    """
    soup = parse_html(content)
    candidates: list[ExtractionCandidate] = []
    seen: set[str] = set()

    for link in soup.find_all("a", href=PHOTOBOOTH_NET_LINK_RE):
        match = PHOTOBOOTH_NET_LINK_RE.search(link["href"])
        if match is None:
            continue
        location_id = match.group(2)
        if location_id in seen:
            continue

        name = element_text(link)
        if not name:
            continue

        city: str | None = None
        trailing = link.next_sibling
        if isinstance(trailing, str):
            city = clean_text(trailing.lstrip().lstrip(",")) or None

        country, state = _photobooth_net_geography(link)
        seen.add(location_id)
        candidates.append(
            make_candidate(
                context,
                VARIANT,
                "photobooth_net",
                confidence=0.85,
                name=name,
                city=city,
                region=state,
                country=country,
                website=absolute_url(PHOTOBOOTH_NET_BASE, link["href"]),
            )
        )

    return candidates


JSON_LD = SpecializedExtractor(
    name="json_ld",
    version="1.0",
    func=extract_json_ld,
    description="schema.org LocalBusiness/Place JSON-LD blocks",
)
LISTING_MARKUP = SpecializedExtractor(
    name="listing_markup",
    version="1.0",
    func=extract_listing_markup,
    description="Repeating list markup with CSS selectors from custom_config",
)
PHOTOBOOTH_NET = SpecializedExtractor(
    name="photobooth_net",
    version="1.0",
    func=extract_photobooth_net,
    description="photobooth.net location directory",
)
