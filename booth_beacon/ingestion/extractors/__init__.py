"""
Extractor Registry Module
=========================

Central registry for specialized extractors, keyed by the
``extractor_type`` a source declares. Sources whose type is not
registered go through the patterned/generic paths.
"""

from __future__ import annotations

from booth_beacon.ingestion.extractors.base import (
    ExtractionContext,
    ExtractionOutcome,
    SpecializedExtractor,
)
from booth_beacon.ingestion.extractors.specialized import (
    JSON_LD,
    LISTING_MARKUP,
    PHOTOBOOTH_NET,
)

# Registry mapping extractor_type values to specialized extractors
SPECIALIZED_EXTRACTORS: dict[str, SpecializedExtractor] = {
    JSON_LD.name: JSON_LD,
    LISTING_MARKUP.name: LISTING_MARKUP,
    PHOTOBOOTH_NET.name: PHOTOBOOTH_NET,
}


def get_extractor(extractor_type: str | None) -> SpecializedExtractor | None:
    """
    Get a specialized extractor by type name.

    Args:
        extractor_type: Source extractor_type (e.g., "photobooth_net")

    Returns:
        The extractor, or None if the type is not specialized
    """
    if not extractor_type:
        return None
    return SPECIALIZED_EXTRACTORS.get(extractor_type)


def register_extractor(extractor: SpecializedExtractor) -> None:
    """
    Register a specialized extractor under its name.

    Args:
        extractor: SpecializedExtractor to register
    """
    if not isinstance(extractor, SpecializedExtractor):
        raise TypeError(f"{extractor!r} must be a SpecializedExtractor")
    SPECIALIZED_EXTRACTORS[extractor.name] = extractor


def list_extractors() -> list[str]:
    """
    List all registered specialized extractor names.

    Returns:
        List of extractor type names
    """
    return list(SPECIALIZED_EXTRACTORS.keys())


def get_extractor_info(extractor_type: str) -> dict[str, str] | None:
    """
    Get information about a specialized extractor.

    Args:
        extractor_type: Name of the extractor

    Returns:
        Dict with extractor info, or None if not found
    """
    extractor = SPECIALIZED_EXTRACTORS.get(extractor_type)
    if extractor is None:
        return None

    return {
        "name": extractor.name,
        "version": extractor.version,
        "description": extractor.description,
    }


__all__ = [
    # Registry functions
    "get_extractor",
    "register_extractor",
    "list_extractors",
    "get_extractor_info",
    "SPECIALIZED_EXTRACTORS",
    # Shared types
    "ExtractionContext",
    "ExtractionOutcome",
    "SpecializedExtractor",
]
