"""
Booth Resolver Module
=====================

Deduplicates validated records against the canonical booth table and
upserts them.

Two records describe the same booth when their normalized names are
equal and either their coordinates are within the proximity radius, or
their normalized cities are equal and their street-number prefixes do
not disagree (equal, or unknown on one side).

Merging never lets a null overwrite a populated field. A populated
field is replaced only by a source with strictly higher trust; every
disagreement is recorded as a ReconciliationConflict.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booth_beacon.core.errors import ReconciliationConflict, RegistryError
from booth_beacon.core.schema import CanonicalBooth, Source, ValidatedRecord
from booth_beacon.db.repositories import BoothRepository
from booth_beacon.ingestion.config import DedupConfig
from booth_beacon.ingestion.normalizer import haversine_m, normalize_city, street_number_prefix

logger = logging.getLogger(__name__)

MERGE_FIELDS = ("address", "city", "region", "country", "postal_code", "description", "website")


@dataclass
class UpsertSummary:
    """Outcome of reconciling one batch."""

    added: int = 0
    updated: int = 0
    merged: int = 0
    conflicts: list[ReconciliationConflict] = field(default_factory=list)
    booth_ids: list[UUID] = field(default_factory=list)

    def extend(self, other: UpsertSummary) -> None:
        self.added += other.added
        self.updated += other.updated
        self.merged += other.merged
        self.conflicts.extend(other.conflicts)
        self.booth_ids.extend(other.booth_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": self.added,
            "updated": self.updated,
            "merged": self.merged,
            "conflicts": [c.to_dict() for c in self.conflicts],
        }


def same_location(a: Any, b: Any, radius_m: float, allow_missing_prefix: bool = True) -> bool:
    """
    Location half of the match rule.

    Works on anything with latitude, longitude, city_key and address
    attributes (records and canonical booths). With ``allow_missing_prefix``
    off, a same-city match needs equal street numbers on both sides.
    """
    if None not in (a.latitude, a.longitude, b.latitude, b.longitude):
        if haversine_m(a.latitude, a.longitude, b.latitude, b.longitude) <= radius_m:
            return True

    if a.city_key and a.city_key == b.city_key:
        prefix_a = street_number_prefix(a.address)
        prefix_b = street_number_prefix(b.address)
        if prefix_a and prefix_a == prefix_b:
            return True
        if allow_missing_prefix and (not prefix_a or not prefix_b):
            return True

    return False


def booth_from_record(record: ValidatedRecord, trust: int) -> CanonicalBooth:
    """Build a new canonical booth from a validated record."""
    return CanonicalBooth(
        name=record.name,
        name_key=record.name_key,
        address=record.address,
        city=record.city,
        city_key=record.city_key,
        region=record.region,
        country=record.country,
        postal_code=record.postal_code,
        latitude=record.latitude,
        longitude=record.longitude,
        description=record.description,
        website=record.website,
        source_id=record.source_id,
        source_trust=trust,
        source_names=[record.source_name] if record.source_name else [],
        source_urls=[record.source_url] if record.source_url else [],
        last_extractor=record.extractor,
    )


def merge_into(
    booth: CanonicalBooth,
    incoming: CanonicalBooth,
) -> list[ReconciliationConflict]:
    """
    Merge an incoming booth state into an existing one, in place.

    Args:
        booth: Existing state (mutated)
        incoming: New state with its own source_trust

    Returns:
        Conflicts found, each already resolved
    """
    conflicts: list[ReconciliationConflict] = []
    higher = incoming.source_trust > booth.source_trust

    def resolve(field_name: str, old: Any, new: Any) -> bool:
        """Returns True when the new value should be taken."""
        if new is None or old == new:
            return False
        if old is None:
            return True
        if higher:
            conflicts.append(
                ReconciliationConflict(booth.name_key, field_name, new, old, "higher-trust source")
            )
            return True
        conflicts.append(
            ReconciliationConflict(booth.name_key, field_name, old, new, "existing value kept")
        )
        return False

    for field_name in MERGE_FIELDS:
        new = getattr(incoming, field_name)
        if resolve(field_name, getattr(booth, field_name), new):
            setattr(booth, field_name, new)

    # Coordinates move as a pair
    old_pair = (
        (booth.latitude, booth.longitude) if booth.latitude is not None else None
    )
    new_pair = (
        (incoming.latitude, incoming.longitude) if incoming.latitude is not None else None
    )
    if resolve("coordinates", old_pair, new_pair):
        booth.latitude, booth.longitude = new_pair

    booth.city_key = normalize_city(booth.city)

    if higher:
        booth.name = incoming.name
        booth.source_trust = incoming.source_trust
        booth.source_id = incoming.source_id

    for name in incoming.source_names:
        if name not in booth.source_names:
            booth.source_names.append(name)
    for url in incoming.source_urls:
        if url not in booth.source_urls:
            booth.source_urls.append(url)
    booth.last_extractor = incoming.last_extractor or booth.last_extractor

    return conflicts


class BoothResolver:
    """
    Reconciles validated records into canonical booths.

    One resolver is used per run. Entities written earlier in the run are
    kept in memory and matched first.

    Example:
        resolver = BoothResolver(session, DedupConfig())
        summary = resolver.reconcile(records, source)
        session.commit()
    """

    def __init__(self, session: Session, config: DedupConfig | None = None) -> None:
        self.session = session
        self.config = config or DedupConfig()
        self._repo = BoothRepository(session)
        self._run_entities: dict[UUID, CanonicalBooth] = {}

    @property
    def radius_m(self) -> float:
        return self.config.proximity_radius_m

    def matches(self, a: Any, b: Any) -> bool:
        """Full match rule: equal name keys plus a location match."""
        return bool(a.name_key) and a.name_key == b.name_key and same_location(
            a, b, self.radius_m, self.config.match_missing_street_prefix
        )

    def find_match(self, booth: CanonicalBooth) -> CanonicalBooth | None:
        """Find the canonical booth an incoming state belongs to."""
        for existing in self._run_entities.values():
            if self.matches(booth, existing):
                return existing
        for existing in self._repo.find_by_name_key(booth.name_key):
            if self.matches(booth, existing):
                return existing
        return None

    def _group(
        self,
        records: list[ValidatedRecord],
        trust: int,
        summary: UpsertSummary,
    ) -> list[CanonicalBooth]:
        """Merge records of one batch that describe the same booth."""
        groups: list[CanonicalBooth] = []
        for record in records:
            incoming = booth_from_record(record, trust)
            for group in groups:
                if self.matches(incoming, group):
                    summary.conflicts.extend(merge_into(group, incoming))
                    summary.merged += 1
                    break
            else:
                groups.append(incoming)
        return groups

    def reconcile(self, records: list[ValidatedRecord], source: Source) -> UpsertSummary:
        """
        Upsert a batch of validated records.

        The caller commits after each batch.

        Args:
            records: Validated records from one source
            source: The source they came from (its priority is the trust)

        Returns:
            UpsertSummary with added/updated counts and conflicts

        Raises:
            RegistryError: The canonical store could not be read or written
        """
        summary = UpsertSummary()
        if not records:
            return summary

        try:
            for incoming in self._group(records, source.priority, summary):
                existing = self.find_match(incoming)
                if existing is None:
                    stored = self._repo.create(incoming)
                    summary.added += 1
                else:
                    summary.conflicts.extend(merge_into(existing, incoming))
                    stored = self._repo.update(existing)
                    if existing.id in self._run_entities:
                        summary.merged += 1
                    else:
                        summary.updated += 1
                self._run_entities[stored.id] = stored
                summary.booth_ids.append(stored.id)
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RegistryError(f"Failed to upsert booths for '{source.name}': {e}") from e

        for conflict in summary.conflicts:
            logger.debug(
                f"Conflict on {conflict.entity_key}.{conflict.field}: kept "
                f"{conflict.kept!r}, discarded {conflict.discarded!r} ({conflict.reason})"
            )
        logger.info(
            f"Reconciled {len(records)} records for '{source.name}': "
            f"{summary.added} added, {summary.updated} updated, {summary.merged} merged"
        )
        return summary
