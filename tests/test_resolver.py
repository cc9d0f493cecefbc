"""Tests for canonical booth matching and merging."""

import pytest
from sqlalchemy.orm import Session

from booth_beacon.core.schema import ExtractionCandidate, Source, ValidatedRecord
from booth_beacon.db.repositories import BoothRepository
from booth_beacon.ingestion.config import DedupConfig
from booth_beacon.ingestion.resolver import BoothResolver, booth_from_record, same_location
from booth_beacon.ingestion.validator import validate


def _record(name: str, source: Source | None = None, **fields) -> ValidatedRecord:
    candidate = ExtractionCandidate(
        name=name,
        source_id=source.id if source else None,
        source_name=source.name if source else "",
        source_url=source.urls[0] if source else "",
        **fields,
    )
    outcome = validate(candidate)
    assert isinstance(outcome, ValidatedRecord)
    return outcome


class TestSameLocation:
    """Tests for the location half of the match rule."""

    def test_within_radius(self) -> None:
        """Test that points about 11 m apart match."""
        a = _record("Booth", latitude=41.8781, longitude=-87.6298)
        b = _record("Booth", latitude=41.8782, longitude=-87.6298)
        assert same_location(a, b, 50.0)

    def test_outside_radius(self) -> None:
        """Test that points about 1 km apart without a city do not match."""
        a = _record("Booth", latitude=41.8781, longitude=-87.6298)
        b = _record("Booth", latitude=41.8871, longitude=-87.6298)
        assert not same_location(a, b, 50.0)

    def test_city_and_street_prefix(self) -> None:
        """Test that equal cities with the same street prefix match."""
        a = _record("Booth", address="123 Main St", city="Chicago")
        b = _record("Booth", address="123 Main Street, Chicago", city="chicago")
        assert same_location(a, b, 50.0)

    def test_city_with_different_street(self) -> None:
        """Test that different street prefixes in one city do not match."""
        a = _record("Booth", address="123 Main St", city="Chicago")
        b = _record("Booth", address="900 Lake Shore Dr", city="Chicago")
        assert not same_location(a, b, 50.0)

    def test_city_with_unknown_address(self) -> None:
        """Test that an address missing on one side still matches on city."""
        a = _record("Booth", address="123 Main St", city="Chicago")
        b = _record("Booth", city="Chicago")
        assert same_location(a, b, 50.0)

    def test_strict_prefix_needs_both_addresses(self) -> None:
        """Test that strict matching refuses a city match with one address missing."""
        a = _record("Booth", address="123 Main St", city="Chicago")
        b = _record("Booth", city="Chicago")
        assert not same_location(a, b, 50.0, allow_missing_prefix=False)
        c = _record("Booth", address="123 Main Street", city="Chicago")
        assert same_location(a, c, 50.0, allow_missing_prefix=False)

    def test_no_location(self) -> None:
        """Test that records without any location never match."""
        assert not same_location(_record("Booth"), _record("Booth"), 50.0)


class TestReconcile:
    """Tests for BoothResolver.reconcile."""

    @pytest.fixture
    def guide(self, make_source) -> Source:
        return make_source(name="guide", urls=["https://guide.example"], priority=60)

    @pytest.fixture
    def operator(self, make_source) -> Source:
        return make_source(name="operator", urls=["https://op.example"], priority=90)

    def test_adds_new_booths(self, session: Session, guide: Source) -> None:
        """Test that unmatched records become new canonical booths."""
        resolver = BoothResolver(session)
        summary = resolver.reconcile(
            [
                _record("Alpha Bar", guide, address="12 Oak Street", city="Springfield"),
                _record("Beta Lounge", guide, address="40 Pine Avenue", city="Springfield"),
            ],
            guide,
        )
        session.commit()

        assert (summary.added, summary.updated, summary.merged) == (2, 0, 0)
        assert BoothRepository(session).count() == 2
        booth = BoothRepository(session).find_by_name_key("alpha bar")[0]
        assert booth.source_trust == 60
        assert booth.source_names == ["guide"]

    def test_batch_duplicates_merge(self, session: Session, guide: Source) -> None:
        """Test that two records for one booth in a batch produce one entity."""
        summary = BoothResolver(session).reconcile(
            [
                _record("Alpha Bar", guide, latitude=41.8781, longitude=-87.6298),
                _record("ALPHA BAR!", guide, latitude=41.87812, longitude=-87.62981),
            ],
            guide,
        )
        session.commit()

        assert (summary.added, summary.merged) == (1, 1)
        assert BoothRepository(session).count() == 1

    def test_second_run_updates(self, session: Session, guide: Source) -> None:
        """Test that a later run updates the existing booth instead of inserting."""
        BoothResolver(session).reconcile(
            [_record("Alpha Bar", guide, address="12 Oak Street", city="Springfield")], guide
        )
        session.commit()

        summary = BoothResolver(session).reconcile(
            [
                _record(
                    "Alpha Bar",
                    guide,
                    address="12 Oak Street",
                    city="Springfield",
                    website="https://alpha.example",
                )
            ],
            guide,
        )
        session.commit()

        assert (summary.added, summary.updated) == (0, 1)
        booths = BoothRepository(session).list_all()
        assert len(booths) == 1
        assert booths[0].website == "https://alpha.example"

    def test_null_never_overwrites(self, session: Session, guide: Source, operator: Source) -> None:
        """Test that a missing incoming value keeps the stored one."""
        BoothResolver(session).reconcile(
            [_record("Alpha Bar", guide, address="12 Oak Street", city="Springfield")], guide
        )
        session.commit()

        BoothResolver(session).reconcile(
            [_record("Alpha Bar", operator, city="Springfield", description="Vintage booth")],
            operator,
        )
        session.commit()

        booth = BoothRepository(session).find_by_name_key("alpha bar")[0]
        assert booth.address == "12 Oak Street"
        assert booth.description == "Vintage booth"

    def test_higher_trust_overwrites(
        self, session: Session, guide: Source, operator: Source
    ) -> None:
        """Test that a higher-trust source replaces a conflicting value."""
        BoothResolver(session).reconcile(
            [_record("Alpha Bar", guide, city="Springfield", postal_code="62701")], guide
        )
        session.commit()

        summary = BoothResolver(session).reconcile(
            [_record("Alpha Bar", operator, city="Springfield", postal_code="62704")], operator
        )
        session.commit()

        booth = BoothRepository(session).find_by_name_key("alpha bar")[0]
        assert booth.postal_code == "62704"
        assert booth.source_trust == 90
        assert booth.source_names == ["guide", "operator"]
        assert len(summary.conflicts) == 1
        conflict = summary.conflicts[0]
        assert (conflict.field, conflict.kept, conflict.discarded) == (
            "postal_code",
            "62704",
            "62701",
        )

    def test_lower_trust_is_kept_out(
        self, session: Session, guide: Source, operator: Source
    ) -> None:
        """Test that a lower-trust source cannot replace a populated value."""
        BoothResolver(session).reconcile(
            [_record("Alpha Bar", operator, city="Springfield", postal_code="62704")], operator
        )
        session.commit()

        summary = BoothResolver(session).reconcile(
            [_record("Alpha Bar", guide, city="Springfield", postal_code="62701")], guide
        )
        session.commit()

        booth = BoothRepository(session).find_by_name_key("alpha bar")[0]
        assert booth.postal_code == "62704"
        assert booth.source_trust == 90
        assert summary.conflicts[0].reason == "existing value kept"

    def test_equal_trust_keeps_existing(self, session: Session, guide: Source) -> None:
        """Test that equal trust does not overwrite."""
        resolver = BoothResolver(session)
        resolver.reconcile([_record("Alpha Bar", guide, city="Springfield", region="IL")], guide)
        session.commit()
        BoothResolver(session).reconcile(
            [_record("Alpha Bar", guide, city="Springfield", region="Illinois")], guide
        )
        session.commit()

        assert BoothRepository(session).find_by_name_key("alpha bar")[0].region == "IL"

    def test_later_page_in_same_run_merges(self, session: Session, guide: Source) -> None:
        """Test that a booth seen on two pages of one run is merged, not re-added."""
        resolver = BoothResolver(session)
        first = resolver.reconcile(
            [_record("Alpha Bar", guide, address="12 Oak Street", city="Springfield")], guide
        )
        session.commit()
        second = resolver.reconcile(
            [_record("Alpha Bar", guide, city="Springfield", region="IL")], guide
        )
        session.commit()

        assert first.added == 1
        assert (second.added, second.updated, second.merged) == (0, 0, 1)
        assert BoothRepository(session).count() == 1

    def test_coordinates_move_as_pair(self, make_source, session: Session) -> None:
        """Test that coordinates are replaced together, never mixed."""
        low = make_source(name="low", priority=40)
        high = make_source(name="high", priority=95)
        resolver = BoothResolver(session, DedupConfig(proximity_radius_m=100.0))
        resolver.reconcile(
            [_record("Booth", low, city="Paris", latitude=48.85660, longitude=2.35220)], low
        )
        session.commit()
        BoothResolver(session).reconcile(
            [_record("Booth", high, city="Paris", latitude=48.85665, longitude=2.35225)], high
        )
        session.commit()

        booth = BoothRepository(session).find_by_name_key("booth")[0]
        assert (booth.latitude, booth.longitude) == (48.85665, 2.35225)

    def test_strict_prefix_config_keeps_booths_apart(
        self, session: Session, guide: Source
    ) -> None:
        """Test that match_missing_street_prefix=False keeps address-less records separate."""
        resolver = BoothResolver(session, DedupConfig(match_missing_street_prefix=False))
        summary = resolver.reconcile(
            [
                _record("Alpha Bar", guide, address="12 Oak Street", city="Springfield"),
                _record("Alpha Bar", guide, city="Springfield"),
            ],
            guide,
        )
        session.commit()

        assert (summary.added, summary.merged) == (2, 0)
        assert BoothRepository(session).count() == 2

    def test_empty_batch(self, session: Session, guide: Source) -> None:
        """Test that an empty batch writes nothing."""
        summary = BoothResolver(session).reconcile([], guide)
        assert summary.to_dict() == {"added": 0, "updated": 0, "merged": 0, "conflicts": []}


def test_booth_from_record_carries_source() -> None:
    """Test that a new booth records its source and trust."""
    source = Source(name="guide", urls=["https://guide.example"])
    booth = booth_from_record(_record("Alpha Bar", source, city="Springfield"), 70)
    assert booth.name_key == "alpha bar"
    assert booth.city_key == "springfield"
    assert booth.source_trust == 70
    assert booth.source_urls == ["https://guide.example"]
