"""Tests for extraction dispatch."""

import json

import pytest

from booth_beacon.core.enums import ExtractorVariant
from booth_beacon.core.errors import ExtractionUnavailableError
from booth_beacon.core.schema import ExtractionPattern, RawContentSnapshot, Source
from booth_beacon.ingestion.engine import ExtractionEngine, pattern_is_usable

from conftest import FakeLLM

LIST_HTML = """
<div class="venue"><b class="title">Alpha Bar</b></div>
<div class="venue"><b class="title">Beta Bar</b></div>
"""
LLM_ANSWER = json.dumps({"booths": [{"name": "Gamma Bar"}]})


def _snapshot(source: Source, content: str) -> RawContentSnapshot:
    return RawContentSnapshot(
        source_id=source.id, url=source.urls[0], content=content, content_hash="0" * 64
    )


def _pattern(source: Source, **kwargs) -> ExtractionPattern:
    data = {
        "source_id": source.id,
        "container_selector": "div.venue",
        "field_selectors": {"name": "b.title"},
        "signature": "c" * 64,
    }
    data.update(kwargs)
    return ExtractionPattern(**data)


@pytest.fixture
def generic_source() -> Source:
    return Source(name="guide", urls=["https://guide.example/list"])


class TestDispatch:
    """Tests for choosing the extraction path."""

    @pytest.mark.asyncio
    async def test_specialized_never_calls_llm(self) -> None:
        """Test that a registered extractor_type bypasses the LLM."""
        source = Source(name="op", urls=["https://op.example"], extractor_type="json_ld")
        html = '<script type="application/ld+json">{"@type": "Place", "name": "Booth"}</script>'
        llm = FakeLLM()
        outcome = await ExtractionEngine(llm).extract(source, _snapshot(source, html))

        assert outcome.variant == ExtractorVariant.SPECIALIZED
        assert outcome.extractor_name == "json_ld"
        assert [c.name for c in outcome.candidates] == ["Booth"]
        assert llm.prompts == []

    @pytest.mark.asyncio
    async def test_usable_pattern_used(self, generic_source: Source) -> None:
        """Test that a usable pattern is tried first and skips the LLM."""
        llm = FakeLLM(responses=[LLM_ANSWER])
        outcome = await ExtractionEngine(llm).extract(
            generic_source, _snapshot(generic_source, LIST_HTML), _pattern(generic_source)
        )

        assert outcome.variant == ExtractorVariant.PATTERNED
        assert outcome.pattern_attempted is True
        assert outcome.pattern_candidates == 2
        assert outcome.fell_back is False
        assert llm.prompts == []

    @pytest.mark.asyncio
    async def test_pattern_zero_falls_back(self, generic_source: Source) -> None:
        """Test that a pattern finding nothing falls back to the LLM."""
        llm = FakeLLM(responses=[LLM_ANSWER])
        outcome = await ExtractionEngine(llm).extract(
            generic_source,
            _snapshot(generic_source, "<p>Redesigned page</p>"),
            _pattern(generic_source),
        )

        assert outcome.variant == ExtractorVariant.GENERIC
        assert outcome.pattern_attempted is True
        assert outcome.pattern_candidates == 0
        assert outcome.fell_back is True
        assert outcome.llm_calls == 1
        assert [c.name for c in outcome.candidates] == ["Gamma Bar"]

    @pytest.mark.asyncio
    async def test_pattern_below_floor_skipped(self, generic_source: Source) -> None:
        """Test that a pattern under the confidence floor is not tried."""
        llm = FakeLLM(responses=[LLM_ANSWER])
        outcome = await ExtractionEngine(llm, usable_floor=0.3).extract(
            generic_source,
            _snapshot(generic_source, LIST_HTML),
            _pattern(generic_source, confidence=0.2),
        )

        assert outcome.variant == ExtractorVariant.GENERIC
        assert outcome.pattern_attempted is False

    @pytest.mark.asyncio
    async def test_no_llm_configured(self, generic_source: Source) -> None:
        """Test that the generic path without an LLM raises."""
        with pytest.raises(ExtractionUnavailableError):
            await ExtractionEngine(None).extract(
                generic_source, _snapshot(generic_source, "<p>booths</p>")
            )

    @pytest.mark.asyncio
    async def test_unknown_extractor_type_uses_generic(self) -> None:
        """Test that an unregistered extractor_type goes through the LLM."""
        source = Source(name="odd", urls=["https://odd.example"], extractor_type="retired_scraper")
        llm = FakeLLM(responses=[LLM_ANSWER])
        outcome = await ExtractionEngine(llm).extract(source, _snapshot(source, "<p>x</p>"))
        assert outcome.variant == ExtractorVariant.GENERIC


class TestPatternIsUsable:
    """Tests for the usability check."""

    def test_flags(self, generic_source: Source) -> None:
        """Test each disqualifying flag."""
        assert pattern_is_usable(_pattern(generic_source), 0.3)
        assert not pattern_is_usable(None, 0.3)
        assert not pattern_is_usable(_pattern(generic_source, usable=False), 0.3)
        assert not pattern_is_usable(_pattern(generic_source, active=False), 0.3)
        assert not pattern_is_usable(_pattern(generic_source, confidence=0.29), 0.3)
