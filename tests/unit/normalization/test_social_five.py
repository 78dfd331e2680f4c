"""
Unit tests for the Social Five normalization pass.
"""

from datetime import date

import pytest

from eventcrawl.normalization.llm_client import LLMUnavailableError, NullLLMClient
from eventcrawl.normalization.social_five import (
    MAX_TEXT_CHARS,
    SocialFiveNormalizer,
    SocialFiveOutput,
    needs_normalization,
)

TODAY = date(2026, 6, 1)

COMPLETE = {
    "title": "Jazz in het Park",
    "description": "Zomeravond met jazz",
    "event_date": "2026-06-15",
    "start_time": "20:00",
    "venue_name": "Park de Wezenlanden",
}

AI_OUTPUT = SocialFiveOutput(
    title="Jazz in het Park",
    description="Een zomeravond vol jazz.",
    event_date="15-06-2026",
    start_time="8pm",
    end_time="22.30",
    venue_name="Park de Wezenlanden",
    street_address="Wezenlanden 1",
    city="Zwolle",
    estimated_duration_minutes=150,
    language_profile="NL",
    category="MUSIC",
    price_info="Gratis",
)


def run(normalizer, fields, confidence, text="pagina tekst"):
    return normalizer.normalize(fields, text=text, url="https://x.nl/jazz", confidence=confidence, today=TODAY)


class TestNeedsNormalization:
    def test_complete_high_fidelity_record_is_skipped(self):
        assert not needs_normalization(COMPLETE, "high")

    def test_high_fidelity_with_gap(self):
        assert needs_normalization({**COMPLETE, "venue_name": None}, "high")

    @pytest.mark.parametrize("confidence", ["medium", "low"])
    def test_lower_tiers_always_run(self, confidence):
        assert needs_normalization(COMPLETE, confidence)


class TestSocialFiveNormalizer:
    def test_disabled_without_llm(self):
        normalizer = SocialFiveNormalizer(NullLLMClient())
        assert not normalizer.enabled
        assert run(normalizer, {"title": "x"}, "low") == ({"title": "x"}, False)

    def test_complete_high_record_makes_no_call(self, scripted_llm):
        llm = scripted_llm([])
        fields, applied = run(SocialFiveNormalizer(llm), COMPLETE, "high")
        assert fields == COMPLETE
        assert not applied
        assert llm.calls == []

    def test_fills_gaps_and_parses_values(self, scripted_llm):
        fields, applied = run(SocialFiveNormalizer(scripted_llm([AI_OUTPUT])), {"title": "JAZZ!!"}, "medium")

        assert applied
        assert fields["title"] == "JAZZ!!"
        assert fields["event_date"] == "2026-06-15"
        assert fields["start_time"] == "20:00"
        assert fields["end_time"] == "22:30"
        assert fields["venue_name"] == "Park de Wezenlanden"
        assert fields["address"] == "Wezenlanden 1, Zwolle"
        assert fields["duration_minutes"] == 150
        assert fields["category"] == "MUSIC"
        assert fields["price_text"] == "Gratis"
        assert fields["language_profile"] == "NL"

    def test_low_confidence_text_is_replaced(self, scripted_llm):
        fields, _ = run(
            SocialFiveNormalizer(scripted_llm([AI_OUTPUT])),
            {"title": "JAZZ!! 15/6 20u", "event_date": "2026-06-14"},
            "low",
        )
        assert fields["title"] == "Jazz in het Park"
        # Parsed values are never overwritten.
        assert fields["event_date"] == "2026-06-14"

    def test_llm_failure_keeps_fields(self, scripted_llm):
        for error in (LLMUnavailableError("quota"), RuntimeError("provider exploded")):
            fields, applied = run(SocialFiveNormalizer(scripted_llm([error])), {"title": "Jazz"}, "low")
            assert fields == {"title": "Jazz"}
            assert not applied

    def test_prompt_carries_known_fields_and_truncated_text(self, scripted_llm):
        llm = scripted_llm([SocialFiveOutput()])
        run(SocialFiveNormalizer(llm), {"title": "Jazz", "venue_name": None}, "low", text="x" * (MAX_TEXT_CHARS + 100))

        call = llm.calls[0]
        assert call["schema"] is SocialFiveOutput
        assert "Today is 2026-06-01" in call["system"]
        assert "- title: Jazz" in call["user"]
        assert "venue_name" not in call["user"]
        assert "x" * MAX_TEXT_CHARS in call["user"]
        assert "x" * (MAX_TEXT_CHARS + 1) not in call["user"]
