"""Tests for PageResult, the content hash and block page detection."""

from eventcrawl.runtime.results import BlockSignal, EngineError, PageResult, classify_blocks, compute_content_hash


class TestPageResult:
    def test_ok_range(self):
        assert PageResult(final_url="u", status_code=200).ok
        assert PageResult(final_url="u", status_code=304).ok
        assert not PageResult(final_url="u", status_code=404).ok
        assert not PageResult(final_url="u", status_code=None).ok

    def test_error_is_never_ok(self):
        result = PageResult(
            final_url="u",
            status_code=200,
            error=EngineError(type="Timeout", message="slow", is_retryable=True),
        )
        assert not result.ok
        assert result.short_error() == "Timeout: slow"

    def test_short_error(self):
        assert PageResult(final_url="u", status_code=200).short_error() == ""
        assert PageResult(final_url="u", status_code=500).short_error() == "HTTP 500"
        assert PageResult(final_url="u").short_error() == "Unknown Error"


class TestContentHash:
    """The hash must ignore per-request noise but not content changes."""

    def test_tokens_and_timestamps_are_ignored(self):
        a = '<script>window.csrfToken = "abc123";</script><p>Koningsdag</p><span>1718000000000</span>'
        b = '<script>window.csrfToken = "zzz999";</script><p>Koningsdag</p><span>1718000099999</span>'
        assert compute_content_hash(a) == compute_content_hash(b)

    def test_whitespace_is_ignored(self):
        assert compute_content_hash("<p>a  b</p>\n") == compute_content_hash("<p>a b</p>")

    def test_content_change_changes_hash(self):
        assert compute_content_hash("<p>Koningsdag</p>") != compute_content_hash("<p>Bevrijdingsdag</p>")

    def test_page_result_exposes_hash(self):
        result = PageResult(final_url="u", status_code=200, html="<p>x</p>")
        assert result.content_hash == compute_content_hash("<p>x</p>")
        assert len(result.content_hash) == 64


class TestClassifyBlocks:
    def test_captcha_page(self):
        assert BlockSignal.CAPTCHA_PRESENT in classify_blocks("<h1>Please verify you are human</h1>")

    def test_dutch_access_denied(self):
        assert classify_blocks("<p>Toegang geweigerd</p>") == [BlockSignal.LIKELY_BLOCKED]

    def test_regular_page(self):
        assert classify_blocks("<h1>Agenda</h1><p>Concert in de Spiegel</p>") == []

    def test_large_pages_are_not_classified(self):
        assert classify_blocks("captcha " + "x" * 25_000) == []
