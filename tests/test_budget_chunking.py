"""Tests for text clipping, chunk windowing, local summaries and digest assembly."""

from chatmarkets.budget import TRUNCATION_MARKER, clip_text, needs_chunking
from chatmarkets.chunking import (
    build_chunked_digest,
    split_newest_first,
    summarize_chunk_locally,
)


def _transcript(length):
    """Build a chat-shaped transcript of exactly `length` characters."""
    lines = []
    index = 0
    while sum(len(line) + 1 for line in lines) < length:
        lines.append(f"[21/2/26, 20:{index % 60:02d}] Dana: message number {index} about tonight")
        index += 1
    return "\n".join(lines)[:length]


# ---------------------------------------------------------------------------
# clip_text
# ---------------------------------------------------------------------------

class TestClipText:
    def test_text_within_budget_is_unchanged(self):
        assert clip_text("short chat", 100) == "short chat"

    def test_keeps_head_and_tail(self):
        text = "".join(chr(97 + i % 26) for i in range(50_000))
        clipped = clip_text(text, 40_000)

        head, tail = 4_000, 40_000 - 4_000 - 64
        assert clipped == text[:head] + TRUNCATION_MARKER + text[-tail:]
        assert len(clipped) <= 40_000

    def test_minimum_tail(self):
        text = "x" * 5_000
        clipped = clip_text(text, 1_000)
        assert clipped.startswith("x" * 100 + TRUNCATION_MARKER)
        assert len(clipped) == 100 + len(TRUNCATION_MARKER) + 1_500

    def test_needs_chunking_threshold(self, make_config):
        config = make_config(max_input_chars=5_000)
        assert not needs_chunking("a" * 5_000, config)
        assert needs_chunking("a" * 5_001, config)


# ---------------------------------------------------------------------------
# split_newest_first
# ---------------------------------------------------------------------------

class TestSplitNewestFirst:
    def test_short_text_is_one_chunk(self):
        assert split_newest_first("hello", 12_000, 1_000, 10) == ["hello"]

    def test_windows_walk_back_from_the_end(self):
        text = "".join(str(i % 10) for i in range(30_000))
        chunks = split_newest_first(text, 12_000, 1_000, 10)

        assert chunks == [text[18_000:30_000], text[7_000:19_000], text[0:8_000]]

    def test_neighbours_overlap(self):
        text = "".join(chr(65 + i % 26) for i in range(30_000))
        chunks = split_newest_first(text, 12_000, 1_000, 10)

        for newer, older in zip(chunks, chunks[1:]):
            assert newer[:1_000] == older[-1_000:]

    def test_chunks_cover_the_whole_text(self):
        text = _transcript(47_321)
        chunks = split_newest_first(text, 12_000, 1_000, 10)

        assert chunks[0] == text[-12_000:]
        assert text.startswith(chunks[-1])
        covered = sum(len(chunk) for chunk in chunks) - 1_000 * (len(chunks) - 1)
        assert covered == len(text)

    def test_max_chunks_bounds_the_count(self):
        text = "z" * 100_000
        chunks = split_newest_first(text, 12_000, 1_000, 3)
        assert len(chunks) == 3


# ---------------------------------------------------------------------------
# summarize_chunk_locally
# ---------------------------------------------------------------------------

class TestLocalSummary:
    def test_extracts_names_facts_and_quotes_newest_first(self):
        chunk = "\n".join([
            "Dana: let's meet tonight at 9",
            "Avi: I'll bring the snacks for everyone",
            "Noa: ok",
        ])
        lines = summarize_chunk_locally(chunk, 2_000).splitlines()

        assert lines[0] == "Names: Noa, Avi, Dana"
        assert lines[1] == (
            "Facts: Avi: I'll bring the snacks for everyone | Dana: let's meet tonight at 9"
        )
        assert lines[2] == "Quotes: \"I'll bring the snacks for everyone\" | \"let's meet tonight at 9\""
        assert lines[3] == "Recency: prioritized newest lines in this chunk."
        assert lines[4].startswith("Uncertainty:")

    def test_defaults_when_nothing_matches(self):
        summary = summarize_chunk_locally("hello there", 2_000)

        assert "Names: None detected" in summary
        assert "Facts: No clear logistics extracted" in summary
        assert "Quotes: No stable quotes extracted" in summary

    def test_summary_is_capped(self):
        chunk = "\n".join(f"Person{i}: we plan to meet at {i} tonight for sure" for i in range(50))
        assert len(summarize_chunk_locally(chunk, 150)) == 150


# ---------------------------------------------------------------------------
# build_chunked_digest
# ---------------------------------------------------------------------------

class TestChunkedDigest:
    def test_local_digest_fits_the_budget(self, make_config, sink, backend):
        scripted = backend()
        config = make_config(max_input_chars=40_000, chunk_size=12_000, chunk_overlap=1_000)
        text = _transcript(50_000)

        digest = build_chunked_digest(text, config, sink)

        assert len(digest) <= 40_000
        assert digest.startswith("RecentChunkRank 1/5\n")
        assert "RecentChunkRank 5/5\n" in digest
        assert scripted.calls == []
        assert sink.find("chunking:start")[0]["chunk_count"] == 5
        assert len(sink.find("chunk:summary:done")) == 5
        assert sink.names()[-1] == "chunking:digest-ready"

    def test_backend_summaries_with_per_chunk_fallback(self, make_config, sink, backend, reply, failure):
        scripted = backend(
            reply("Names: Dana\nFacts: dinner friday"),
            failure("Upstream unavailable", status_code=502),
        )
        config = make_config(use_llm_chunk_summary=True, max_input_chars=15_000)
        text = _transcript(20_000)

        digest = build_chunked_digest(text, config, sink)

        assert "RecentChunkRank 1/2\nNames: Dana\nFacts: dinner friday" in digest
        assert "RecentChunkRank 2/2\nNames: Dana" in digest
        assert "Fallback extraction used" in digest

        request = scripted.calls[0]["json"]
        assert request["temperature"] == 0
        assert request["max_tokens"] == 900

        fallbacks = sink.find("chunk:summary:fallback")
        assert len(fallbacks) == 1
        assert fallbacks[0]["chunk_index"] == 2
        assert "Upstream unavailable" in fallbacks[0]["error"]

    def test_empty_backend_summary_uses_local_extraction(self, make_config, sink, backend, reply):
        backend(reply(""), reply("   "))
        config = make_config(use_llm_chunk_summary=True, max_input_chars=15_000)

        digest = build_chunked_digest(_transcript(20_000), config, sink)

        assert len(sink.find("chunk:summary:fallback")) == 2
        assert digest.count("Fallback extraction used") == 2

    def test_backend_summary_is_clipped(self, make_config, sink, backend, reply):
        backend(reply("S" * 5_000), reply("T" * 5_000))
        config = make_config(
            use_llm_chunk_summary=True, max_input_chars=15_000, chunk_summary_chars=300
        )

        digest = build_chunked_digest(_transcript(20_000), config, sink)

        assert "S" * 300 + "\n\n" in digest
        assert "S" * 301 not in digest
