"""
Chunked digest construction for oversized transcripts.

Transcripts larger than the input budget are cut into overlapping chunks,
newest content first. Each chunk is summarised (locally by default, or by the
backend when configured) and the labelled summaries are joined into one
digest that fits a single request.
"""

import logging
import re
import time
from typing import Optional

from chatmarkets.backend_client import ChatTurn, create_completion
from chatmarkets.budget import clip_text
from chatmarkets.config import Config
from chatmarkets.errors import EmptyBackendOutputError, MarketGenerationError
from chatmarkets.events import EventSink, LoggingEventSink
from chatmarkets.prompts import CHUNK_SYSTEM_PROMPT, chunk_user_prompt

# Configure module logger
logger = logging.getLogger(__name__)

CHUNK_SUMMARY_MAX_TOKENS = 900

_NAME_CANDIDATE = re.compile(r"[-\s]?([A-Z][a-zA-Z]{2,})[:,-]")
_LOGISTICS_KEYWORDS = re.compile(
    r"\b(today|tonight|tomorrow|weekend|friday|saturday|sunday|pm|am|at\s+\d"
    r"|meet|bring|arrive|leave|book|plan)\b",
    re.IGNORECASE,
)


def split_newest_first(text: str, chunk_size: int, overlap: int, max_chunks: int) -> list[str]:
    """
    Split text into overlapping windows, newest content first.

    The first chunk is the last chunk_size characters; each following chunk
    ends overlap characters after the previous chunk's start. Splitting stops
    at the start of the text or after max_chunks chunks.

    Args:
        text: Source text
        chunk_size: Characters per chunk
        overlap: Characters shared by neighbouring chunks (must be < chunk_size)
        max_chunks: Maximum number of chunks

    Returns:
        List of chunks; [text] when text fits in one chunk
    """
    if len(text) <= chunk_size:
        return [text]

    chunks: list[str] = []
    end_cursor = len(text)

    while end_cursor > 0 and len(chunks) < max_chunks:
        start = max(0, end_cursor - chunk_size)
        chunks.append(text[start:end_cursor])

        if start == 0:
            break

        end_cursor = min(len(text), start + overlap)

    return chunks


def summarize_chunk_locally(chunk_text: str, summary_chars: int) -> str:
    """
    Extract names, logistics facts and quotes from a chunk without a backend.

    Lines are scanned newest first.

    Args:
        chunk_text: Chunk contents
        summary_chars: Length cap on the summary

    Returns:
        Plain-text summary
    """
    lines = [line.strip() for line in chunk_text.splitlines() if line.strip()]

    names: list[str] = []
    quotes: list[str] = []
    facts: list[str] = []

    for line in reversed(lines):
        name_match = _NAME_CANDIDATE.search(line)
        if name_match and name_match.group(1) not in names:
            names.append(name_match.group(1))

        if ":" in line:
            message = line.split(":", 1)[1].strip()
            if len(message) > 8 and len(quotes) < 10:
                quotes.append(f'"{message[:120]}"')

        if _LOGISTICS_KEYWORDS.search(line) and len(facts) < 10:
            facts.append(line[:140])

    summary = "\n".join([
        f"Names: {', '.join(names[:15]) or 'None detected'}",
        f"Facts: {' | '.join(facts) if facts else 'No clear logistics extracted'}",
        f"Quotes: {' | '.join(quotes) if quotes else 'No stable quotes extracted'}",
        "Recency: prioritized newest lines in this chunk.",
        "Uncertainty: Fallback extraction used due empty model output.",
    ])
    return summary[:summary_chars]


def summarize_chunk_with_backend(
    config: Config, chunk_text: str, rank: int, total: int, sink: EventSink
) -> str:
    """
    Summarise one chunk with a single backend call.

    Raises:
        MarketGenerationError: Any backend failure, or an empty summary
    """
    response = create_completion(
        config,
        [
            ChatTurn(role="system", content=CHUNK_SYSTEM_PROMPT),
            ChatTurn(
                role="user",
                content=chunk_user_prompt(chunk_text, rank, total, config.chunk_summary_chars),
            ),
        ],
        temperature=0,
        max_tokens=CHUNK_SUMMARY_MAX_TOKENS,
        sink=sink,
        attempt_label=f"chunk-{rank}",
    )

    trimmed = response.content.strip()
    if not trimmed:
        raise EmptyBackendOutputError("Chunk summary response was empty.")
    return trimmed[:config.chunk_summary_chars]


def build_chunked_digest(
    text: str, config: Config, sink: Optional[EventSink] = None
) -> str:
    """
    Reduce an oversized transcript to a digest within config.max_input_chars.

    Chunks are summarised one after another. A backend failure on one chunk
    is replaced by the local summary for that chunk and never propagates.

    Args:
        text: Trimmed transcript
        config: Pipeline configuration
        sink: Event sink for progress events

    Returns:
        Digest of labelled chunk summaries, clipped to the input budget
    """
    sink = sink or LoggingEventSink()
    chunks = split_newest_first(text, config.chunk_size, config.chunk_overlap, config.max_chunks)
    total = len(chunks)

    sink.record(
        "chunking:start",
        input_chars=len(text),
        chunk_count=total,
        chunk_size=config.chunk_size,
        chunk_overlap=config.chunk_overlap,
        max_chunks=config.max_chunks,
        order="newest-first",
        summary_mode="llm" if config.use_llm_chunk_summary else "local",
    )

    summaries: list[str] = []
    for rank, chunk in enumerate(chunks, 1):
        started_at = time.monotonic()
        sink.record("chunk:summary:start", chunk_index=rank, total=total, chunk_chars=len(chunk))

        if not config.use_llm_chunk_summary:
            summary = summarize_chunk_locally(chunk, config.chunk_summary_chars)
        else:
            try:
                summary = summarize_chunk_with_backend(config, chunk, rank, total, sink)
            except MarketGenerationError as e:
                logger.warning(f"Chunk {rank}/{total} summary failed, using local extraction: {e}")
                sink.record("chunk:summary:fallback", chunk_index=rank, total=total, error=str(e))
                summary = summarize_chunk_locally(chunk, config.chunk_summary_chars)

        summaries.append(f"RecentChunkRank {rank}/{total}\n{summary}")
        sink.record(
            "chunk:summary:done",
            chunk_index=rank,
            total=total,
            summary_chars=len(summary),
            elapsed_ms=int((time.monotonic() - started_at) * 1000),
        )

    digest = "\n\n".join(summaries)
    clipped = clip_text(digest, config.max_input_chars)
    sink.record("chunking:digest-ready", digest_chars=len(digest), clipped_digest_chars=len(clipped))
    return clipped
