"""
Text segmentation for knowledge ingestion.

Chunks are built from paragraphs first, then sentences, and only fall back to
character splitting when a single sentence is longer than ``max_chars``.
Everything here is pure and deterministic.
"""

from __future__ import annotations

import html as html_lib
import re
from typing import List

from knowledge.errors import ValidationIssue

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")

_HTML_DROP_BLOCKS = re.compile(
    r"<(script|style|nav|footer|noscript)[^>]*>.*?</\1\s*>",
    re.IGNORECASE | re.DOTALL,
)
_HTML_COMMENTS = re.compile(r"<!--.*?-->", re.DOTALL)
_HTML_TAGS = re.compile(r"<[^>]+>")


def _validate_params(max_chars: int, overlap: int) -> None:
    if isinstance(max_chars, bool) or not isinstance(max_chars, int) or max_chars <= 0:
        raise ValidationIssue("max_chars must be a positive integer", field="max_chars", error_type="out_of_range")
    if isinstance(overlap, bool) or not isinstance(overlap, int) or overlap < 0:
        raise ValidationIssue("overlap must be a non-negative integer", field="overlap", error_type="out_of_range")
    if overlap >= max_chars:
        raise ValidationIssue("overlap must be smaller than max_chars", field="overlap", error_type="out_of_range")


def _hard_split(sentence: str, max_chars: int) -> List[str]:
    pieces = []
    remaining = sentence
    while len(remaining) > max_chars:
        window = remaining[:max_chars + 1]
        cut = window.rfind(" ")
        if cut <= 0:
            cut = max_chars
        piece = remaining[:cut].strip()
        if piece:
            pieces.append(piece)
        remaining = remaining[cut:].strip()
    if remaining:
        pieces.append(remaining)
    return pieces


def _split_units(text: str, max_chars: int) -> List[tuple[str, str]]:
    """Return (separator, unit) pairs; every unit fits in max_chars."""
    units: List[tuple[str, str]] = []
    for paragraph in PARAGRAPH_BREAK.split(text):
        paragraph = " ".join(paragraph.split())
        if not paragraph:
            continue
        if len(paragraph) <= max_chars:
            units.append(("\n\n", paragraph))
            continue
        separator = "\n\n"
        for sentence in SENTENCE_BREAK.split(paragraph):
            sentence = sentence.strip()
            if not sentence:
                continue
            pieces = [sentence] if len(sentence) <= max_chars else _hard_split(sentence, max_chars)
            for piece in pieces:
                units.append((separator, piece))
                separator = " "
    return units


def _overlap_tail(chunk: str, overlap: int) -> str:
    if overlap <= 0 or len(chunk) <= overlap:
        return ""
    tail = chunk[-overlap:]
    space = tail.find(" ")
    if space < 0:
        return ""
    return tail[space + 1:].strip()


def segment_text(text: str, max_chars: int = 1500, overlap: int = 0) -> List[str]:
    """
    Split text into bounded chunks suitable for embedding.

    Args:
        text: Raw text (document, scraped page, conversation exchange)
        max_chars: Hard upper bound on chunk length
        overlap: Max characters of the previous chunk repeated at the start
            of the next one (word-aligned, only when it fits)

    Returns:
        Non-empty, trimmed chunks in source order. Empty input yields [].
    """
    _validate_params(max_chars, overlap)
    if not isinstance(text, str) or not text.strip():
        return []

    chunks: List[str] = []
    current = ""
    for separator, unit in _split_units(text, max_chars):
        if not current:
            current = unit
            continue
        if len(current) + len(separator) + len(unit) <= max_chars:
            current = current + separator + unit
            continue
        chunks.append(current)
        tail = _overlap_tail(current, overlap)
        if tail and len(tail) + 1 + len(unit) <= max_chars:
            current = tail + " " + unit
        else:
            current = unit
    if current:
        chunks.append(current)
    return [chunk.strip() for chunk in chunks if chunk.strip()]


def clean_html(raw_html: str, max_chars: int = 12000) -> str:
    """Strip markup and boilerplate blocks from a scraped page."""
    if not isinstance(raw_html, str) or not raw_html.strip():
        return ""
    cleaned = _HTML_DROP_BLOCKS.sub(" ", raw_html)
    cleaned = _HTML_COMMENTS.sub(" ", cleaned)
    cleaned = re.sub(r"<\s*(br|/p|/div|/li|/h[1-6]|/tr)\b[^>]*>", "\n\n", cleaned, flags=re.IGNORECASE)
    cleaned = _HTML_TAGS.sub(" ", cleaned)
    cleaned = html_lib.unescape(cleaned)
    paragraphs = [" ".join(block.split()) for block in PARAGRAPH_BREAK.split(cleaned)]
    cleaned = "\n\n".join(block for block in paragraphs if block)
    if max_chars and len(cleaned) > max_chars:
        cleaned = cleaned[:max_chars].rstrip() + "..."
    return cleaned


def format_exchange(user_message: str, assistant_message: str) -> str:
    """Render one customer/assistant exchange as a single ingestible text."""
    parts = []
    if user_message and user_message.strip():
        parts.append(f"Customer: {user_message.strip()}")
    if assistant_message and assistant_message.strip():
        parts.append(f"Assistant: {assistant_message.strip()}")
    return "\n".join(parts)
