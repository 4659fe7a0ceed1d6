"""
Prompt context assembly from retrieval results.
"""

from __future__ import annotations

from typing import Optional, Sequence

from knowledge.errors import ValidationIssue
from knowledge.types import RetrievalResult, normalize_text
from knowledge.validators import validate_limit

DEFAULT_PREFIX = "Relevant business info:"
SEPARATOR = "\n\n"


def assemble_context(
    results: Sequence[RetrievalResult],
    char_budget: int,
    max_segments: Optional[int] = None,
    prefix: str = DEFAULT_PREFIX,
) -> str:
    """
    Render segment texts most-relevant-first under a character budget.

    Filling stops at the first segment that does not fit; segments are never
    cut and less relevant ones never jump the queue. Repeated texts
    (after whitespace/case normalization) appear once. The prefix counts
    against the budget. Returns "" when nothing fits.
    """
    if isinstance(char_budget, bool) or not isinstance(char_budget, int) or char_budget < 0:
        raise ValidationIssue(
            "char_budget must be a non-negative integer",
            field="char_budget",
            error_type="out_of_range",
        )
    if max_segments is not None:
        validate_limit(max_segments, "max_segments")

    header = f"{prefix}{SEPARATOR}" if prefix else ""
    used = len(header)
    seen = set()
    picked = []
    for result in sorted(results, key=lambda item: item.score, reverse=True):
        if max_segments is not None and len(picked) >= max_segments:
            break
        key = normalize_text(result.text)
        if not key or key in seen:
            continue
        cost = len(result.text) + (len(SEPARATOR) if picked else 0)
        if used + cost > char_budget:
            break
        seen.add(key)
        picked.append(result.text)
        used += cost

    if not picked:
        return ""
    return header + SEPARATOR.join(picked)
