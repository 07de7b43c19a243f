"""Word counting and word-budget trimming for assembled resource turns."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TrimResult:
    trimmed: str
    original_word_count: int
    trimmed_word_count: int

    @property
    def was_trimmed(self) -> bool:
        return self.trimmed_word_count < self.original_word_count


def count_words(text: str) -> int:
    """Count whitespace-delimited words. Empty or blank text has zero."""
    if not text:
        return 0
    return len(text.split())


def trim_to_word_limit(text: str, max_words: int) -> TrimResult:
    """Keep the first *max_words* words of *text*.

    Text at or under the limit is returned unchanged. Trimmed text is
    rejoined with single spaces, so original line breaks inside the kept
    span are not preserved.
    """
    words = text.split()
    original = len(words)
    if original <= max_words:
        return TrimResult(trimmed=text, original_word_count=original, trimmed_word_count=original)

    kept = words[: max(max_words, 0)]
    return TrimResult(
        trimmed=" ".join(kept),
        original_word_count=original,
        trimmed_word_count=len(kept),
    )
