"""Markdown chunker: line-based token windows with overlap, heading-aware."""

from __future__ import annotations

import re

from recall.ingest.base import BaseChunker, RawChunk

# Matches H1, H2, H3 headings at the start of a line.
_HEADING_RE = re.compile(r"^#{1,3} ")


class MarkdownChunker(BaseChunker):
    """Split memory files into line-aligned passages.

    Strategy:
    - Lines accumulate while the running token count stays within
      ``chunk_tokens``.
    - When the next line would exceed the budget the current passage is
      emitted and the next one starts with the trailing lines of the previous
      passage that fit in ``overlap_tokens`` (never the whole passage).
    - A H1/H2/H3 heading that causes a flush starts a fresh passage with no
      overlap, so sections do not bleed into each other.
    - A single line larger than the budget becomes its own passage.
    - Whitespace-only passages are dropped.
    """

    def chunk(self, content: str) -> list[RawChunk]:
        if not content.strip():
            return []

        chunks: list[RawChunk] = []
        # (line_number, text, cost)
        current: list[tuple[int, str, int]] = []
        current_tokens = 0
        carried = 0  # leading entries of *current* copied from the previous passage

        for lineno, line in enumerate(content.splitlines(), start=1):
            cost = self.line_cost(line)

            if current and current_tokens + cost > self.chunk_tokens:
                if len(current) > carried:
                    self._emit(chunks, current)
                    if _HEADING_RE.match(line):
                        current = []
                    else:
                        current = self._overlap(current, cost)
                else:
                    current = []
                carried = len(current)
                current_tokens = sum(c for _, _, c in current)

            current.append((lineno, line, cost))
            current_tokens += cost

        if len(current) > carried:
            self._emit(chunks, current)
        return chunks

    def _overlap(
        self, lines: list[tuple[int, str, int]], next_cost: int
    ) -> list[tuple[int, str, int]]:
        """Trailing *lines* totalling at most ``overlap_tokens``.

        The carried lines plus the next line must still fit in the budget.
        """
        limit = min(self.overlap_tokens, self.chunk_tokens - next_cost)
        kept: list[tuple[int, str, int]] = []
        total = 0
        for entry in reversed(lines[1:]):
            if total + entry[2] > limit:
                break
            kept.append(entry)
            total += entry[2]
        kept.reverse()
        return kept

    @staticmethod
    def _emit(chunks: list[RawChunk], lines: list[tuple[int, str, int]]) -> None:
        text = "\n".join(text for _, text, _ in lines)
        if text.strip():
            chunks.append(RawChunk(start_line=lines[0][0], end_line=lines[-1][0], text=text))
