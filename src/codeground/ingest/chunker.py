"""Bound CodeUnits to a maximum chunk size.

- Units within ``max_chunk_size`` pass through unchanged.
- Units under 1.2× the bound are kept whole, flagged ``is_large``.
- ``file`` units are split with a sliding window (10% overlap by default);
  segments are typed ``<type>_segment`` and discounted ×0.8.
- Other units are split into logical line groups (``is_part``), discounted ×0.9.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from codeground.db.models import CodeUnit

logger = logging.getLogger(__name__)

MAX_CHUNK_SIZE = 8_000
OVERLAP = 0.10
LARGE_TOLERANCE = 1.2
PART_DISCOUNT = 0.9
SEGMENT_DISCOUNT = 0.8


class SemanticChunker:
    """Turn parser output into size-bounded chunks, most important first."""

    def __init__(self, max_chunk_size: int = MAX_CHUNK_SIZE, overlap: float = OVERLAP) -> None:
        if max_chunk_size < 1:
            raise ValueError("max_chunk_size must be >= 1")
        if not 0.0 <= overlap < 1.0:
            raise ValueError("overlap must be in [0.0, 1.0)")
        self.max_chunk_size = max_chunk_size
        self.overlap = overlap

    def chunk(self, units: list[CodeUnit]) -> list[CodeUnit]:
        """Return bounded chunks for *units*, ordered by importance descending."""
        chunks: list[CodeUnit] = []
        for unit in sorted(units, key=lambda u: u.importance, reverse=True):
            if not isinstance(unit.content, str) or not unit.content:
                logger.warning("Skipping unit %r in %s: empty content", unit.name, unit.path)
                continue
            chunks.extend(self.split(unit))
        logger.debug("Created %d chunks from %d units", len(chunks), len(units))
        return chunks

    def split(self, unit: CodeUnit) -> list[CodeUnit]:
        size = len(unit.content)
        if size <= self.max_chunk_size:
            return [unit]
        if size < self.max_chunk_size * LARGE_TOLERANCE:
            return [replace(unit, name=f"{unit.name} (large)", is_large=True)]
        if unit.type == "file":
            return self.sliding_window(unit)
        return self.logical_parts(unit)

    # ------------------------------------------------------------------
    # Sliding window
    # ------------------------------------------------------------------

    def sliding_window(self, unit: CodeUnit) -> list[CodeUnit]:
        """Fixed windows of ``max_chunk_size`` chars advancing by ``window - overlap``.

        Every character of *unit* lands in at least one segment; segment line
        ranges are computed from character offsets and shifted by the unit's
        own start line.
        """
        content = unit.content
        window = self.max_chunk_size
        overlap = int(window * self.overlap)
        length = len(content)
        offset = unit.start_line - 1

        segments: list[CodeUnit] = []
        position = 0
        index = 1
        while position < length:
            end = min(position + window, length)
            text = content[position:end]
            start_line = content.count("\n", 0, position) + 1
            segments.append(
                CodeUnit(
                    type=f"{unit.type}_segment",
                    name=f"{unit.name} (segment {index})",
                    content=text,
                    path=unit.path,
                    start_line=start_line + offset,
                    end_line=start_line + text.count("\n") + offset,
                    importance=unit.importance * SEGMENT_DISCOUNT,
                    is_part=True,
                    part_index=index,
                    part_of=unit.name,
                )
            )
            if end >= length:
                break
            position = max(end - overlap, position + 1)
            # Next window would sit entirely inside the tail overlap.
            if position >= length - overlap:
                break
            index += 1
        return segments

    # ------------------------------------------------------------------
    # Logical line groups
    # ------------------------------------------------------------------

    def logical_parts(self, unit: CodeUnit) -> list[CodeUnit]:
        """Accumulate lines until the next would overflow, then emit a part.

        A single line longer than the bound is cut into bound-sized pieces
        that share its line number.
        """
        limit = self.max_chunk_size
        parts: list[CodeUnit] = []
        current: list[str] = []
        current_len = 0
        current_start = unit.start_line
        last_line = unit.start_line

        def _emit(end_line: int) -> None:
            index = len(parts) + 1
            parts.append(
                CodeUnit(
                    type=unit.type,
                    name=f"{unit.name} (part {index})",
                    content="\n".join(current),
                    path=unit.path,
                    start_line=current_start,
                    end_line=end_line,
                    importance=unit.importance * PART_DISCOUNT,
                    is_part=True,
                    part_index=index,
                    part_of=unit.name,
                )
            )

        for offset, line in enumerate(unit.content.split("\n")):
            line_no = unit.start_line + offset
            pieces = [line[i : i + limit] for i in range(0, len(line), limit)] or [""]
            for piece in pieces:
                added = len(piece) + (1 if current else 0)
                if current and current_len + added > limit:
                    _emit(last_line)
                    current = []
                    current_len = 0
                    current_start = line_no
                    added = len(piece)
                current.append(piece)
                current_len += added
                last_line = line_no

        if current:
            _emit(max(unit.end_line, last_line))
        return parts
