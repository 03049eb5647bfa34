"""Chunk model - a contiguous row slice of a 2-D dataset"""

from dataclasses import dataclass
from typing import Any, List, Sequence


@dataclass(frozen=True)
class Chunk:
    """Rows ``[start_row, start_row + len(rows))`` of the original dataset"""

    index: int  # Position of the chunk in the split
    start_row: int  # 0-based row offset in the original dataset
    rows: Sequence[Sequence[Any]]

    @property
    def end_row(self) -> int:
        """Exclusive end row offset"""
        return self.start_row + len(self.rows)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def cell_count(self) -> int:
        return sum(len(row) for row in self.rows)

    def to_list(self) -> List[List[Any]]:
        """Copy rows into plain lists"""
        return [list(row) for row in self.rows]
