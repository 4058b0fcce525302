"""
Persisted paging cursor for batch runs
"""

import logging
from dataclasses import dataclass
from typing import Optional

from state import StateStore


logger = logging.getLogger(__name__)


DEFAULT_PAGE_SIZE = 25


@dataclass
class Cursor:
    identifier: str
    phase: int = 0
    offset: int = 0
    page_size: int = DEFAULT_PAGE_SIZE
    # Records visited in the current phase
    total: int = 0


class Stepper:
    """
    Offset/limit state for one batch identifier.

    The cursor is loaded by initialise() and written back by save(); nothing
    reaches the state store in between, so a page that fails half way leaves
    the stored cursor where it was.
    """

    def __init__(self, state: StateStore, identifier: str,
                 default_page_size: int = DEFAULT_PAGE_SIZE):
        if default_page_size <= 0:
            raise ValueError("Page size must be a positive number")
        self.state = state
        self.identifier = identifier
        self.default_page_size = default_page_size
        self.cursor: Optional[Cursor] = None

    def exists(self) -> bool:
        return self.state.cursor_get(self.identifier) is not None

    def initialise(self) -> int:
        """Load the cursor, creating it if absent, and return the current offset."""
        row = self.state.cursor_get(self.identifier)
        if row is None:
            self.cursor = Cursor(identifier=self.identifier, page_size=self.default_page_size)
            self.save()
            logger.info(f"Created cursor for batch {self.identifier}")
        else:
            self.cursor = Cursor(
                identifier=self.identifier,
                phase=row["phase"],
                offset=row["page_offset"],
                page_size=row["page_size"],
                total=row["total"],
            )
        return self.cursor.offset

    def _loaded(self) -> Cursor:
        if self.cursor is None:
            self.initialise()
        return self.cursor

    def get(self) -> int:
        """Offset of the current page."""
        return self._loaded().offset

    def next_get(self) -> int:
        """Offset of the page after the current one."""
        cursor = self._loaded()
        return cursor.offset + cursor.page_size

    def next(self, shrink: int = 0) -> int:
        """
        Advance past the current page.

        shrink is the number of records of the current page that have left
        the listing being paged, so the records behind them moved up.
        """
        cursor = self._loaded()
        cursor.offset += max(cursor.page_size - shrink, 0)
        return cursor.offset

    def step_count_get(self) -> int:
        return self._loaded().page_size

    def step_count_set(self, page_size: int) -> None:
        # A whole-directory run never goes through a stepper
        if page_size <= 0:
            raise ValueError("Page size must be a positive number")
        self._loaded().page_size = page_size

    @property
    def phase(self) -> int:
        return self._loaded().phase

    def phase_set(self, phase: int) -> None:
        """Move to a new phase, starting again at the first record."""
        cursor = self._loaded()
        cursor.phase = phase
        cursor.offset = 0
        cursor.total = 0

    def visited(self, count: int) -> None:
        self._loaded().total += count

    def save(self) -> None:
        cursor = self.cursor
        self.state.cursor_put(
            cursor.identifier, cursor.phase, cursor.offset, cursor.page_size, cursor.total
        )

    def delete(self) -> bool:
        self.cursor = None
        return self.state.cursor_delete(self.identifier)
