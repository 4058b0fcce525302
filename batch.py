"""
Batch controller: runs a full reconciliation one page per invocation
"""

import logging
import os
import socket
import uuid
from typing import Dict, Optional

from directions import DirectionPager
from errors import BatchLockedError, CollaboratorError
from records import Direction, PageReport
from state import StateStore
from stepper import DEFAULT_PAGE_SIZE, Stepper


logger = logging.getLogger(__name__)


PHASE_POPULATE = 0
PHASE_REMOVE = 1
PHASE_DONE = 2

PHASE_LABELS = {
    PHASE_POPULATE: "Populating memberships",
    PHASE_REMOVE: "Removing stale memberships",
    PHASE_DONE: "Done",
}

DEFAULT_LOCK_TIMEOUT = 600


def progress(phase: int, finished: bool, range_from: int = 0, range_to: int = 0,
             report: Optional[PageReport] = None, retry: bool = False,
             locked: bool = False) -> Dict:
    """The report returned to whoever triggered an invocation."""
    report = report or PageReport()
    return {
        "finished": finished,
        "phase": phase,
        "phase_label": PHASE_LABELS.get(phase, str(phase)),
        "range_from": range_from,
        "range_to": range_to,
        "processed": report.processed,
        "changed": report.changed,
        "skipped": report.skipped,
        "failed": report.failed,
        "retry": retry,
        "locked": locked,
    }


class BatchLock:
    """Holds the state store lock of one batch identifier."""

    def __init__(self, state: StateStore, identifier: str, timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.state = state
        self.identifier = identifier
        self.timeout = timeout
        self.owner = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

    def __enter__(self):
        if not self.state.lock_acquire(self.identifier, self.owner, self.timeout):
            raise BatchLockedError(f"Batch {self.identifier} is already running")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.state.lock_release(self.identifier, self.owner)
        return False


class BatchController:
    """
    Sequences populate -> remove -> done for a batch identifier.

    Each call to run() handles exactly one page of one phase and then
    persists the cursor. The cursor is deleted once the last phase ends,
    which is what callers see as finished.
    """

    def __init__(self, state: StateStore, directions: Dict[Direction, DirectionPager],
                 page_size: int = DEFAULT_PAGE_SIZE, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.state = state
        self.directions = directions
        self.page_size = page_size
        self.lock_timeout = lock_timeout

    def _pager(self, direction) -> DirectionPager:
        return self.directions[Direction(direction)]

    def run(self, identifier: str, direction, page_size: Optional[int] = None) -> Dict:
        """Process one page for identifier. page_size 0 processes everything at once."""
        if page_size == 0:
            return self.run_all(direction, identifier)
        try:
            with BatchLock(self.state, identifier, self.lock_timeout):
                return self._step(identifier, self._pager(direction), page_size)
        except BatchLockedError as e:
            logger.info(f"{e}, not running")
            cursor = self.state.cursor_get(identifier)
            phase = cursor["phase"] if cursor else PHASE_POPULATE
            return progress(phase, finished=False, locked=True)

    def _step(self, identifier: str, pager: DirectionPager, page_size: Optional[int]) -> Dict:
        stepper = Stepper(self.state, identifier, self.page_size)
        stepper.initialise()
        if page_size:
            stepper.step_count_set(page_size)

        phase = stepper.phase
        if phase >= PHASE_DONE:
            stepper.delete()
            return progress(PHASE_DONE, finished=True)

        if phase == PHASE_POPULATE:
            read, apply = pager.populate_read, pager.populate_apply
        else:
            read, apply = pager.remove_read, pager.remove_apply

        offset = stepper.get()
        limit = stepper.step_count_get()
        range_from = stepper.cursor.total
        try:
            records = read(limit, offset)
        except CollaboratorError as e:
            logger.warning(f"Batch {identifier}: reading page at {offset} failed, retry later: {e}")
            return progress(phase, finished=False, range_from=range_from,
                            range_to=range_from, retry=True)

        logger.info(
            f"Batch {identifier}: {PHASE_LABELS[phase]} {range_from + 1}-{range_from + len(records)}"
        )
        report = apply(records)
        next_offset = stepper.next(report.removed)
        stepper.visited(len(records))
        range_to = stepper.cursor.total

        try:
            more = read(1, next_offset)
        except CollaboratorError as e:
            # The page is applied again next time, which changes nothing
            logger.warning(f"Batch {identifier}: reading ahead failed, retry later: {e}")
            return progress(phase, finished=False, range_from=range_from,
                            range_to=range_to, report=report, retry=True)

        if more:
            stepper.save()
            return progress(phase, finished=False, range_from=range_from,
                            range_to=range_to, report=report)

        phase += 1
        logger.info(f"Batch {identifier}: phase {PHASE_LABELS[phase]}")
        if phase >= PHASE_DONE:
            stepper.delete()
            logger.info(f"Batch {identifier} finished")
            return progress(PHASE_DONE, finished=True, range_from=range_from,
                            range_to=range_to, report=report)
        stepper.phase_set(phase)
        stepper.save()
        return progress(phase, finished=False, range_from=range_from,
                        range_to=range_to, report=report)

    def run_all(self, direction, identifier: Optional[str] = None) -> Dict:
        """Populate then remove over the whole directory in one call, without a cursor."""
        pager = self._pager(direction)
        identifier = identifier or f"all_{pager.direction.value}"
        try:
            with BatchLock(self.state, identifier, self.lock_timeout):
                report = PageReport()
                for phase, read, apply in (
                    (PHASE_POPULATE, pager.populate_read, pager.populate_apply),
                    (PHASE_REMOVE, pager.remove_read, pager.remove_apply),
                ):
                    logger.info(f"Batch {identifier}: {PHASE_LABELS[phase]}")
                    try:
                        records = read(0, 0)
                    except CollaboratorError as e:
                        logger.warning(f"Batch {identifier}: reading failed, retry later: {e}")
                        return progress(phase, finished=False, report=report, retry=True)
                    report = report.merge(apply(records))
        except BatchLockedError as e:
            logger.info(f"{e}, not running")
            return progress(PHASE_POPULATE, finished=False, locked=True)
        logger.info(f"Batch {identifier} finished: {report.processed} records processed")
        return progress(PHASE_DONE, finished=True, range_to=report.processed, report=report)

    def stop(self, identifier: str) -> bool:
        """Cancel a batch by deleting its cursor."""
        deleted = self.state.cursor_delete(identifier)
        if deleted:
            logger.info(f"Stopped batch {identifier}")
        return deleted

    def status(self, identifier: str) -> Dict:
        cursor = self.state.cursor_get(identifier)
        if cursor is None:
            return progress(PHASE_DONE, finished=True)
        total = cursor["total"]
        return progress(cursor["phase"], finished=False, range_from=total, range_to=total)
