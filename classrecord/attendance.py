"""
Daily attendance reconciliation.

A roster submission for one (course, day) is diffed against what is already
stored: students with a record get an update, the rest get an insert. The
whole batch is applied in one transaction, so a failure part way through
leaves the day exactly as it was.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from classrecord.config import EngineConfig
from classrecord.leaderboard import student_sort_key
from classrecord.records import (
    AttendanceRankEntry,
    AttendanceRecord,
    AttendanceStats,
    AttendanceStatus,
    DateLike,
    ReconcileResult,
    SubmittedAttendance,
    day_bounds,
)
from classrecord.store import AttendanceStore

logger = logging.getLogger(__name__)


def normalize_reason(status: AttendanceStatus, reason: Optional[str]) -> Optional[str]:
    """Only EXCUSED entries keep a reason; blank reasons become None."""
    if status is not AttendanceStatus.EXCUSED or reason is None:
        return None
    reason = reason.strip()
    return reason or None


def chunked(items: List, size: int):
    for start in range(0, len(items), size):
        yield items[start : start + size]


class _KeyedLocks:
    """One lock per (course, day) so same-day submissions apply one at a time.

    Entries are reference counted and dropped once no caller holds or waits
    on them.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Any, List] = {}

    def __len__(self):
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]


def _day_key(course_id, start):
    # "1" and 1 name the same course
    return str(course_id), start


# Shared by every reconciler in the process
_DAY_LOCKS = _KeyedLocks()


class AttendanceReconciler:
    def __init__(self, store: AttendanceStore, config: Optional[EngineConfig] = None):
        self.store = store
        self.config = config or EngineConfig()
        self._locks = _DAY_LOCKS

    def _accept(self, submitted: Iterable[Union[SubmittedAttendance, Mapping]]):
        raw = list(submitted)
        result = ReconcileResult(submitted=len(raw))
        limit = self.config.attendance_max_batch
        if len(raw) > limit:
            warning = (
                f"Attendance batch of {len(raw)} records exceeds the limit of "
                f"{limit}; only the first {limit} were processed"
            )
            logger.warning(warning)
            result.truncated = True
            result.warnings.append(warning)
            raw = raw[:limit]

        # Entries past the limit are never parsed
        entries = [
            s if isinstance(s, SubmittedAttendance) else SubmittedAttendance.from_dict(s)
            for s in raw
        ]
        unique: Dict[Any, SubmittedAttendance] = {}
        for entry in entries:
            if entry.student_id in unique:
                logger.info(
                    f"Ignoring repeated attendance entry for student {entry.student_id}"
                )
                continue
            unique[entry.student_id] = entry
        return result, list(unique.values())

    def reconcile(
        self,
        course_id,
        on_date: DateLike,
        submitted: Iterable[Union[SubmittedAttendance, Mapping]],
    ) -> ReconcileResult:
        """Apply a day's roster submission; returns counts of updated and created rows.

        Raises StoreError (after a full rollback) when storage fails.
        """
        start, end = day_bounds(on_date)
        result, entries = self._accept(submitted)
        if not entries:
            return result

        with self._locks.hold(_day_key(course_id, start)):
            with self.store.transaction():
                existing = {
                    record.student_id: record
                    for record in self.store.find_existing(
                        course_id, start, end, [e.student_id for e in entries]
                    )
                }

                to_update = []
                to_create = []
                for entry in entries:
                    reason = normalize_reason(entry.status, entry.reason)
                    record = existing.get(entry.student_id)
                    if record is not None:
                        to_update.append(
                            {"id": record.id, "status": entry.status.value, "reason": reason}
                        )
                    else:
                        to_create.append(
                            {
                                "student_id": entry.student_id,
                                "course_id": course_id,
                                "date": start,
                                "status": entry.status.value,
                                "reason": reason,
                            }
                        )

                for chunk in chunked(to_update, self.config.attendance_update_chunk):
                    result.updated += self.store.update_statuses(chunk)
                result.created = self.store.insert_ignoring_duplicates(to_create)

        logger.info(
            f"Attendance for course {course_id} on {start.date()}: "
            f"{result.updated} updated, {result.created} created"
        )
        return result

    def attendance_for_day(self, course_id, on_date: DateLike) -> List[AttendanceRecord]:
        start, end = day_bounds(on_date)
        return self.store.records_between(course_id, start, end)

    def clear(self, course_id, on_date: DateLike) -> int:
        """Delete every record for the course on that day."""
        start, end = day_bounds(on_date)
        with self._locks.hold(_day_key(course_id, start)):
            with self.store.transaction():
                deleted = self.store.delete_between(course_id, start, end)
        logger.info(f"Cleared {deleted} attendance record(s) for course {course_id} on {start.date()}")
        return deleted

    def recorded_dates(self, course_id) -> List[date]:
        days = []
        for value in self.store.distinct_dates(course_id):
            day = value.date() if hasattr(value, "date") else value
            if day not in days:
                days.append(day)
        return days

    def stats(self, course_id) -> AttendanceStats:
        counts = self.store.status_counts(course_id)
        total = sum(counts.values())
        present = counts.get(AttendanceStatus.PRESENT, 0)
        return AttendanceStats(
            total_records=total,
            total_present=present,
            total_absent=counts.get(AttendanceStatus.ABSENT, 0),
            total_late=counts.get(AttendanceStatus.LATE, 0),
            total_excused=counts.get(AttendanceStatus.EXCUSED, 0),
            attendance_rate=round(present / total * 100) if total > 0 else 0,
        )

    def ranking(self, course_ids: Iterable) -> List[AttendanceRankEntry]:
        """Rank students by attendance rate across one or more courses.

        Only students with at least one record appear. Equal rates fall back
        to more PRESENT records, then student id ascending.
        """
        tallies = self.store.student_status_counts(list(course_ids))
        rows = []
        for student_id, counts in tallies.items():
            present = counts.get(AttendanceStatus.PRESENT, 0)
            sessions = sum(counts.values())
            if sessions <= 0:
                continue
            rows.append(
                (
                    student_id,
                    counts,
                    present,
                    sessions,
                    present / sessions * 100.0,
                )
            )
        rows.sort(key=lambda row: (-row[4], -row[2], student_sort_key(row[0])))
        return [
            AttendanceRankEntry(
                student_id=student_id,
                total_present=present,
                total_absent=counts.get(AttendanceStatus.ABSENT, 0),
                total_late=counts.get(AttendanceStatus.LATE, 0),
                total_excused=counts.get(AttendanceStatus.EXCUSED, 0),
                total_sessions=sessions,
                attendance_rate=rate,
                rank=position,
            )
            for position, (student_id, counts, present, sessions, rate) in enumerate(
                rows, start=1
            )
        ]

    def rankings_by_course(self, course_ids: Iterable) -> Dict[Any, List[AttendanceRankEntry]]:
        """A separate attendance ranking for each course."""
        return {course_id: self.ranking([course_id]) for course_id in course_ids}
