"""
Roster Reconciliation Engine

Folds extracted Student records into one record per student name.

RULES:
- Last writer wins on date_updated, strictly greater only.
- Equal timestamps keep the record processed first.
- NaT never beats a parsed timestamp.
- Same rows in, same mapping out. Re-processing is idempotent.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import reduce
from typing import Any, Iterable, Mapping

import pandas as pd

from roster.ingestion.extraction import Student, extract_row
from roster.ingestion.field_mapping import FieldMapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    students: dict[str, Student]
    extracted_count: int
    superseded_count: int
    malformed_timestamp_count: int

    @property
    def duplicate_count(self) -> int:
        """Extracted records that did not survive as their own entry."""
        return self.extracted_count - len(self.students)


def is_newer(candidate: pd.Timestamp, current: pd.Timestamp) -> bool:
    """True only when candidate is strictly later than current."""
    if pd.isna(candidate):
        return False
    if pd.isna(current):
        return True
    return candidate > current


def merge_student(collection: Mapping[str, Student], student: Student) -> Mapping[str, Student]:
    """
    One fold step. Returns `collection` itself when the stored record
    survives, otherwise a new mapping holding `student` under its name.
    """
    stored = collection.get(student.name)
    if stored is not None and not is_newer(student.date_updated, stored.date_updated):
        return collection
    return {**collection, student.name: student}


def reconcile_students(students: Iterable[Student]) -> dict[str, Student]:
    """Merge already-extracted students in the order given."""
    return dict(reduce(merge_student, students, {}))


def _extract_all(rows: Iterable[Mapping[str, Any]], mapping: FieldMapping) -> tuple[list[Student], int]:
    students: list[Student] = []
    malformed = 0
    for row in rows:
        extraction = extract_row(row, mapping)
        students.extend(extraction.students)
        malformed += len(extraction.malformed_timestamps)
    return students, malformed


def reconcile_with_stats(rows: Iterable[Mapping[str, Any]], mapping: FieldMapping) -> ReconcileResult:
    """
    Extract every row, then merge. Rows are processed in the order given.

    Returns
    -------
    ReconcileResult
        The merged {name: Student} mapping plus counts for the load report.
    """
    extracted, malformed = _extract_all(rows, mapping)

    superseded = 0
    merged: Mapping[str, Student] = {}
    for student in extracted:
        before = merged
        merged = merge_student(merged, student)
        if merged is not before and student.name in before:
            superseded += 1

    result = ReconcileResult(
        students=dict(merged),
        extracted_count=len(extracted),
        superseded_count=superseded,
        malformed_timestamp_count=malformed,
    )
    logger.info(
        "[reconcile] %d extracted → %d students (%d superseded, %d malformed timestamps)",
        result.extracted_count, len(result.students),
        result.superseded_count, result.malformed_timestamp_count,
    )
    return result


def reconcile(rows: Iterable[Mapping[str, Any]], mapping: FieldMapping) -> dict[str, Student]:
    """Extract and merge all rows into {student name: Student}."""
    extracted, _ = _extract_all(rows, mapping)
    return reconcile_students(extracted)
