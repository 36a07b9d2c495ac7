"""
Roster Record Extractor

Turns one raw export row into Parent and Student records.

RULES:
- A row models exactly one family. Every parent in the row is attached to
  every student in the row (link_row_family). No joins across rows.
- A slot whose composed name is empty is absent. No empty-name records.
- "Unspecified" is the form's placeholder and normalizes to "".
- Malformed timestamps become NaT. Never raise on a bad row.
- Rows are never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping

import pandas as pd

from roster.ingestion.field_mapping import CompositeField, FieldMapping, ScalarField

PLACEHOLDER_TEXT = "Unspecified"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Parent:
    name: str
    email: str = ""
    phone: str = ""


@dataclass(frozen=True)
class Student:
    name: str
    grade: str = ""
    teacher: str = ""
    neighborhood_school: str = ""
    bus_route: str = ""
    parents: tuple[Parent, ...] = ()
    entry_id: str = ""
    date_created: pd.Timestamp = pd.NaT
    date_updated: pd.Timestamp = pd.NaT


@dataclass(frozen=True)
class RowExtraction:
    parents: tuple[Parent, ...] = ()
    students: tuple[Student, ...] = ()
    # Names of timestamp fields present in the row but unparseable.
    malformed_timestamps: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def normalize_text(value: Any) -> str:
    """Trimmed string, or "" for a missing value or the placeholder text."""
    if value is None:
        return ""
    text = str(value).strip()
    if text == PLACEHOLDER_TEXT:
        return ""
    return text


def compose_name(row: Mapping[str, Any], name_field: CompositeField) -> str:
    """Join the non-empty trimmed name parts with single spaces."""
    parts = []
    for value in name_field.values(row):
        if value is None:
            continue
        part = str(value).strip()
        if part:
            parts.append(part)
    return " ".join(parts).strip()


def parse_timestamp(value: Any) -> pd.Timestamp:
    """
    Parse a raw timestamp string into a UTC Timestamp.

    Naive values are taken as UTC so every parsed value is comparable.
    Missing or unparseable input returns NaT.
    """
    if value is None:
        return pd.NaT
    text = str(value).strip()
    if not text:
        return pd.NaT
    try:
        parsed = pd.to_datetime(text, errors="coerce", utc=True)
    except (ValueError, TypeError, OverflowError):
        return pd.NaT
    if parsed is None or pd.isna(parsed):
        return pd.NaT
    return parsed


def _timestamp(row: Mapping[str, Any], ts_field: ScalarField, malformed: list[str], name: str) -> pd.Timestamp:
    raw = ts_field.value(row)
    parsed = parse_timestamp(raw)
    if parsed is pd.NaT and normalize_text(raw):
        malformed.append(name)
    return parsed


# ---------------------------------------------------------------------------
# Join policy
# ---------------------------------------------------------------------------


def link_row_family(parents: tuple[Parent, ...], students: list[Student]) -> tuple[Student, ...]:
    """
    Attach every parent in a row to every student in the same row.

    This is a per-row broadcast, not a relational join. A stricter pairing
    rule can replace this function without touching extraction or merge.
    """
    return tuple(replace(s, parents=parents) for s in students)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def extract_parents(row: Mapping[str, Any], mapping: FieldMapping) -> tuple[Parent, ...]:
    parents = []
    for slot in mapping.parents:
        name = compose_name(row, slot.name)
        if not name:
            continue
        parents.append(Parent(
            name=name,
            email=normalize_text(slot.email.value(row)),
            phone=normalize_text(slot.phone.value(row)),
        ))
    return tuple(parents)


def extract_row(row: Mapping[str, Any], mapping: FieldMapping) -> RowExtraction:
    """
    Extract the family described by one row.

    Parameters
    ----------
    row : Mapping[str, Any]
        {field_id: value}. Missing identifiers read as empty.
    mapping : FieldMapping
        Output of resolve_field_mapping() for the row's column table.

    Returns
    -------
    RowExtraction
        Parents and students in slot order; each student carries the full
        parent tuple of its row.
    """
    malformed: list[str] = []

    neighborhood_school = normalize_text(mapping.neighborhood_school.value(row))
    bus_route = normalize_text(mapping.bus_route.value(row))
    entry_id = normalize_text(mapping.entry_id.value(row))
    date_created = _timestamp(row, mapping.date_created, malformed, "date_created")
    date_updated = _timestamp(row, mapping.date_updated, malformed, "date_updated")

    students: list[Student] = []
    for slot in mapping.students:
        name = compose_name(row, slot.name)
        if not name:
            continue
        students.append(Student(
            name=name,
            grade=normalize_text(slot.grade.value(row)),
            teacher=normalize_text(slot.teacher.value(row)),
            neighborhood_school=neighborhood_school,
            bus_route=bus_route,
            entry_id=entry_id,
            date_created=date_created,
            date_updated=date_updated,
        ))

    parents = extract_parents(row, mapping)
    return RowExtraction(
        parents=parents,
        students=link_row_family(parents, students),
        malformed_timestamps=tuple(malformed),
    )


def extract_students(row: Mapping[str, Any], mapping: FieldMapping) -> tuple[Student, ...]:
    return extract_row(row, mapping).students
