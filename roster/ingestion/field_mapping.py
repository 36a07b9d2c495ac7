"""
Roster Field Mapping

Resolves a form-builder column table onto the fixed directory schema.

RULES:
- Exact label match only. Case-sensitive, punctuation included.
- First matching descriptor wins (column table iteration order).
- A label that does not resolve degrades to FIELD_NOT_FOUND. Never raises.
- Hidden sub-inputs of a composite field are dropped.
- Built once per data load. Read-only afterward.

Public API:
  resolve_field_mapping(column_info) -> FieldMapping
  get_missing_labels(mapping) -> list[str]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Schema labels
# ---------------------------------------------------------------------------

SLOT_COUNT: int = 4

# Not-found sentinel. Real field identifiers are always strings.
FIELD_NOT_FOUND = None

LABEL_DATE_CREATED = "meta:date_created"
LABEL_DATE_UPDATED = "meta:date_updated"
LABEL_ENTRY_ID = "meta:entry_id"
LABEL_BUS_ROUTE = "Bus Route"
LABEL_NEIGHBORHOOD_SCHOOL = "Neighborhood School"


def student_label(slot: int, suffix: str) -> str:
    return f"Student #{slot} {suffix}"


def parent_label(slot: int, suffix: str) -> str:
    return f"Parent / Guardian #{slot} {suffix}"


# ---------------------------------------------------------------------------
# Field variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ScalarField:
    """A single-valued column, located by its field identifier."""
    label: str
    field_id: Optional[str] = FIELD_NOT_FOUND

    @property
    def found(self) -> bool:
        return self.field_id is not FIELD_NOT_FOUND

    def value(self, row: Mapping[str, Any]) -> Any:
        if not self.found:
            return None
        return row.get(self.field_id)


@dataclass(frozen=True)
class CompositeField:
    """A column split into ordered sub-inputs (e.g. a name field)."""
    label: str
    field_id: Optional[str] = FIELD_NOT_FOUND
    input_ids: tuple[str, ...] = ()

    @property
    def found(self) -> bool:
        return self.field_id is not FIELD_NOT_FOUND

    def values(self, row: Mapping[str, Any]) -> list[Any]:
        return [row.get(input_id) for input_id in self.input_ids]


@dataclass(frozen=True)
class StudentSlot:
    name: CompositeField
    grade: ScalarField
    teacher: ScalarField


@dataclass(frozen=True)
class ParentSlot:
    name: CompositeField
    email: ScalarField
    phone: ScalarField


@dataclass(frozen=True)
class FieldMapping:
    """
    Resolved lookup table from directory concept to field identifier(s).

    `students` and `parents` always hold SLOT_COUNT slots, in slot order.
    `missing_labels` lists every label that degraded to FIELD_NOT_FOUND.
    """
    bus_route: ScalarField
    neighborhood_school: ScalarField
    date_created: ScalarField
    date_updated: ScalarField
    entry_id: ScalarField
    students: tuple[StudentSlot, ...]
    parents: tuple[ParentSlot, ...]
    missing_labels: tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Internal lookups
# ---------------------------------------------------------------------------


def _visible_input_ids(inputs: Any) -> tuple[str, ...]:
    """
    Return the sub-input ids of a composite descriptor, in order, minus
    hidden ones. Accepts the exported mapping form
    {sub_id: {label, type, isHidden?}} and the form-builder list form
    [{id, label, isHidden?}].
    """
    ids: list[str] = []
    if isinstance(inputs, Mapping):
        for input_id, info in inputs.items():
            if isinstance(info, Mapping) and info.get("isHidden"):
                continue
            ids.append(str(input_id))
    elif isinstance(inputs, (list, tuple)):
        for info in inputs:
            if not isinstance(info, Mapping) or "id" not in info:
                continue
            if info.get("isHidden"):
                continue
            ids.append(str(info["id"]))
    return tuple(ids)


def _scalar(column_info: Mapping[str, Any], label: str, missing: list[str]) -> ScalarField:
    for field_id, info in column_info.items():
        if isinstance(info, Mapping) and info.get("label") == label:
            logger.debug("[field_mapping] '%s' → %s", label, field_id)
            return ScalarField(label=label, field_id=str(field_id))
    logger.warning("[field_mapping] label not found: '%s'", label)
    missing.append(label)
    return ScalarField(label=label)


def _composite(column_info: Mapping[str, Any], label: str, missing: list[str]) -> CompositeField:
    for field_id, info in column_info.items():
        if isinstance(info, Mapping) and info.get("label") == label and "inputs" in info:
            input_ids = _visible_input_ids(info["inputs"])
            logger.debug(
                "[field_mapping] '%s' → %s (inputs: %s)",
                label, field_id, ", ".join(input_ids),
            )
            return CompositeField(label=label, field_id=str(field_id), input_ids=input_ids)
    logger.warning("[field_mapping] composite label not found: '%s'", label)
    missing.append(label)
    return CompositeField(label=label)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def resolve_field_mapping(column_info: Mapping[str, Any]) -> FieldMapping:
    """
    Resolve a column descriptor table into a FieldMapping.

    Parameters
    ----------
    column_info : Mapping[str, Any]
        {field_id: {"label": str, "type": str, "inputs"?: ...}} as supplied
        by the upstream export. Not mutated.

    Returns
    -------
    FieldMapping
        Every slot populated. Labels absent from the table resolve to
        FIELD_NOT_FOUND and are listed in `missing_labels`.
    """
    if not isinstance(column_info, Mapping):
        column_info = {}

    missing: list[str] = []

    students = tuple(
        StudentSlot(
            name=_composite(column_info, student_label(i, "Name"), missing),
            grade=_scalar(column_info, student_label(i, "Grade Level"), missing),
            teacher=_scalar(column_info, student_label(i, "Teacher"), missing),
        )
        for i in range(1, SLOT_COUNT + 1)
    )
    parents = tuple(
        ParentSlot(
            name=_composite(column_info, parent_label(i, "Name"), missing),
            email=_scalar(column_info, parent_label(i, "Email"), missing),
            phone=_scalar(column_info, parent_label(i, "Phone"), missing),
        )
        for i in range(1, SLOT_COUNT + 1)
    )

    return FieldMapping(
        bus_route=_scalar(column_info, LABEL_BUS_ROUTE, missing),
        neighborhood_school=_scalar(column_info, LABEL_NEIGHBORHOOD_SCHOOL, missing),
        date_created=_scalar(column_info, LABEL_DATE_CREATED, missing),
        date_updated=_scalar(column_info, LABEL_DATE_UPDATED, missing),
        entry_id=_scalar(column_info, LABEL_ENTRY_ID, missing),
        students=students,
        parents=parents,
        missing_labels=tuple(missing),
    )


def get_missing_labels(mapping: FieldMapping) -> list[str]:
    """Return every schema label that did not resolve, in resolution order."""
    return list(mapping.missing_labels)
