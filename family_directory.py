#!/usr/bin/env python3
"""
Family Directory - grouping engine
Partitions reconciled students by teacher, neighborhood school or bus route
Deterministic ordering for presentation
"""

import html
import logging
import sys
from dataclasses import dataclass
from enum import Enum

import pandas as pd

from roster.ingestion.loader import LoadError, load_file

# ============================================================================
# CONFIGURATION
# ============================================================================

UNKNOWN_TEACHER = "Unknown Teacher"
UNKNOWN_GRADE = "Unknown Grade"
UNKNOWN_SCHOOL = "Unknown School"
NO_BUS = "No Bus"


class Dimension(str, Enum):
    TEACHER = "teacher"
    NEIGHBORHOOD_SCHOOL = "neighborhood_school"
    BUS_ROUTE = "bus_route"

    @classmethod
    def _missing_(cls, value):
        aliases = {
            "neighborhoodSchool": cls.NEIGHBORHOOD_SCHOOL,
            "busRoute": cls.BUS_ROUTE,
            "school": cls.NEIGHBORHOOD_SCHOOL,
            "bus": cls.BUS_ROUTE,
        }
        return aliases.get(value)


# Fixed relative order for leftover attributes
DIMENSION_ORDER = (Dimension.TEACHER, Dimension.NEIGHBORHOOD_SCHOOL, Dimension.BUS_ROUTE)

FIELD_TITLES = {
    Dimension.TEACHER: "Teacher",
    Dimension.NEIGHBORHOOD_SCHOOL: "Neighborhood School",
    Dimension.BUS_ROUTE: "Bus Route",
}


@dataclass(frozen=True)
class Group:
    label: str
    members: tuple


# ============================================================================
# GROUP KEYS
# ============================================================================

def teacher_sort_key(student):
    """Surname-first teacher tokens, then the grade (or Unknown Grade)"""
    tokens = student.teacher.split()
    if not tokens:
        key = [UNKNOWN_TEACHER]
    else:
        key = [tokens[-1]] + tokens[:-1]
    key.append(student.grade or UNKNOWN_GRADE)
    return tuple(key)


def school_key(student):
    return student.neighborhood_school or UNKNOWN_SCHOOL


def bus_key(student):
    return student.bus_route or NO_BUS


def leftover_fields(dimension):
    """The two dimension fields not used as the grouping key"""
    dimension = Dimension(dimension)
    return tuple(d.value for d in DIMENSION_ORDER if d is not dimension)


def leftover_attributes(student, dimension):
    return {name: getattr(student, name) for name in leftover_fields(dimension)}


# ============================================================================
# GROUPING
# ============================================================================

def _partition(students, key_func):
    """Bucket students by key, keeping first-encountered order per bucket"""
    buckets = {}
    for s in students:
        buckets.setdefault(key_func(s), []).append(s)
    return buckets


def _sorted_members(members):
    return tuple(sorted(members, key=lambda s: s.name))


def group_by_teacher(students):
    buckets = _partition(students, teacher_sort_key)

    # Grade first (plain string comparison), then surname-first key
    ordered = sorted(buckets.items(), key=lambda kv: (kv[0][-1], kv[0]))

    groups = []
    for _, members in ordered:
        first = members[0]
        groups.append(Group(
            label=f"{first.teacher} - Grade {first.grade}",
            members=_sorted_members(members),
        ))
    return groups


def group_by_school(students):
    buckets = _partition(students, school_key)
    return [Group(label=k, members=_sorted_members(v)) for k, v in sorted(buckets.items())]


def group_by_bus(students):
    buckets = _partition(students, bus_key)
    return [Group(label=k, members=_sorted_members(v)) for k, v in sorted(buckets.items())]


GROUPERS = {
    Dimension.TEACHER: group_by_teacher,
    Dimension.NEIGHBORHOOD_SCHOOL: group_by_school,
    Dimension.BUS_ROUTE: group_by_bus,
}


def group_students(students, dimension):
    """
    Partition a reconciled {name: Student} mapping into ordered groups.

    Accepts any iterable of Student as well. Every student lands in
    exactly one group. Returns a fresh list on every call.
    """
    if isinstance(students, dict):
        students = students.values()
    return GROUPERS[Dimension(dimension)](list(students))


def group_all(students):
    """All three groupings, keyed by dimension"""
    return {d: group_students(students, d) for d in DIMENSION_ORDER}


# ============================================================================
# PRESENTATION FRAME
# ============================================================================

def format_parents(parents):
    parts = []
    for p in parents:
        contact = ", ".join(x for x in (p.phone, p.email) if x)
        parts.append(f"{p.name} ({contact})" if contact else p.name)
    return "; ".join(parts)


def entry_link(entry_url, form_id, entry_id):
    if not entry_url or not entry_id:
        return ""
    return entry_url.format(form_id=form_id if form_id is not None else "", entry_id=entry_id)


def groups_to_frame(groups, dimension, entry_url=None, form_id=None):
    """One row per student, in group then member order"""
    extra = leftover_fields(dimension)
    columns = ["Group", "Student", "Grade", "Parents / Guardians"]
    columns += [FIELD_TITLES[Dimension(f)] for f in extra]
    if entry_url:
        columns.append("Entry")

    records = []
    for g in groups:
        for s in g.members:
            record = [g.label, s.name, s.grade, format_parents(s.parents)]
            record += [getattr(s, f) for f in extra]
            if entry_url:
                record.append(entry_link(entry_url, form_id, s.entry_id))
            records.append(record)

    return pd.DataFrame(records, columns=columns)


# ============================================================================
# HTML CARDS
# ============================================================================

# Markdown and LaTeX control characters, rendered as numeric entities
_MARKDOWN_ENTITIES = {c: f"&#{ord(c)};" for c in "\\`*_[]()#~$|<>"}


def literal_html(text):
    """Escape form text so it renders verbatim inside st.markdown"""
    return "".join(_MARKDOWN_ENTITIES.get(c) or html.escape(c) for c in text.replace("\n", " "))


def group_heading_html(label):
    return f"<h3 class='group-heading'>{literal_html(label)}</h3>"


def student_card_html(student, dimension):
    lines = [f"<strong>{literal_html(student.name)}</strong>"]
    for p in student.parents:
        contact = " · ".join(x for x in (p.phone, p.email) if x)
        lines.append(f"<div class='parent-info'>{literal_html(p.name)} {literal_html(contact)}</div>")
    for f in leftover_fields(dimension):
        value = getattr(student, f)
        if value:
            title = FIELD_TITLES[Dimension(f)]
            lines.append(f"<div class='parent-info'>{title}: {literal_html(value)}</div>")
    return "<div class='group-card'>" + "".join(lines) + "</div>"


# ============================================================================
# TEXT OUTPUT
# ============================================================================

def generate_directory_text(groups, dimension):
    """Plain-text listing of the groups, for the command line"""
    extra = leftover_fields(dimension)
    report = ""
    for g in groups:
        report += "═" * 75 + "\n"
        report += f"{g.label} ({len(g.members)})\n"
        report += "═" * 75 + "\n"
        for s in g.members:
            report += f"{s.name}\n"
            for p in s.parents:
                report += f"    {p.name}  {p.phone}  {p.email}".rstrip() + "\n"
            for f in extra:
                value = getattr(s, f)
                if value:
                    report += f"    {FIELD_TITLES[Dimension(f)]}: {value}\n"
        report += "\n"
    return report


def main(argv):
    if len(argv) not in (2, 3):
        print("Usage: python family_directory.py <export.csv|payload.json> [teacher|neighborhood_school|bus_route]")
        return 1

    try:
        dimension = Dimension(argv[2]) if len(argv) == 3 else Dimension.TEACHER
    except ValueError:
        print(f"Unknown grouping: {argv[2]}")
        return 1

    logging.basicConfig(level=logging.INFO)
    try:
        loaded = load_file(argv[1])
    except LoadError as e:
        print(str(e))
        return 2

    print(loaded.report.as_text())
    print()
    print(generate_directory_text(group_students(loaded.students, dimension), dimension))
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
