"""
Shared fixtures: a column table shaped like the entries endpoint output,
and a row factory that writes semantic values to the right field ids.
"""

import pytest

from roster.ingestion.field_mapping import resolve_field_mapping

# slot -> (name field id, email id, phone id)
PARENT_IDS = {1: ("2", "3", "4"), 2: ("8", "9", "5"), 3: ("11", "13", "12"), 4: ("45", "46", "47")}
# slot -> (name field id, grade id, teacher id)
STUDENT_IDS = {1: ("14", "15", "16"), 2: ("17", "18", "19"), 3: ("20", "21", "22"), 4: ("23", "24", "25")}
SCHOOL_ID = "30"
BUS_ID = "31"

NAME_PARTS = [("2", "Prefix"), ("3", "First"), ("4", "Middle"), ("6", "Last"), ("8", "Suffix")]


def name_descriptor(label: str, field_id: str, hide_middle: bool = False) -> dict:
    inputs = {}
    for suffix, part in NAME_PARTS:
        info = {"label": part, "type": "subfield"}
        if hide_middle and part == "Middle":
            info["isHidden"] = True
        inputs[f"{field_id}.{suffix}"] = info
    return {"label": label, "type": "name", "inputs": inputs}


def build_column_info() -> dict:
    columns = {}
    for i in range(1, 5):
        name_id, email_id, phone_id = PARENT_IDS[i]
        columns[name_id] = name_descriptor(f"Parent / Guardian #{i} Name", name_id, hide_middle=True)
        columns[email_id] = {"label": f"Parent / Guardian #{i} Email", "type": "email"}
        columns[phone_id] = {"label": f"Parent / Guardian #{i} Phone", "type": "phone"}

        name_id, grade_id, teacher_id = STUDENT_IDS[i]
        columns[name_id] = name_descriptor(f"Student #{i} Name", name_id)
        columns[grade_id] = {"label": f"Student #{i} Grade Level", "type": "select"}
        columns[teacher_id] = {"label": f"Student #{i} Teacher", "type": "text"}

    columns[SCHOOL_ID] = {"label": "Neighborhood School", "type": "select"}
    columns[BUS_ID] = {"label": "Bus Route", "type": "select"}
    columns["date_created"] = {"label": "meta:date_created", "type": "date"}
    columns["date_updated"] = {"label": "meta:date_updated", "type": "date"}
    columns["id"] = {"label": "meta:entry_id", "type": "text"}
    return columns


def build_row(
    students=(),
    parents=(),
    school=None,
    bus=None,
    created="2024-01-01 08:00:00",
    updated="2024-01-01 08:00:00",
    entry_id="100",
) -> dict:
    """
    students: sequence of dicts with first/last/(prefix, middle, suffix)/grade/teacher
    parents:  sequence of dicts with first/last/(prefix, suffix)/email/phone
    Sequence position is the slot number. None entries leave a slot blank.
    """
    row = {}
    parts = {"prefix": "2", "first": "3", "middle": "4", "last": "6", "suffix": "8"}

    for slot, s in enumerate(students, 1):
        if s is None:
            continue
        name_id, grade_id, teacher_id = STUDENT_IDS[slot]
        for key, suffix in parts.items():
            if key in s:
                row[f"{name_id}.{suffix}"] = s[key]
        if "grade" in s:
            row[grade_id] = s["grade"]
        if "teacher" in s:
            row[teacher_id] = s["teacher"]

    for slot, p in enumerate(parents, 1):
        if p is None:
            continue
        name_id, email_id, phone_id = PARENT_IDS[slot]
        for key, suffix in parts.items():
            if key in p:
                row[f"{name_id}.{suffix}"] = p[key]
        if "email" in p:
            row[email_id] = p["email"]
        if "phone" in p:
            row[phone_id] = p["phone"]

    if school is not None:
        row[SCHOOL_ID] = school
    if bus is not None:
        row[BUS_ID] = bus
    if created is not None:
        row["date_created"] = created
    if updated is not None:
        row["date_updated"] = updated
    if entry_id is not None:
        row["id"] = entry_id
    return row


@pytest.fixture
def column_info():
    return build_column_info()


@pytest.fixture
def mapping(column_info):
    return resolve_field_mapping(column_info)


@pytest.fixture
def make_row():
    return build_row
