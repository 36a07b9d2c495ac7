"""
Roster Directory Loader

Fetches, parses and reconciles one directory payload.

CONTRACT ANCHORS
----------------
- Payload shape: {"form_id", "column_info", "rows"}.
- Access code prefix "admin:" is a client-side flag. Stripped before sending.
- Network failure, non-success status, access denial or a malformed body
  halts the load with a LoadError. Nothing partial is returned.
- Per-row and per-field problems never halt. They are counted and flagged.
"""

from __future__ import annotations

import io
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd
import requests

from roster.config import DirectorySettings
from roster.ingestion.extraction import Student
from roster.ingestion.field_mapping import (
    LABEL_DATE_CREATED,
    LABEL_DATE_UPDATED,
    LABEL_ENTRY_ID,
    FieldMapping,
    get_missing_labels,
    resolve_field_mapping,
)
from roster.ingestion.reconcile import reconcile_with_stats

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ADMIN_PREFIX: str = "admin:"

ACCESS_DENIED_CODES: frozenset[str] = frozenset({
    "access_denied",
    "invalid_access_code",
    "rest_forbidden",
})

# CSV export headers → synthetic column labels
EXPORT_META_HEADERS: dict[str, str] = {
    "Entry Id": LABEL_ENTRY_ID,
    "Entry Date": LABEL_DATE_CREATED,
    "Date Updated": LABEL_DATE_UPDATED,
}

# Families answering anything but "Yes" are left out of the directory.
CONSENT_HEADER: str = "Include your family in the Dragon Directory?"
CONSENT_ANSWER: str = "Yes"

_COMPOSITE_HEADER = re.compile(r"^(?P<field>.+ Name) \((?P<part>[^()]+)\)$")
_INVISIBLE = re.compile(r"^[\ufeff\ufffe\u200b\u200c\u200d]+")


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


@dataclass
class LoadError(Exception):
    """Structured halt error for a directory load attempt."""
    reason: str
    detail: str = ""
    fix_steps: list[str] = field(default_factory=list)

    def __str__(self) -> str:
        lines = [
            "═" * 60,
            "DIRECTORY LOAD HALT",
            "═" * 60,
            f"Reason : {self.reason}",
        ]
        if self.detail:
            lines.append(f"Detail : {self.detail}")
        if self.fix_steps:
            lines.append("Fix Steps:")
            for i, step in enumerate(self.fix_steps, 1):
                lines.append(f"  {i}. {step}")
        lines.append("═" * 60)
        return "\n".join(lines)


class FetchFailure(LoadError):
    """Network error or non-success HTTP status."""


class AccessDenied(LoadError):
    """The endpoint rejected the access code."""


class MalformedPayload(LoadError):
    """Body is not JSON or lacks column_info / rows."""


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccessCode:
    code: str
    admin: bool = False


@dataclass(frozen=True)
class DirectoryPayload:
    form_id: Any
    column_info: dict[str, Any]
    rows: list[dict[str, Any]]
    skipped_rows: int = 0
    opted_out_rows: int = 0


@dataclass
class LoadReport:
    """Produced for every successful load. All flags surfaced."""
    timestamp: str
    form_id: Any
    row_count: int
    extracted_students: int
    merged_students: int
    superseded_records: int
    missing_labels: list[str]
    malformed_timestamps: int
    flags: list[str]

    def as_text(self) -> str:
        lines = [
            "═" * 60,
            "DIRECTORY LOAD REPORT",
            "═" * 60,
            f"Generated       : {self.timestamp}",
            f"Form            : {self.form_id if self.form_id is not None else 'unknown'}",
            "",
            "COUNTS",
            f"  Rows                : {self.row_count}",
            f"  Student records     : {self.extracted_students}",
            f"  Students (merged)   : {self.merged_students}",
            f"  Superseded records  : {self.superseded_records}",
            f"  Malformed timestamps: {self.malformed_timestamps}",
            "",
            "UNRESOLVED LABELS",
        ]
        if not self.missing_labels:
            lines.append("  None")
        for label in self.missing_labels:
            lines.append(f"  {label}")
        if self.flags:
            lines += ["", "FLAGS (all surfaced)"]
            for flag in self.flags:
                lines.append(f"  ⚑ {flag}")
        lines.append("═" * 60)
        return "\n".join(lines)


@dataclass(frozen=True)
class DirectoryLoad:
    form_id: Any
    students: dict[str, Student]
    field_mapping: FieldMapping
    report: LoadReport
    admin: bool = False


# ---------------------------------------------------------------------------
# Access gate + fetch
# ---------------------------------------------------------------------------


def parse_access_code(raw: str) -> AccessCode:
    """Trim the code and strip the admin prefix, remembering it as a flag."""
    code = (raw or "").strip()
    if code.startswith(ADMIN_PREFIX):
        return AccessCode(code=code[len(ADMIN_PREFIX):].strip(), admin=True)
    return AccessCode(code=code)


def _denial_marker(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    for key in ("code", "error"):
        value = body.get(key)
        if isinstance(value, str) and value.strip().lower() in ACCESS_DENIED_CODES:
            return value
    return None


def fetch_payload(access_code: AccessCode, settings: DirectorySettings) -> Any:
    """
    POST the access code to the configured endpoint and return the decoded
    JSON body.

    Raises
    ------
    FetchFailure, AccessDenied, MalformedPayload
    """
    if not settings.endpoint_url:
        raise FetchFailure(
            reason="No directory endpoint configured",
            fix_steps=["Set DIRECTORY_ENDPOINT_URL in the environment or .env file."],
        )
    if not access_code.code:
        raise AccessDenied(
            reason="Access code is empty",
            fix_steps=["Enter the access code provided by the directory coordinator."],
        )

    try:
        response = requests.post(
            settings.endpoint_url,
            json={"access_code": access_code.code},
            timeout=settings.request_timeout,
        )
    except requests.exceptions.RequestException as e:
        logger.warning("[loader] fetch failed: %s", e)
        raise FetchFailure(
            reason="Could not reach the directory endpoint",
            detail=str(e),
            fix_steps=["Check the network connection and try again."],
        ) from e

    if response.status_code in (401, 403):
        raise AccessDenied(
            reason="Access code was rejected",
            detail=f"HTTP {response.status_code}",
            fix_steps=["Check the access code and try again."],
        )

    decode_error: Optional[ValueError] = None
    try:
        body = response.json()
    except ValueError as e:
        body, decode_error = None, e

    marker = _denial_marker(body)
    if marker is not None:
        raise AccessDenied(
            reason="Access code was rejected",
            detail=marker,
            fix_steps=["Check the access code and try again."],
        )

    if not 200 <= response.status_code < 300:
        logger.warning("[loader] endpoint returned HTTP %s", response.status_code)
        raise FetchFailure(
            reason="Directory endpoint returned an error",
            detail=f"HTTP {response.status_code}",
            fix_steps=["Try again later. If it persists, contact the site administrator."],
        )

    if decode_error is not None:
        raise MalformedPayload(
            reason="Directory response is not valid JSON",
            detail=str(decode_error),
            fix_steps=["Verify DIRECTORY_ENDPOINT_URL points at the entries endpoint."],
        ) from decode_error

    return body


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------


def parse_payload(data: Any) -> DirectoryPayload:
    """
    Validate the decoded payload shape.

    Rows that are not JSON objects are skipped and counted, never fatal.
    """
    if not isinstance(data, dict):
        raise MalformedPayload(
            reason="Directory payload is not a JSON object",
            detail=type(data).__name__,
        )
    column_info = data.get("column_info")
    rows = data.get("rows")
    missing = [k for k, v in (("column_info", column_info), ("rows", rows)) if v is None]
    if missing:
        raise MalformedPayload(
            reason="Directory payload is missing required keys",
            detail=", ".join(missing),
            fix_steps=["Verify the endpoint returns column_info and rows."],
        )
    # PHP encodes an empty associative array as [].
    if column_info == []:
        column_info = {}
    if not isinstance(column_info, dict):
        raise MalformedPayload(
            reason="column_info must be a JSON object",
            detail=type(column_info).__name__,
        )
    if not isinstance(rows, list):
        raise MalformedPayload(
            reason="rows must be a JSON array",
            detail=type(rows).__name__,
        )

    good_rows = [r for r in rows if isinstance(r, dict)]
    skipped = len(rows) - len(good_rows)
    if skipped:
        logger.warning("[loader] skipped %d rows that are not JSON objects", skipped)

    return DirectoryPayload(
        form_id=data.get("form_id"),
        column_info={str(k): v for k, v in column_info.items()},
        rows=good_rows,
        skipped_rows=skipped,
    )


def load_payload_file(path: Union[str, Path]) -> DirectoryPayload:
    """Read a saved JSON payload from disk."""
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except OSError as e:
        raise FetchFailure(reason="Payload file could not be read", detail=str(e)) from e
    except ValueError as e:
        raise MalformedPayload(reason="Payload file is not valid JSON", detail=str(e)) from e
    return parse_payload(data)


def _strip_export_preamble(text: str) -> str:
    """Remove the BOM and invisible code points some exports prepend."""
    return _INVISIBLE.sub("", text)


def columns_from_headers(headers: list[str]) -> dict[str, Any]:
    """
    Synthesize a column table from CSV export headers.

    "<X> Name (<Part>)" headers become inputs of composite field "<X> Name".
    Every other header is a scalar column whose id and label are the header.
    """
    column_info: dict[str, Any] = {}
    for header in headers:
        match = _COMPOSITE_HEADER.match(header)
        if match:
            label = match.group("field")
            # Own key, so a bare "<X> Name" scalar header cannot collide.
            descriptor = column_info.setdefault(
                f"{label}#composite", {"label": label, "type": "name", "inputs": {}},
            )
            descriptor["inputs"][header] = {"label": match.group("part"), "type": "subfield"}
            continue
        label = EXPORT_META_HEADERS.get(header, header)
        column_info.setdefault(header, {"label": label, "type": "text"})
    return column_info


def read_csv_export(source: Union[str, Path, io.IOBase]) -> DirectoryPayload:
    """
    Read a form-builder CSV export into a DirectoryPayload.

    Every value is read as a string; blank cells become "".
    Rows not opted in to the directory (CONSENT_HEADER) are dropped and counted.
    """
    try:
        if isinstance(source, (str, Path)):
            raw = Path(source).read_text(encoding="utf-8")
        else:
            raw = source.read()
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise FetchFailure(reason="CSV export could not be read", detail=str(e)) from e

    try:
        df = pd.read_csv(
            io.StringIO(_strip_export_preamble(raw)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise MalformedPayload(
            reason="CSV export is not parseable",
            detail=str(e),
            fix_steps=["Verify the file is a valid CSV export of the form entries."],
        ) from e

    headers = [str(c) for c in df.columns]
    opted_out = 0
    if CONSENT_HEADER in df.columns:
        consented = df[CONSENT_HEADER].str.strip() == CONSENT_ANSWER
        opted_out = int((~consented).sum())
        df = df[consented]
        if opted_out:
            logger.info("[loader] dropped %d rows not opted in to the directory", opted_out)

    return DirectoryPayload(
        form_id=None,
        column_info=columns_from_headers(headers),
        rows=df.to_dict(orient="records"),
        opted_out_rows=opted_out,
    )


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def build_directory(payload: DirectoryPayload, admin: bool = False) -> DirectoryLoad:
    """
    Resolve, extract and reconcile a parsed payload.

    Returns
    -------
    DirectoryLoad
        Complete reconciled collection plus its load report.
    """
    flags: list[str] = []
    timestamp = datetime.now().isoformat(timespec="seconds")

    mapping = resolve_field_mapping(payload.column_info)
    missing = get_missing_labels(mapping)
    if missing:
        flags.append(f"{len(missing)} schema labels unresolved; those fields read as empty")
    if payload.skipped_rows:
        flags.append(f"{payload.skipped_rows} rows skipped: not a JSON object")
    if payload.opted_out_rows:
        flags.append(f"{payload.opted_out_rows} rows left out: family not opted in to the directory")

    result = reconcile_with_stats(payload.rows, mapping)
    if result.malformed_timestamp_count:
        flags.append(
            f"{result.malformed_timestamp_count} timestamps unparseable; "
            "treated as oldest when merging"
        )
    if result.superseded_count:
        flags.append(f"{result.superseded_count} student records replaced by newer submissions")

    report = LoadReport(
        timestamp=timestamp,
        form_id=payload.form_id,
        row_count=len(payload.rows),
        extracted_students=result.extracted_count,
        merged_students=len(result.students),
        superseded_records=result.superseded_count,
        missing_labels=missing,
        malformed_timestamps=result.malformed_timestamp_count,
        flags=flags,
    )
    return DirectoryLoad(
        form_id=payload.form_id,
        students=result.students,
        field_mapping=mapping,
        report=report,
        admin=admin,
    )


def load_directory(raw_access_code: str, settings: DirectorySettings) -> DirectoryLoad:
    """
    Full load: access gate, fetch, parse, reconcile.

    Raises
    ------
    LoadError
        On any condition that halts the load. No partial result.
    """
    access_code = parse_access_code(raw_access_code)
    body = fetch_payload(access_code, settings)
    payload = parse_payload(body)
    directory = build_directory(payload, admin=access_code.admin)
    logger.info(
        "[loader] loaded form %s: %d students from %d rows",
        directory.form_id, len(directory.students), directory.report.row_count,
    )
    return directory


def load_file(path: Union[str, Path]) -> DirectoryLoad:
    """Load a local CSV export or JSON payload, chosen by extension."""
    if not Path(path).exists():
        raise FetchFailure(
            reason="File not found",
            detail=str(path),
            fix_steps=[f"Verify the path is correct: {path}"],
        )
    if str(path).lower().endswith(".json"):
        payload = load_payload_file(path)
    else:
        payload = read_csv_export(path)
    return build_directory(payload)


# ---------------------------------------------------------------------------
# CLI / direct execution
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import sys

    if len(sys.argv) != 2:
        print("Usage: python -m roster.ingestion.loader <export.csv|payload.json>")
        sys.exit(1)

    logging.basicConfig(level=logging.INFO)
    try:
        loaded = load_file(sys.argv[1])
        print(loaded.report.as_text())
        print(f"\nStudents ready for grouping: {len(loaded.students)}")
    except LoadError as e:
        print(str(e))
        sys.exit(2)
