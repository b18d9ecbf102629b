"""
Medical records – loading rows and interpreting their heterogeneous payloads
(free text prescriptions, documents, structured lab-result maps).
"""

import json
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from medportal.config import MAX_CONTEXT_RECORDS
from medportal.models import MedicalRecord, Profile

RECORD_TYPES = {"lab_test", "prescription", "document"}
NAME_KEYS = ("test_name", "name", "title")
DOCUMENT_TEXT_KEYS = ("summary", "text", "content")
VITAL_VALUE_KEYS = ("value", "systolic", "diastolic")

_STATUS_MAP = {
    "normal": "normal",
    "attention": "attention",
    "abnormal": "attention",
    "borderline": "attention",
    "high": "attention",
    "low": "attention",
    "critical": "critical",
}


# ── Loading ──────────────────────────────────────────────────────────

def load_medical_records(engine, user_id: str, limit: int = MAX_CONTEXT_RECORDS) -> List[MedicalRecord]:
    """Return the user's most recent records, newest first."""
    sql = text("""
        SELECT id, user_id, record_type, date, doctor_name, test_name,
               test_category, test_results, prescription_text, file_path, status
        FROM medical_records
        WHERE user_id = :uid
        ORDER BY date DESC
        LIMIT :lim
    """)
    with engine.connect() as conn:
        rows = conn.execute(sql, {"uid": user_id, "lim": limit}).mappings().all()

    print(f"[records] Found {len(rows)} records for user {user_id}")
    return [
        MedicalRecord(
            id=str(r["id"]),
            user_id=str(r["user_id"]),
            record_type=r["record_type"],
            date=str(r["date"]) if r["date"] is not None else None,
            doctor_name=r["doctor_name"],
            test_name=r["test_name"],
            test_category=r["test_category"],
            test_results=r["test_results"],
            prescription_text=r["prescription_text"],
            file_path=r["file_path"],
            status=r["status"],
        )
        for r in rows
    ]


# ── Writing ──────────────────────────────────────────────────────────

def _required_text(value: Any, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} is required.")
    return value.strip()


def create_medical_record(engine, patient_id: str, uploader: Profile, record_type: str,
                          date: Optional[str] = None, test_name: Optional[str] = None,
                          test_category: Optional[str] = None, test_results: Any = None,
                          prescription_text: Optional[str] = None,
                          doctor_name: Optional[str] = None,
                          file_path: Optional[str] = None) -> str:
    """Insert a record for *patient_id* on behalf of *uploader*; returns its id.

    Lab tests need a name and a results map, prescriptions need their text,
    documents need a title and a stored file path.
    """
    kind = (record_type or "").strip().lower() if isinstance(record_type, str) else ""
    if kind not in RECORD_TYPES:
        raise ValueError(f"Unsupported record_type '{record_type}'.")

    by_doctor = uploader.role == "doctor"
    row = {
        "uid": patient_id,
        "kind": kind,
        "date": date or datetime.now(timezone.utc).date().isoformat(),
        "doctor_name": (uploader.full_name or "Doctor") if by_doctor else "Self Upload",
        "uploaded_by": "doctor" if by_doctor else "patient",
        "doctor_id": uploader.user_id if by_doctor else None,
        "test_name": None,
        "test_category": None,
        "test_results": None,
        "prescription_text": None,
        "file_path": None,
        "status": None,
    }

    if kind == "lab_test":
        if not isinstance(test_results, dict) or not test_results:
            raise ValueError("test_results must be a non-empty object.")
        row["test_name"] = _required_text(test_name, "test_name")
        row["test_category"] = test_category or "General"
        row["test_results"] = json.dumps(test_results)
    elif kind == "prescription":
        row["prescription_text"] = _required_text(prescription_text, "prescription_text")
        if doctor_name:
            row["doctor_name"] = _required_text(doctor_name, "doctor_name")
    else:
        row["test_name"] = _required_text(test_name, "test_name")
        row["file_path"] = _required_text(file_path, "file_path")
        row["test_category"] = "Document"
        row["status"] = "completed"

    sql = text("""
        INSERT INTO medical_records
            (user_id, record_type, date, doctor_name, uploaded_by, doctor_id,
             test_name, test_category, test_results, prescription_text, file_path, status)
        VALUES
            (:uid, :kind, :date, :doctor_name, :uploaded_by, :doctor_id,
             :test_name, :test_category, CAST(:test_results AS jsonb), :prescription_text,
             :file_path, :status)
        RETURNING id
    """)
    with engine.begin() as conn:
        record_id = conn.execute(sql, row).scalar_one()

    print(f"[records] {row['uploaded_by']} added {kind} {record_id} for user {patient_id}")
    return str(record_id)


def save_health_score(engine, patient_id: str, score: int) -> bool:
    """Store a computed health score; a failed insert is logged, not raised."""
    sql = text("""
        INSERT INTO health_metrics (patient_id, metric_type, value, unit, recorded_at)
        VALUES (:pid, 'health_score', :value, '/100', :at)
    """)
    try:
        with engine.begin() as conn:
            conn.execute(sql, {
                "pid": patient_id,
                "value": str(score),
                "at": datetime.now(timezone.utc).isoformat(),
            })
    except SQLAlchemyError as e:
        print(f"[ERROR] Failed to save health score for {patient_id}: {e}", file=sys.stderr)
        return False
    print(f"[records] Health score saved for user {patient_id}")
    return True


# ── Interpretation ───────────────────────────────────────────────────

def parse_test_results(raw: Any) -> Any:
    """Decode a results payload stored either as a map or as a JSON string."""
    if isinstance(raw, str):
        try:
            return json.loads(raw)
        except ValueError:
            return raw
    return raw


def categorize_record(record: MedicalRecord) -> str:
    kind = (record.record_type or "").strip().lower()
    return kind if kind in RECORD_TYPES else "unknown"


def record_title(record: MedicalRecord) -> str:
    """Display title: explicit test name, then a name found in the results map."""
    if record.test_name:
        return record.test_name

    results = parse_test_results(record.test_results)
    if isinstance(results, dict):
        for key in NAME_KEYS:
            if results.get(key):
                return str(results[key])

    kind = categorize_record(record)
    if kind == "lab_test":
        return "Unknown Lab Test"
    if kind == "prescription":
        return "Prescription"
    return "Untitled Document"


def record_status(record: MedicalRecord) -> str:
    """Normalise free-form status text to normal / attention / critical / completed."""
    return _STATUS_MAP.get((record.status or "").strip().lower(), "completed")


def _flatten_results(results: Dict[str, Any], skip_names: bool) -> List[str]:
    lines: List[str] = []

    def walk(key: str, value: Any, indent: str) -> None:
        if isinstance(value, dict):
            lines.append(f"{indent}{key}:")
            for k, v in value.items():
                walk(k, v, indent + "  ")
        else:
            lines.append(f"{indent}- {key}: {value}")

    for key, value in results.items():
        if skip_names and key in NAME_KEYS:
            continue
        walk(key, value, "  ")
    return lines


def format_record(record: MedicalRecord, index: int) -> str:
    """Render one record as a plain-text block for the assistant's context."""
    kind = categorize_record(record)
    lines = [
        f"--- Medical Record {index} ---",
        f"Type: {record.record_type.upper() if record.record_type else 'Unknown'}",
        f"Date: {record.date or 'Unknown'}",
    ]
    if record.doctor_name:
        lines.append(f"Doctor: {record.doctor_name}")

    results = parse_test_results(record.test_results)

    if kind == "lab_test":
        lines.append(f"Test Category: {record.test_category or 'General'}")
        lines.append(f"Test Name: {record_title(record)}")
        if isinstance(results, dict):
            lines.append("Test Results Breakdown:")
            lines.extend(_flatten_results(results, skip_names=True))
        elif isinstance(results, str):
            lines.append(f"Test Results (Raw): {results}")
        elif results is not None:
            lines.append(f"Test Results: {results}")

    elif kind == "prescription":
        if record.prescription_text:
            lines.append(f"Prescription Details:\n{record.prescription_text}")

    elif kind == "document":
        lines.append(f"Document Title: {record_title(record)}")
        if record.file_path:
            lines.append(f"File Reference: {record.file_path}")
        if isinstance(results, dict):
            content = next((results[k] for k in DOCUMENT_TEXT_KEYS if results.get(k)), None)
            if content:
                lines.append(f"Document Content: {content}")

    if record.status:
        lines.append(f"Status: {record.status}")
    return "\n".join(lines)


def build_records_context(records: List[MedicalRecord]) -> str:
    """Join formatted records; empty string when there is nothing to show."""
    if not records:
        return ""
    return "\n\n".join(format_record(r, i) for i, r in enumerate(records, 1))


def summarize_record(record: MedicalRecord) -> Dict[str, Optional[str]]:
    """Card-level view of a record, as listed on the records page."""
    return {
        "id": record.id,
        "title": record_title(record),
        "date": record.date,
        "type": categorize_record(record),
        "category": record.test_category or "General",
        "status": record_status(record),
        "doctor_name": record.doctor_name,
    }


# ── Vitals ───────────────────────────────────────────────────────────

def vitals_frame(records: List[MedicalRecord]) -> pd.DataFrame:
    """Numeric vitals readings found in lab results, oldest first."""
    rows = []
    for record in records:
        if categorize_record(record) != "lab_test":
            continue
        results = parse_test_results(record.test_results)
        if not isinstance(results, dict):
            continue
        for metric, reading in results.items():
            if not isinstance(reading, dict):
                continue
            for key in VITAL_VALUE_KEYS:
                value = reading.get(key)
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    continue
                rows.append({
                    "date": record.date,
                    "metric": metric if key == "value" else f"{metric}.{key}",
                    "value": float(value),
                    "unit": reading.get("unit"),
                    "status": reading.get("status"),
                })

    df = pd.DataFrame(rows, columns=["date", "metric", "value", "unit", "status"])
    if df.empty:
        return df
    df["date"] = pd.to_datetime(df["date"], errors="coerce", utc=True)
    return df.sort_values(["date", "metric"], kind="stable").reset_index(drop=True)
