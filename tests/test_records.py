"""
Unit tests for medical record loading, categorisation and rendering.
"""

import json

import pytest
from sqlalchemy.exc import OperationalError

from medportal.models import MedicalRecord, Profile
from medportal.records import (
    build_records_context,
    categorize_record,
    create_medical_record,
    format_record,
    load_medical_records,
    parse_test_results,
    record_status,
    record_title,
    save_health_score,
    summarize_record,
    vitals_frame,
)


# ── Helpers / Fakes ──────────────────────────────────────────────────

class FakeResult:
    def __init__(self, rows):
        self._rows = rows

    def mappings(self):
        return self

    def all(self):
        return self._rows

    def scalar_one(self):
        return "new-1"


class FakeConn:
    def __init__(self, rows):
        self._rows = rows
        self.executed = []

    def execute(self, sql, params=None):
        self.executed.append((str(sql), params))
        return FakeResult(self._rows)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeEngine:
    def __init__(self, rows=(), fail=False):
        self.conn = FakeConn(list(rows))
        self.fail = fail

    def connect(self):
        return self.conn

    def begin(self):
        if self.fail:
            raise OperationalError("INSERT", {}, Exception("connection refused"))
        return self.conn


def lab(**kw):
    base = dict(id="r1", user_id="u1", record_type="lab_test", date="2024-03-01")
    base.update(kw)
    return MedicalRecord(**base)


VITALS = {
    "heart_rate": {"value": 72, "unit": "bpm", "status": "Normal"},
    "blood_pressure": {"systolic": 120, "diastolic": 80, "unit": "mmHg", "status": "Normal"},
}


# ── Tests: load_medical_records ──────────────────────────────────────

def test_load_medical_records_maps_rows(capsys):
    engine = FakeEngine([{
        "id": 7, "user_id": "u1", "record_type": "prescription", "date": "2024-01-02",
        "doctor_name": "Dr B", "test_name": None, "test_category": None,
        "test_results": None, "prescription_text": "Aspirin 75mg", "file_path": None,
        "status": "Final",
    }])
    records = load_medical_records(engine, "u1", limit=5)
    assert records[0].id == "7"
    assert records[0].prescription_text == "Aspirin 75mg"
    assert engine.conn.executed[0][1] == {"uid": "u1", "lim": 5}
    assert "ORDER BY date DESC" in engine.conn.executed[0][0]
    assert "Found 1 records" in capsys.readouterr().out


# ── Tests: writing ───────────────────────────────────────────────────

PATIENT = Profile("u1", "patient", True, "Pat")
DOCTOR = Profile("d1", "doctor", True, "Dr Who")


def test_patient_lab_upload_is_self_upload(capsys):
    engine = FakeEngine()
    record_id = create_medical_record(
        engine, "u1", PATIENT, "Lab_Test",
        date="2024-05-01", test_name=" Lipid Panel ", test_results={"ldl": {"value": 90}},
    )
    sql, params = engine.conn.executed[0]
    assert record_id == "new-1"
    assert "INSERT INTO medical_records" in sql
    assert params["kind"] == "lab_test"
    assert params["doctor_name"] == "Self Upload"
    assert params["uploaded_by"] == "patient"
    assert params["doctor_id"] is None
    assert params["test_name"] == "Lipid Panel"
    assert params["test_category"] == "General"
    assert json.loads(params["test_results"]) == {"ldl": {"value": 90}}
    assert "patient added lab_test new-1 for user u1" in capsys.readouterr().out


def test_doctor_prescription_upload_defaults_date_and_name():
    engine = FakeEngine()
    create_medical_record(engine, "u1", DOCTOR, "prescription", prescription_text="Rest")
    params = engine.conn.executed[0][1]
    assert params["doctor_name"] == "Dr Who"
    assert params["doctor_id"] == "d1"
    assert params["uploaded_by"] == "doctor"
    assert params["prescription_text"] == "Rest"
    assert len(params["date"]) == 10


def test_document_upload_needs_title_and_file():
    engine = FakeEngine()
    create_medical_record(engine, "u1", PATIENT, "document", test_name="Scan", file_path="u1/scan.pdf")
    params = engine.conn.executed[0][1]
    assert params["file_path"] == "u1/scan.pdf"
    assert params["status"] == "completed"

    with pytest.raises(ValueError, match="file_path"):
        create_medical_record(FakeEngine(), "u1", PATIENT, "document", test_name="Scan")


@pytest.mark.parametrize("kwargs", [
    {"record_type": "xray"},
    {"record_type": 5},
    {"record_type": "lab_test", "test_name": "CBC"},
    {"record_type": "lab_test", "test_name": "CBC", "test_results": "high"},
    {"record_type": "lab_test", "test_results": {"a": 1}},
    {"record_type": "prescription", "prescription_text": "   "},
])
def test_create_medical_record_rejects_bad_input(kwargs):
    engine = FakeEngine()
    with pytest.raises(ValueError):
        create_medical_record(engine, "u1", PATIENT, **kwargs)
    assert engine.conn.executed == []


def test_save_health_score_inserts_metric(capsys):
    engine = FakeEngine()
    assert save_health_score(engine, "u1", 82) is True
    sql, params = engine.conn.executed[0]
    assert "INSERT INTO health_metrics" in sql
    assert "'health_score'" in sql and "'/100'" in sql
    assert params["pid"] == "u1"
    assert params["value"] == "82"
    assert "Health score saved" in capsys.readouterr().out


def test_save_health_score_logs_failure(capsys):
    assert save_health_score(FakeEngine(fail=True), "u1", 82) is False
    assert "[ERROR] Failed to save health score" in capsys.readouterr().err


# ── Tests: interpretation ────────────────────────────────────────────

def test_parse_test_results_variants():
    assert parse_test_results({"a": 1}) == {"a": 1}
    assert parse_test_results('{"a": 1}') == {"a": 1}
    assert parse_test_results("not json") == "not json"
    assert parse_test_results(None) is None


def test_categorize_record():
    assert categorize_record(lab()) == "lab_test"
    assert categorize_record(lab(record_type="Prescription")) == "prescription"
    assert categorize_record(lab(record_type="xray")) == "unknown"
    assert categorize_record(lab(record_type=None)) == "unknown"


def test_record_title_prefers_column_then_results_then_default():
    assert record_title(lab(test_name="CBC")) == "CBC"
    assert record_title(lab(test_results=json.dumps({"name": "Lipid Panel"}))) == "Lipid Panel"
    assert record_title(lab(test_results={"title": "Thyroid"})) == "Thyroid"
    assert record_title(lab()) == "Unknown Lab Test"
    assert record_title(lab(record_type="document")) == "Untitled Document"


def test_record_status_normalisation():
    assert record_status(lab(status="Normal")) == "normal"
    assert record_status(lab(status="HIGH")) == "attention"
    assert record_status(lab(status="critical")) == "critical"
    assert record_status(lab(status="Final")) == "completed"
    assert record_status(lab()) == "completed"


def test_format_lab_record_flattens_nested_results():
    text = format_record(lab(test_name="Vital Signs", test_category="Cardiovascular",
                             doctor_name="Dr C", test_results=VITALS, status="Final"), 1)
    assert "--- Medical Record 1 ---" in text
    assert "Type: LAB_TEST" in text
    assert "Doctor: Dr C" in text
    assert "Test Category: Cardiovascular" in text
    assert "Test Name: Vital Signs" in text
    assert "  blood_pressure:\n    - systolic: 120" in text
    assert "Status: Final" in text


def test_format_lab_record_skips_name_keys_and_defaults_category():
    text = format_record(lab(test_results={"test_name": "HbA1c", "value": 5.4}), 2)
    assert "Test Name: HbA1c" in text
    assert "Test Category: General" in text
    assert "- test_name" not in text
    assert "- value: 5.4" in text


def test_format_lab_record_with_raw_results():
    text = format_record(lab(test_results="glucose 90"), 1)
    assert "Test Results (Raw): glucose 90" in text


def test_format_prescription_and_document():
    rx = format_record(lab(record_type="prescription", prescription_text="Amoxicillin"), 1)
    assert "Prescription Details:\nAmoxicillin" in rx
    doc = format_record(lab(record_type="document", test_name="Discharge",
                            file_path="docs/d.pdf", test_results={"summary": "Stable"}), 3)
    assert "Document Title: Discharge" in doc
    assert "File Reference: docs/d.pdf" in doc
    assert "Document Content: Stable" in doc


def test_build_records_context():
    assert build_records_context([]) == ""
    ctx = build_records_context([lab(), lab(id="r2", record_type="prescription")])
    assert "Medical Record 1" in ctx
    assert "Medical Record 2" in ctx


def test_summarize_record():
    card = summarize_record(lab(test_name="CBC", status="abnormal"))
    assert card == {
        "id": "r1", "title": "CBC", "date": "2024-03-01", "type": "lab_test",
        "category": "General", "status": "attention", "doctor_name": None,
    }


# ── Tests: vitals_frame ──────────────────────────────────────────────

def test_vitals_frame_extracts_numeric_readings_oldest_first():
    records = [
        lab(id="new", date="2024-03-02", test_results=VITALS),
        lab(id="old", date="2024-03-01", test_results=json.dumps({"heart_rate": {"value": 75, "unit": "bpm"}})),
        lab(id="rx", record_type="prescription", prescription_text="x"),
    ]
    df = vitals_frame(records)
    assert list(df.columns) == ["date", "metric", "value", "unit", "status"]
    assert len(df) == 4
    assert df.iloc[0]["value"] == 75.0
    assert set(df["metric"]) == {"heart_rate", "blood_pressure.systolic", "blood_pressure.diastolic"}


def test_vitals_frame_empty():
    df = vitals_frame([lab(test_results="free text")])
    assert df.empty
