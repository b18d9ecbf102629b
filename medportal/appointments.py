"""
Appointments – booking, listing, doctor decisions and the doctor's patient list.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import text

from medportal.models import Appointment

# Status a doctor may move a pending request to
DOCTOR_DECISIONS = {"confirmed", "cancelled", "completed"}

_SELECT = """
    SELECT a.id, a.patient_id, a.doctor_id, a.appointment_date, a.reason, a.status,
           p.full_name AS patient_name, d.full_name AS doctor_name
    FROM appointments a
    LEFT JOIN profiles p ON p.id = a.patient_id
    LEFT JOIN profiles d ON d.id = a.doctor_id
"""


def _to_appointment(row) -> Appointment:
    return Appointment(
        id=str(row["id"]),
        patient_id=str(row["patient_id"]),
        doctor_id=str(row["doctor_id"]),
        appointment_date=str(row["appointment_date"]) if row["appointment_date"] is not None else None,
        reason=row["reason"],
        status=row["status"],
        patient_name=row["patient_name"],
        doctor_name=row["doctor_name"],
    )


def _parse_when(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("appointment_date is required.")
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).isoformat()
    except ValueError as e:
        raise ValueError(f"appointment_date is not an ISO timestamp: {value!r}") from e


def book_appointment(engine, patient_id: str, doctor_id: Any, appointment_date: Any,
                     reason: Optional[str] = None) -> Appointment:
    """Create a pending appointment request with an onboarded doctor."""
    if not isinstance(doctor_id, str) or not doctor_id.strip():
        raise ValueError("doctor_id is required.")
    when = _parse_when(appointment_date)
    if reason is not None and not isinstance(reason, str):
        raise ValueError("reason must be text.")

    doctor_sql = text("""
        SELECT id FROM profiles
        WHERE id = :did AND role = 'doctor' AND is_onboarded = true
        LIMIT 1
    """)
    insert_sql = text("""
        INSERT INTO appointments (patient_id, doctor_id, appointment_date, reason, status)
        VALUES (:pid, :did, :at, :reason, 'pending')
        RETURNING id
    """)
    params = {"pid": patient_id, "did": doctor_id.strip(), "at": when, "reason": reason}
    with engine.begin() as conn:
        if not conn.execute(doctor_sql, params).mappings().first():
            raise ValueError(f"Unknown doctor '{doctor_id}'.")
        appointment_id = conn.execute(insert_sql, params).scalar_one()

    print(f"[appointments] {patient_id} requested {appointment_id} with {params['did']}")
    return Appointment(id=str(appointment_id), patient_id=patient_id, doctor_id=params["did"],
                       appointment_date=when, reason=reason, status="pending")


def list_patient_appointments(engine, patient_id: str) -> List[Appointment]:
    sql = text(_SELECT + """
        WHERE a.patient_id = :pid
        ORDER BY a.appointment_date ASC
    """)
    with engine.connect() as conn:
        rows = conn.execute(sql, {"pid": patient_id}).mappings().all()
    return [_to_appointment(r) for r in rows]


def list_doctor_appointments(engine, doctor_id: str, status: Optional[str] = "pending") -> List[Appointment]:
    """The doctor's appointments, by default only the pending requests."""
    where = "WHERE a.doctor_id = :did"
    if status:
        where += " AND a.status = :status"
    sql = text(_SELECT + where + " ORDER BY a.appointment_date ASC")
    with engine.connect() as conn:
        rows = conn.execute(sql, {"did": doctor_id, "status": status}).mappings().all()
    return [_to_appointment(r) for r in rows]


def update_appointment_status(engine, appointment_id: str, actor_id: str, actor_role: str,
                              status: Any) -> str:
    """Apply a status change; doctors decide their requests, patients may only cancel."""
    status = status.strip().lower() if isinstance(status, str) else ""
    if actor_role == "doctor":
        if status not in DOCTOR_DECISIONS:
            raise ValueError(f"Unsupported status '{status}'.")
        owner_column = "doctor_id"
    elif actor_role == "patient":
        if status != "cancelled":
            raise ValueError("Patients can only cancel appointments.")
        owner_column = "patient_id"
    else:
        raise ValueError(f"Role '{actor_role}' cannot change appointments.")

    sql = text(f"""
        UPDATE appointments
        SET status = :status
        WHERE id = :aid AND {owner_column} = :actor
    """)
    with engine.begin() as conn:
        result = conn.execute(sql, {"status": status, "aid": appointment_id, "actor": actor_id})

    if result.rowcount == 0:
        raise LookupError(f"Appointment {appointment_id} not found.")
    print(f"[appointments] {actor_role} {actor_id} set {appointment_id} to {status}")
    return status


def list_doctor_patients(engine, doctor_id: str) -> List[Dict[str, Any]]:
    """Distinct patients with a confirmed or completed appointment with the doctor."""
    sql = text("""
        SELECT p.id, p.full_name, MAX(a.appointment_date) AS last_visit
        FROM appointments a
        JOIN profiles p ON p.id = a.patient_id
        WHERE a.doctor_id = :did AND a.status IN ('confirmed', 'completed')
        GROUP BY p.id, p.full_name
        ORDER BY p.full_name
    """)
    with engine.connect() as conn:
        rows = conn.execute(sql, {"did": doctor_id}).mappings().all()
    return [
        {
            "id": str(r["id"]),
            "name": r["full_name"] or "Unknown",
            "last_visit": str(r["last_visit"]) if r["last_visit"] is not None else None,
        }
        for r in rows
    ]


def doctor_has_patient(engine, doctor_id: str, patient_id: str) -> bool:
    sql = text("""
        SELECT 1 FROM appointments
        WHERE doctor_id = :did AND patient_id = :pid
          AND status IN ('confirmed', 'completed')
        LIMIT 1
    """)
    with engine.connect() as conn:
        return conn.execute(sql, {"did": doctor_id, "pid": patient_id}).first() is not None
