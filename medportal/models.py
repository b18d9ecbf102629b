"""
Domain dataclasses used across the application.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


@dataclass
class Session:
    """Authentication state of the current viewer."""
    is_authenticated: bool
    is_loading: bool = False
    user_id: Optional[str] = None
    profile_error: Optional[str] = None  # set when the profile lookup failed


@dataclass
class Profile:
    """Profile row of an authenticated identity."""
    user_id: str
    role: Optional[str]        # "patient", "doctor", "admin" (or an unknown value)
    is_onboarded: bool
    full_name: Optional[str] = None
    email: Optional[str] = None


class ViewerState(str, Enum):
    LOADING = "loading"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED_NO_PROFILE = "authenticated_no_profile"
    AUTHENTICATED_NOT_ONBOARDED = "authenticated_not_onboarded"
    AUTHENTICATED_ONBOARDED = "authenticated_onboarded"


class Action(str, Enum):
    RENDER = "render"
    PLACEHOLDER = "placeholder"
    BLANK = "blank"
    REDIRECT = "redirect"


class Outcome(str, Enum):
    SESSION_UNRESOLVED = "session_unresolved"
    NO_IDENTITY = "no_identity"
    NO_PROFILE = "no_profile"
    PROFILE_FETCH_FAILED = "profile_fetch_failed"
    NOT_ONBOARDED = "not_onboarded"
    ALREADY_ONBOARDED = "already_onboarded"
    WRONG_ROLE = "wrong_role"
    AUTHORIZED = "authorized"


@dataclass(frozen=True)
class GuardDecision:
    """What the guard wants done for one evaluation."""
    action: Action
    outcome: Outcome
    target: Optional[str] = None
    replace: bool = False
    placeholder: Optional[str] = None


@dataclass
class MedicalRecord:
    """Row of the medical_records table."""
    id: str
    user_id: str
    record_type: Optional[str]  # "lab_test", "prescription", "document"
    date: Optional[str] = None
    doctor_name: Optional[str] = None
    test_name: Optional[str] = None
    test_category: Optional[str] = None
    test_results: Any = None    # dict or JSON string
    prescription_text: Optional[str] = None
    file_path: Optional[str] = None
    status: Optional[str] = None


@dataclass
class Appointment:
    """Row of the appointments table."""
    id: str
    patient_id: str
    doctor_id: str
    appointment_date: Optional[str]
    reason: Optional[str] = None
    status: str = "pending"     # "pending", "confirmed", "completed", "cancelled"
    patient_name: Optional[str] = None
    doctor_name: Optional[str] = None
