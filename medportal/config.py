"""
Centralised configuration constants and environment helpers.
"""

import os
import sys

from dotenv import load_dotenv

load_dotenv()

# ── LLM ──────────────────────────────────────────────────────────────
MODEL_NAME = "gpt-4.1-mini"
LLM_TEMPERATURE = 0.5

# ── Route surfaces ───────────────────────────────────────────────────
LOGIN_PATH = "/login"
ONBOARDING_PATH = "/onboarding"
DOCTOR_HOME = "/dashboard/doctor"
PATIENT_HOME = "/dashboard/patient"

KNOWN_ROLES = {"patient", "doctor", "admin"}
# Roles a user may pick during onboarding
ONBOARDING_ROLES = {"patient", "doctor"}

# ── Records ──────────────────────────────────────────────────────────
MAX_CONTEXT_RECORDS = 20

# ── Translation ──────────────────────────────────────────────────────
SARVAM_TRANSLATE_URL = "https://api.sarvam.ai/translate"
SARVAM_TRANSLATE_MODEL = "sarvam-translate:v1"
TRANSLATE_TIMEOUT_SECONDS = 30

# ── API server ───────────────────────────────────────────────────────
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
TOKEN_EXPIRY_HOURS = 24


def get_env(name: str) -> str:
    """Return an environment variable or exit with an error message."""
    value = os.getenv(name)
    if not value:
        print(f"ERROR: env var {name} is not set", file=sys.stderr)
        sys.exit(1)
    return value
