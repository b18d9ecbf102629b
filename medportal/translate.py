"""
Translation of assistant answers into Indian languages via the Sarvam API.
"""

import os
import sys
from typing import Optional

import requests

from medportal.config import (
    SARVAM_TRANSLATE_MODEL,
    SARVAM_TRANSLATE_URL,
    TRANSLATE_TIMEOUT_SECONDS,
)

LANGUAGE_CODES = {
    "English": "en-IN",
    "Hindi": "hi-IN",
    "Bengali": "bn-IN",
    "Gujarati": "gu-IN",
    "Kannada": "kn-IN",
    "Malayalam": "ml-IN",
    "Marathi": "mr-IN",
    "Oriya": "od-IN",
    "Punjabi": "pa-IN",
    "Tamil": "ta-IN",
    "Telugu": "te-IN",
    "Assamese": "as-IN",
    "Bodo": "brx-IN",
    "Dogri": "doi-IN",
    "Kashmiri": "ks-IN",
    "Konkani": "kok-IN",
    "Maithili": "mai-IN",
    "Manipuri": "mni-IN",
    "Nepali": "ne-IN",
    "Sanskrit": "sa-IN",
    "Santali": "sat-IN",
    "Sindhi": "sd-IN",
    "Urdu": "ur-IN",
}


def translate_text(text: str, target_language: str) -> Optional[str]:
    """Translate English *text*; returns None when the service call fails."""
    target_code = LANGUAGE_CODES.get(target_language)
    if not target_code or target_language == "English":
        return text

    api_key = os.getenv("SARVAM_API_KEY")
    if not api_key:
        print("[WARN] SARVAM_API_KEY not set, skipping translation", file=sys.stderr)
        return None

    try:
        resp = requests.post(
            SARVAM_TRANSLATE_URL,
            headers={"api-subscription-key": api_key},
            json={
                "input": text,
                "source_language_code": "en-IN",
                "target_language_code": target_code,
                "model": SARVAM_TRANSLATE_MODEL,
            },
            timeout=TRANSLATE_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        print(f"[ERROR] Translation request failed: {e}", file=sys.stderr)
        return None

    if not resp.ok:
        print(f"[ERROR] Translation API error {resp.status_code}: {resp.text[:200]}", file=sys.stderr)
        return None

    return resp.json().get("translated_text") or None
