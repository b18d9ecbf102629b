"""
AI assistant – SOAP structuring of doctor notes, patient chat grounded in
their medical records, and a dashboard health score.
"""

import json
import re
import sys
from typing import Any, Dict, Optional

from langchain_openai import ChatOpenAI
from langchain_core.messages import HumanMessage, SystemMessage

FALLBACK_ANSWER = (
    "I apologize, but I'm having trouble connecting right now. "
    "Please try again in a moment."
)

NO_RECORDS_SCORE = {
    "score": None,
    "analysis": "No medical records found to analyze.",
    "summary": "Please upload medical records to get a health score.",
    "vitals_analysis": None,
}


def _strip_fences(content: str) -> str:
    content = content.strip()
    content = re.sub(r"^```[a-zA-Z]*\s*", "", content)
    content = re.sub(r"\s*```$", "", content)
    return content.strip()


# ── Note structuring ─────────────────────────────────────────────────

def structure_notes(llm: ChatOpenAI, notes: str) -> str:
    """Turn a doctor's rough notes into a SOAP-formatted note."""
    if not isinstance(notes, str) or not notes.strip():
        raise ValueError("notes must be non-empty text")

    system = SystemMessage(
        content=(
            "You are a clinical documentation assistant.\n"
            "Structure the doctor's rough notes into a formal SOAP format "
            "(Subjective, Objective, Assessment, Plan).\n"
            "Keep it professional and concise. Use markdown headings for each section.\n"
            "Do not invent findings that are not in the notes."
        )
    )
    human = HumanMessage(content=f"Notes: {notes.strip()}")

    resp = llm.invoke([system, human])
    return resp.content.strip()


# ── Patient chat ─────────────────────────────────────────────────────

def build_chat_prompt(question: str, records_context: str,
                      history: Optional[str] = None, language: str = "English") -> str:
    if records_context:
        records_block = (
            "=== PATIENT MEDICAL RECORDS ===\n"
            "The following are the patient's actual medical records. "
            "Reference this data when relevant to their questions:\n"
            f"{records_context}\n"
            "=== END OF RECORDS ==="
        )
    else:
        records_block = "Note: This patient has no medical records on file yet."

    parts = [records_block]
    if history:
        parts.append(f"Previous Conversation:\n{history}")
    parts.append(f"User's Question: {question}")
    parts.append(f"Respond helpfully and conversationally in {language}:")
    return "\n\n".join(parts)


def answer_question(llm: ChatOpenAI, question: str, records_context: str = "",
                    history: Optional[str] = None, language: str = "English") -> str:
    """Answer a patient's health question, referencing their records."""
    if not isinstance(question, str) or not question.strip():
        raise ValueError("question must be non-empty text")

    system = SystemMessage(
        content=(
            "You are a helpful, friendly AI Health Assistant chatbot. You provide medical "
            "information, answer health-related questions, and help users understand their health data.\n\n"
            "IMPORTANT GUIDELINES:\n"
            "- Be conversational, warm, and supportive.\n"
            "- Use markdown formatting for readability.\n"
            "- If the user has medical records, reference them when relevant.\n"
            "- Always remind users to consult healthcare professionals for serious concerns.\n"
            "- Do NOT respond with JSON or structured data.\n"
            f"- You must respond in {language}."
        )
    )
    human = HumanMessage(content=build_chat_prompt(question.strip(), records_context, history, language))

    try:
        resp = llm.invoke([system, human])
    except Exception as e:
        print(f"[WARN] Assistant call failed: {e}", file=sys.stderr)
        return FALLBACK_ANSWER
    return resp.content.strip() or "No response from AI"


# ── Health score ─────────────────────────────────────────────────────

def parse_health_score(content: str) -> Dict[str, Any]:
    """Parse the model's JSON reply; the score is clamped to 0..100.

    A reply that is not a JSON object is kept as free-text analysis with no score.
    """
    try:
        data = json.loads(_strip_fences(content))
    except ValueError:
        data = None
    if not isinstance(data, dict):
        print(f"[WARN] Health score reply is not a JSON object: {content[:160]}...", file=sys.stderr)
        return {
            "score": None,
            "analysis": content.strip(),
            "summary": "Analysis generated",
            "vitals_analysis": None,
        }

    score = data.get("score")
    if score is not None:
        try:
            score = max(0, min(100, round(float(score))))
        except (TypeError, ValueError):
            score = None

    return {
        "score": score,
        "analysis": data.get("analysis") or "",
        "summary": data.get("summary") or "",
        "vitals_analysis": data.get("vitals_analysis"),
    }


def generate_health_score(llm: ChatOpenAI, records_context: str,
                          language: str = "English") -> Dict[str, Any]:
    """Ask the model for a 0-100 health score over the patient's records."""
    if not records_context:
        return dict(NO_RECORDS_SCORE)

    system = SystemMessage(
        content=(
            "You are a medical AI analyst.\n"
            "You MUST return valid JSON only, with no text outside the JSON object "
            "and no markdown fences.\n"
            "The JSON must match this schema:\n"
            '{"score": number (0-100), "analysis": "string", "summary": "string", '
            '"vitals_analysis": "string or null"}\n\n'
            f"Respond in {language}."
        )
    )
    human = HumanMessage(
        content=(
            "=== PATIENT MEDICAL RECORDS ===\n"
            f"{records_context}\n"
            "=== END OF RECORDS ===\n\n"
            "Analyze the medical records and generate a numerical Health Score (0-100) "
            "based on the patient's overall health status. Also provide a brief analysis "
            "(2-3 sentences), a short summary for the dashboard, and specific analysis "
            "of their vitals if available."
        )
    )

    resp = llm.invoke([system, human])
    return parse_health_score(resp.content)
