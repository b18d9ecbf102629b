"""
Interactive CLI for MedPortal.
Log in with an access key, pass the navigation guard, then talk to the
assistant: doctors structure notes, patients ask about their records.
"""

from medportal.config import ONBOARDING_PATH, ONBOARDING_ROLES
from medportal.database import init_engine
from medportal.guard import NavigationGuard, home_dashboard
from medportal.llm import init_llm
from medportal.models import Action
from medportal.profiles import complete_onboarding, load_identity, resolve_viewer
from medportal.records import (
    build_records_context,
    load_medical_records,
    save_health_score,
    summarize_record,
)
from medportal.assistant import answer_question, generate_health_score, structure_notes


class TerminalNavigator:
    """Keeps the current location; navigation just moves it."""

    def __init__(self, path):
        self.path = path

    def push(self, path):
        print(f"[nav] -> {path}")
        self.path = path

    def replace(self, path):
        print(f"[nav] => {path}")
        self.path = path


def run_onboarding(engine, user_id):
    roles = "/".join(sorted(ONBOARDING_ROLES))
    role = input(f"Onboarding – choose a role ({roles}): ").strip().lower()
    full_name = input("Full name: ").strip()
    complete_onboarding(engine, user_id, role=role, full_name=full_name)
    print("[auth] Profile saved.")


def enter_portal(engine, user_id):
    """Follow guard redirects until a page renders; return the profile."""
    viewer, profile = resolve_viewer(engine, user_id)
    navigator = TerminalNavigator(home_dashboard(profile.role if profile else None))
    guard = NavigationGuard(navigator)

    for _ in range(5):
        decision = guard.evaluate(viewer, profile, navigator.path)
        if decision.action is Action.RENDER:
            if navigator.path.startswith(ONBOARDING_PATH):
                run_onboarding(engine, user_id)
                viewer, profile = resolve_viewer(engine, user_id)
                continue
            return profile
        if decision.action is not Action.REDIRECT:
            print(f"[guard] Access denied ({decision.outcome.value}).")
            return None
    print("[guard] Too many redirects.")
    return None


def doctor_loop(llm):
    while True:
        try:
            notes = input("\nPaste rough notes to structure (or 'quit'): ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nExiting.")
            break
        if not notes:
            continue
        if notes.lower() in {"quit", "exit"}:
            print("Goodbye.")
            break
        try:
            print("\n[AI Suggestion]")
            print(structure_notes(llm, notes))
        except Exception as e:
            print("\n[WARN] Could not structure notes.")
            print("Details:", e)


def patient_loop(engine, llm, profile):
    records = load_medical_records(engine, profile.user_id)
    context = build_records_context(records)
    history = []

    while True:
        try:
            q = input("\nAsk a health question ('records', 'score' or 'quit'): ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nExiting.")
            break

        if not q:
            continue
        if q.lower() in {"quit", "exit"}:
            print("Goodbye.")
            break

        if q.lower() == "records":
            if not records:
                print("(no records on file)")
            for r in map(summarize_record, records):
                print(f"  {r['date'] or '?':<26} {r['type']:<13} {r['status']:<10} {r['title']}")
            continue

        if q.lower() == "score":
            try:
                result = generate_health_score(llm, context)
            except Exception as e:
                print("\n[WARN] Health score unavailable.")
                print("Details:", e)
                continue
            if result["score"] is not None:
                save_health_score(engine, profile.user_id, result["score"])
            print(f"\n[Health score] {result['score']}")
            print(result["summary"])
            continue

        answer = answer_question(llm, q, context, history="\n".join(history[-6:]))
        history.extend([f"User: {q}", f"Assistant: {answer}"])
        print("\n[Assistant]")
        print(answer)


def main():
    print("=== MedPortal: Patient/Doctor Assistant ===\n")

    engine = init_engine()
    llm = init_llm()

    # ── Login ────────────────────────────────────────────────────────
    try:
        api_key = input("Enter access key (or 'quit'): ").strip()
    except (EOFError, KeyboardInterrupt):
        print("\nExiting.")
        return

    if not api_key or api_key.lower() in {"quit", "exit"}:
        print("Goodbye.")
        return

    try:
        user_id = load_identity(engine, api_key)
        profile = enter_portal(engine, user_id)
    except Exception as e:
        print("\n[ERROR] Login failed.")
        print("Details:", e)
        return

    if profile is None:
        return

    print(f"\n[auth] Logged in as: {profile.full_name} (role={profile.role})")

    # ── REPL ─────────────────────────────────────────────────────────
    if profile.role == "doctor":
        doctor_loop(llm)
    else:
        patient_loop(engine, llm, profile)


if __name__ == "__main__":
    main()
