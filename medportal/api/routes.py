"""
Flask route handlers for the portal: auth, guarded pages and the JSON API.
"""

import json
import sys
import traceback
from dataclasses import asdict
from datetime import datetime, timedelta
from functools import wraps
from urllib.parse import urlparse

from flask import request, jsonify, make_response

from medportal.config import KNOWN_ROLES, ONBOARDING_ROLES, TOKEN_EXPIRY_HOURS
from medportal.guard import NavigationGuard, decide, home_dashboard
from medportal.models import Action
from medportal.profiles import complete_onboarding, load_identity, resolve_viewer
from medportal.appointments import (
    book_appointment,
    doctor_has_patient,
    list_doctor_appointments,
    list_doctor_patients,
    list_patient_appointments,
    update_appointment_status,
)
from medportal.records import (
    build_records_context,
    create_medical_record,
    load_medical_records,
    save_health_score,
    summarize_record,
    vitals_frame,
)
from medportal.assistant import answer_question, generate_health_score, structure_notes
from medportal.translate import LANGUAGE_CODES, translate_text
from medportal.api.auth import (
    TOKEN_COOKIE,
    cleanup_expired_sessions,
    current_user_id,
    generate_token,
    sessions,
    token_required,
)


class ResponseNavigator:
    """Records the navigation the guard asks for so it can become a response."""

    def __init__(self):
        self.target = None
        self.mode = None

    def push(self, path):
        self.target, self.mode = path, "push"

    def replace(self, path):
        self.target, self.mode = path, "replace"


def navigation_response(navigator, **extra):
    """Redirect response: 302 for a push, 303 for a history replace."""
    resp = make_response(jsonify({
        "redirect": navigator.target,
        "mode": navigator.mode,
        **extra,
    }), 303 if navigator.mode == "replace" else 302)
    resp.headers["Location"] = navigator.target
    resp.headers["X-Navigation-Mode"] = navigator.mode
    return resp


def safe_return_path(value):
    """The requested post-login path if it stays on this site, else None."""
    if not isinstance(value, str) or not value.startswith("/"):
        return None
    if value[1:2] in ("/", "\\"):
        return None
    parsed = urlparse(value)
    if parsed.scheme or parsed.netloc:
        return None
    return value


def decision_response(decision, navigator):
    """Translate a non-render guard decision into an HTTP response."""
    if decision.action is Action.PLACEHOLDER:
        return jsonify({"placeholder": decision.placeholder}), 202

    if decision.action is Action.BLANK:
        return "", 204

    return navigation_response(
        navigator,
        reason=decision.outcome.value,
        placeholder=decision.placeholder,
    )


def register_routes(app, engine, llm):
    """Register all routes on the Flask *app*."""

    def guarded_page(allowed_roles=None):
        """Wrap a page view in the navigation guard; the view gets the profile."""
        def wrapper(view):
            @wraps(view)
            def decorated(*args, **kwargs):
                viewer, profile = resolve_viewer(engine, current_user_id())
                navigator = ResponseNavigator()
                decision = NavigationGuard(navigator, allowed_roles).evaluate(
                    viewer, profile, request.path,
                )
                if decision.action is not Action.RENDER:
                    return decision_response(decision, navigator)
                return view(profile, *args, **kwargs)
            return decorated
        return wrapper

    def guarded_api(allowed_roles=None):
        """Token-protected endpoint that also has to pass the guard."""
        def wrapper(view):
            @wraps(view)
            @token_required
            def decorated(*args, **kwargs):
                viewer, profile = resolve_viewer(engine, request.session_data["user_id"])
                decision = decide(viewer, profile, request.path, allowed_roles)
                if decision.action is not Action.RENDER:
                    print(f"[guard] API access denied ({decision.outcome.value}) for {request.path}")
                    return jsonify({
                        "error": "Access denied",
                        "reason": decision.outcome.value,
                    }), 403
                return view(profile, *args, **kwargs)
            return decorated
        return wrapper

    @app.before_request
    def prune_sessions():
        cleanup_expired_sessions()

    # ── Health / info ────────────────────────────────────────────────

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({
            "service": "MedPortal API",
            "version": "1.0.0",
            "status": "running",
            "endpoints": {
                "auth": "/api/auth/login",
                "records": "/api/records",
                "appointments": "/api/appointments",
                "patients": "/api/doctor/patients",
                "assistant": "/api/assistant/chat",
                "logout": "/api/auth/logout",
                "health": "/health",
            },
        })

    @app.route("/health", methods=["GET"])
    def health():
        from sqlalchemy import text as sa_text

        checks = {"database": False, "llm": False}
        try:
            if engine:
                with engine.connect() as conn:
                    conn.execute(sa_text("SELECT 1"))
                checks["database"] = True
        except Exception as e:
            print(f"[WARN] Health check DB error: {e}", file=sys.stderr)

        checks["llm"] = llm is not None
        all_healthy = all(checks.values())

        return jsonify({
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
            "active_sessions": len(sessions),
        }), 200 if all_healthy else 503

    # ── Auth ─────────────────────────────────────────────────────────

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400

        api_key = request.json.get("api_key")
        api_key = api_key.strip() if isinstance(api_key, str) else ""
        if not api_key:
            return jsonify({"error": "api_key is required"}), 400

        try:
            user_id = load_identity(engine, api_key)
        except ValueError as e:
            return jsonify({"error": f"Authentication failed: {str(e)}"}), 401
        except Exception as e:
            print(f"[ERROR] Login error: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"error": "Internal server error during login"}), 500

        token = generate_token(user_id)
        sessions[token] = {
            "user_id": user_id,
            "created_at": datetime.utcnow(),
            "last_activity": datetime.utcnow(),
        }
        print(f"[auth] User {user_id} logged in")

        # Where the viewer lands next is the guard's call
        _viewer, profile = resolve_viewer(engine, user_id)
        return_to = safe_return_path(request.json.get("redirect"))
        if return_to is None:
            return_to = home_dashboard(profile.role if profile else None)

        resp = make_response(jsonify({
            "success": True,
            "token": token,
            "user_id": user_id,
            "next": return_to,
            "expires_at": (datetime.utcnow() + timedelta(hours=TOKEN_EXPIRY_HOURS)).isoformat(),
        }), 200)
        resp.set_cookie(TOKEN_COOKIE, token, httponly=True, samesite="Lax",
                        max_age=TOKEN_EXPIRY_HOURS * 3600)
        return resp

    @app.route("/api/auth/logout", methods=["POST"])
    @token_required
    def logout():
        sessions.pop(request.token, None)
        resp = make_response(jsonify({"success": True, "message": "Logged out successfully"}), 200)
        resp.delete_cookie(TOKEN_COOKIE)
        return resp

    @app.route("/api/user/profile", methods=["GET"])
    @token_required
    def get_profile():
        session_data = request.session_data
        viewer, profile = resolve_viewer(engine, session_data["user_id"])
        return jsonify({
            "success": True,
            "user_id": session_data["user_id"],
            "profile": None if profile is None else {
                "role": profile.role,
                "is_onboarded": profile.is_onboarded,
                "full_name": profile.full_name,
                "email": profile.email,
            },
            "profile_error": viewer.profile_error is not None,
            "session": {
                "created_at": session_data["created_at"].isoformat(),
                "last_activity": session_data["last_activity"].isoformat(),
            },
        }), 200

    @app.route("/api/onboarding", methods=["POST"])
    @token_required
    def onboarding_submit():
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400

        data = request.json
        user_id = request.session_data["user_id"]
        try:
            profile = complete_onboarding(
                engine, user_id,
                role=data.get("role", ""),
                full_name=data.get("full_name", ""),
                email=data.get("email"),
            )
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        except Exception as e:
            print(f"[ERROR] Onboarding error: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"error": "Failed to save profile"}), 500

        return jsonify({
            "success": True,
            "role": profile.role,
            "next": home_dashboard(profile.role),
        }), 200

    # ── Guarded pages ────────────────────────────────────────────────

    @app.route("/login", methods=["GET"])
    def login_page():
        return jsonify({"page": "login", "redirect": request.args.get("redirect")})

    @app.route("/onboarding", methods=["GET"])
    @guarded_page()
    def onboarding_page(profile):
        return jsonify({"page": "onboarding", "roles": sorted(ONBOARDING_ROLES)})

    @app.route("/dashboard", methods=["GET"])
    @guarded_page()
    def dashboard_root(profile):
        navigator = ResponseNavigator()
        navigator.replace(home_dashboard(profile.role))
        return navigation_response(navigator)

    @app.route("/dashboard/doctor", methods=["GET"])
    @app.route("/dashboard/doctor/<path:section>", methods=["GET"])
    @guarded_page(allowed_roles={"doctor"})
    def doctor_dashboard(profile, section="overview"):
        return jsonify({
            "page": "doctor",
            "section": section,
            "viewer": {"name": profile.full_name, "role": profile.role},
        })

    @app.route("/dashboard/patient", methods=["GET"])
    @app.route("/dashboard/patient/<path:section>", methods=["GET"])
    @guarded_page()
    def patient_dashboard(profile, section="overview"):
        body = {
            "page": "patient",
            "section": section,
            "viewer": {"name": profile.full_name, "role": profile.role},
        }
        if section == "records":
            records = load_medical_records(engine, profile.user_id)
            body["records"] = [summarize_record(r) for r in records]
        return jsonify(body)

    @app.route("/dashboard/settings", methods=["GET"])
    @guarded_page()
    def settings_page(profile):
        return jsonify({
            "page": "settings",
            "profile": {"full_name": profile.full_name, "email": profile.email, "role": profile.role},
        })

    # ── Records ──────────────────────────────────────────────────────

    @app.route("/api/records", methods=["GET"])
    @guarded_api()
    def list_records(profile):
        records = load_medical_records(engine, profile.user_id)
        return jsonify({
            "success": True,
            "count": len(records),
            "records": [summarize_record(r) for r in records],
        }), 200

    @app.route("/api/records/vitals", methods=["GET"])
    @guarded_api(allowed_roles={"patient"})
    def list_vitals(profile):
        df = vitals_frame(load_medical_records(engine, profile.user_id))
        return jsonify({
            "success": True,
            "vitals": json.loads(df.to_json(orient="records", date_format="iso")),
        }), 200

    @app.route("/api/records", methods=["POST"])
    @guarded_api(allowed_roles=ONBOARDING_ROLES)
    def upload_record(profile):
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400

        data = request.json
        patient_id = profile.user_id
        if profile.role == "doctor":
            patient_id = data.get("patient_id")
            if not isinstance(patient_id, str) or not patient_id:
                return jsonify({"error": "patient_id is required"}), 400
            if not doctor_has_patient(engine, profile.user_id, patient_id):
                return jsonify({"error": "Access denied", "reason": "not_your_patient"}), 403

        try:
            record_id = create_medical_record(
                engine, patient_id, profile,
                record_type=data.get("record_type"),
                date=data.get("date"),
                test_name=data.get("test_name"),
                test_category=data.get("test_category"),
                test_results=data.get("test_results"),
                prescription_text=data.get("prescription_text"),
                doctor_name=data.get("doctor_name"),
                file_path=data.get("file_path"),
            )
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        except Exception as e:
            print(f"[ERROR] Record upload failed: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"error": "Failed to save record"}), 500

        return jsonify({"success": True, "id": record_id, "patient_id": patient_id}), 201

    # ── Appointments ─────────────────────────────────────────────────

    @app.route("/api/appointments", methods=["GET"])
    @guarded_api(allowed_roles=ONBOARDING_ROLES)
    def list_appointments(profile):
        if profile.role == "doctor":
            status = request.args.get("status", "pending")
            appointments = list_doctor_appointments(engine, profile.user_id, status or None)
        else:
            appointments = list_patient_appointments(engine, profile.user_id)
        return jsonify({
            "success": True,
            "count": len(appointments),
            "appointments": [asdict(a) for a in appointments],
        }), 200

    @app.route("/api/appointments", methods=["POST"])
    @guarded_api(allowed_roles={"patient"})
    def request_appointment(profile):
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400

        data = request.json
        try:
            appointment = book_appointment(
                engine, profile.user_id,
                doctor_id=data.get("doctor_id"),
                appointment_date=data.get("appointment_date"),
                reason=data.get("reason"),
            )
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        except Exception as e:
            print(f"[ERROR] Booking failed: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"error": "Failed to book appointment"}), 500
        return jsonify({"success": True, "appointment": asdict(appointment)}), 201

    def change_appointment(profile, appointment_id, status):
        try:
            new_status = update_appointment_status(
                engine, appointment_id, profile.user_id, profile.role, status,
            )
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        except LookupError as e:
            return jsonify({"error": str(e)}), 404
        except Exception as e:
            print(f"[ERROR] Appointment update failed: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"error": "Failed to update appointment"}), 500
        return jsonify({"success": True, "id": appointment_id, "status": new_status}), 200

    @app.route("/api/appointments/<appointment_id>", methods=["PATCH"])
    @guarded_api(allowed_roles={"doctor"})
    def decide_appointment(profile, appointment_id):
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400
        return change_appointment(profile, appointment_id, request.json.get("status"))

    @app.route("/api/appointments/<appointment_id>/cancel", methods=["POST"])
    @guarded_api(allowed_roles={"patient"})
    def cancel_appointment(profile, appointment_id):
        return change_appointment(profile, appointment_id, "cancelled")

    # ── Doctor's patients ────────────────────────────────────────────

    @app.route("/api/doctor/patients", methods=["GET"])
    @guarded_api(allowed_roles={"doctor"})
    def doctor_patients(profile):
        patients = list_doctor_patients(engine, profile.user_id)
        return jsonify({"success": True, "count": len(patients), "patients": patients}), 200

    @app.route("/api/doctor/patients/<patient_id>/records", methods=["GET"])
    @guarded_api(allowed_roles={"doctor"})
    def patient_history(profile, patient_id):
        if not doctor_has_patient(engine, profile.user_id, patient_id):
            return jsonify({"error": "Access denied", "reason": "not_your_patient"}), 403
        records = load_medical_records(engine, patient_id)
        return jsonify({
            "success": True,
            "patient_id": patient_id,
            "count": len(records),
            "records": [summarize_record(r) for r in records],
        }), 200

    # ── Assistant ────────────────────────────────────────────────────

    @app.route("/api/assistant/notes", methods=["POST"])
    @guarded_api(allowed_roles={"doctor"})
    def assistant_notes(profile):
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400
        try:
            structured = structure_notes(llm, request.json.get("notes", ""))
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        except Exception as e:
            print(f"[ERROR] Note structuring failed: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"error": "Note structuring failed"}), 500
        return jsonify({"success": True, "structured": structured}), 200

    @app.route("/api/assistant/chat", methods=["POST"])
    @guarded_api(allowed_roles={"patient"})
    def assistant_chat(profile):
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400

        data = request.json
        language = data.get("language", "English")
        context = build_records_context(load_medical_records(engine, profile.user_id))
        try:
            answer = answer_question(
                llm, data.get("question", ""), context,
                history=data.get("history"), language=language,
            )
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        return jsonify({"success": True, "answer": answer, "language": language}), 200

    @app.route("/api/assistant/health-score", methods=["POST"])
    @guarded_api(allowed_roles={"patient"})
    def assistant_health_score(profile):
        language = (request.get_json(silent=True) or {}).get("language", "English")
        context = build_records_context(load_medical_records(engine, profile.user_id))
        try:
            result = generate_health_score(llm, context, language)
        except Exception as e:
            print(f"[ERROR] Health score failed: {e}", file=sys.stderr)
            traceback.print_exc()
            return jsonify({"success": False, "error": "Health score generation failed"}), 500

        saved = False
        if result["score"] is not None:
            saved = save_health_score(engine, profile.user_id, result["score"])
        return jsonify({"success": True, "saved": saved, **result}), 200

    @app.route("/api/translate", methods=["POST"])
    @guarded_api(allowed_roles=KNOWN_ROLES)
    def translate(profile):
        if not request.is_json:
            return jsonify({"error": "Content-Type must be application/json"}), 400
        data = request.json
        language = data.get("language", "English")
        if language not in LANGUAGE_CODES:
            return jsonify({"error": f"Unsupported language '{language}'"}), 400
        translated = translate_text(data.get("text", ""), language)
        if translated is None:
            return jsonify({"success": False, "error": "Translation unavailable"}), 502
        return jsonify({"success": True, "text": translated, "language": language}), 200

    # ── Error handlers ───────────────────────────────────────────────

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found", "message": str(e)}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed", "message": str(e)}), 405

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({"error": "Internal server error", "message": str(e)}), 500
