"""
Flask application factory and server entry-point.
"""

import os
import sys
import traceback

from flask import Flask
from flask_cors import CORS

from medportal.config import TOKEN_EXPIRY_HOURS
from medportal.database import init_engine
from medportal.llm import init_llm
from medportal.api.routes import register_routes


def create_app(engine=None, llm=None):
    """Build and return a fully configured Flask application.

    Shared resources are created from the environment unless passed in.
    """
    app = Flask(__name__)
    CORS(app, supports_credentials=True)

    # ── Initialise shared resources ──────────────────────────────────
    try:
        if engine is None:
            print("[init] Initializing database connection...")
            engine = init_engine()

        if llm is None:
            print("[init] Initializing LLM...")
            llm = init_llm()

        print("[init] ✓ API server ready")
    except Exception as e:
        print(f"[FATAL] Failed to initialize: {e}", file=sys.stderr)
        traceback.print_exc()
        sys.exit(1)

    # ── Register routes ──────────────────────────────────────────────
    register_routes(app, engine, llm)

    return app


def main():
    """Run the development server."""
    print("=" * 60)
    print("MedPortal – Patient/Doctor Portal API")
    print("=" * 60)

    app = create_app()

    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    debug = os.getenv("FLASK_ENV") == "development"

    print(f"\n[server] Starting Flask API on {host}:{port}")
    print(f"[server] Debug mode: {debug}")
    print(f"[server] Session expiry: {TOKEN_EXPIRY_HOURS} hours")
    print("\nPages (guarded):")
    print(f"  - GET  http://{host}:{port}/onboarding")
    print(f"  - GET  http://{host}:{port}/dashboard/doctor")
    print(f"  - GET  http://{host}:{port}/dashboard/patient")
    print("\nAPI Endpoints:")
    print(f"  - POST http://{host}:{port}/api/auth/login")
    print(f"  - POST http://{host}:{port}/api/onboarding")
    print(f"  - GET  http://{host}:{port}/api/records")
    print(f"  - POST http://{host}:{port}/api/records")
    print(f"  - GET  http://{host}:{port}/api/appointments")
    print(f"  - GET  http://{host}:{port}/api/doctor/patients")
    print(f"  - POST http://{host}:{port}/api/assistant/chat")
    print(f"  - POST http://{host}:{port}/api/assistant/notes")
    print(f"  - GET  http://{host}:{port}/health")
    print("\n" + "=" * 60)

    app.run(host=host, port=port, debug=debug, threaded=True)


if __name__ == "__main__":
    main()
