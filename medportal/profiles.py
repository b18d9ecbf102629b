"""
Auth/Profile provider – resolving identities and loading profile rows.
"""

import sys
from typing import Optional, Tuple

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from medportal.config import ONBOARDING_ROLES
from medportal.models import Profile, Session


class ProfileFetchError(Exception):
    """The profile lookup failed (as opposed to the row not existing)."""


def load_identity(engine, api_key: str) -> str:
    """Look up an active portal user by API key and return its user id."""
    sql = text("""
        SELECT id
        FROM portal_users
        WHERE api_key = :k AND is_active = true
        LIMIT 1
    """)
    with engine.connect() as conn:
        row = conn.execute(sql, {"k": api_key}).mappings().first()

    if not row:
        raise ValueError("Invalid key or user inactive (no match in portal_users).")
    return str(row["id"])


def load_profile(engine, user_id: str) -> Optional[Profile]:
    """Return the user's Profile, or None when no profile row exists yet."""
    sql = text("""
        SELECT id, role, is_onboarded, full_name, email
        FROM profiles
        WHERE id = :uid
        LIMIT 1
    """)
    try:
        with engine.connect() as conn:
            row = conn.execute(sql, {"uid": user_id}).mappings().first()
    except SQLAlchemyError as e:
        raise ProfileFetchError(f"Could not load profile for {user_id}: {e}") from e

    if not row:
        return None

    role = str(row["role"]).strip().lower() if row["role"] is not None else None
    return Profile(
        user_id=str(row["id"]),
        role=role,
        is_onboarded=bool(row["is_onboarded"]),
        full_name=row["full_name"],
        email=row["email"],
    )


def resolve_viewer(engine, user_id: Optional[str]) -> Tuple[Session, Optional[Profile]]:
    """Build the guard inputs for *user_id* (None for an anonymous viewer).

    A failed profile lookup is reported as a missing profile, with the
    failure recorded on the session so it can be told apart downstream.
    """
    if user_id is None:
        return Session(is_authenticated=False), None

    session = Session(is_authenticated=True, user_id=user_id)
    try:
        profile = load_profile(engine, user_id)
    except ProfileFetchError as e:
        print(f"[ERROR] {e}", file=sys.stderr)
        session.profile_error = str(e)
        profile = None
    return session, profile


def complete_onboarding(engine, user_id: str, role: str, full_name: str,
                        email: Optional[str] = None) -> Profile:
    """Mark the user's profile as onboarded, creating the row if needed."""
    role = (role or "").strip().lower()
    if role not in ONBOARDING_ROLES:
        raise ValueError(f"Unsupported onboarding role '{role}'.")
    full_name = (full_name or "").strip()
    if not full_name:
        raise ValueError("full_name is required.")

    params = {"uid": user_id, "role": role, "name": full_name, "email": email}
    update = text("""
        UPDATE profiles
        SET role = :role, full_name = :name, is_onboarded = true
        WHERE id = :uid
    """)
    insert = text("""
        INSERT INTO profiles (id, role, full_name, email, is_onboarded)
        VALUES (:uid, :role, :name, :email, true)
    """)
    with engine.begin() as conn:
        result = conn.execute(update, params)
        if result.rowcount == 0:
            print(f"[WARN] Profile not found for {user_id}, inserting a new row", file=sys.stderr)
            conn.execute(insert, params)

    return Profile(user_id=user_id, role=role, is_onboarded=True,
                   full_name=full_name, email=email)
