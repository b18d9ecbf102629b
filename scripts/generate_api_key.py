#!/usr/bin/env python3
"""
Generate access keys for portal users.
Creates secure random keys that can be inserted into the portal_users table.
"""

import secrets
import string
import uuid


def generate_api_key(prefix="mp", length=32):
    """Generate a secure random access key."""
    chars = string.ascii_letters + string.digits
    random_part = ''.join(secrets.choice(chars) for _ in range(length))
    return f"{prefix}_{random_part}"


if __name__ == "__main__":
    print("=" * 70)
    print("MedPortal Access Key Generator")
    print("=" * 70)
    print()

    for label in ("Patient", "Doctor"):
        user_id = uuid.uuid4()
        api_key = generate_api_key()
        print(f"-- New {label.lower()} login (profile is created during onboarding):")
        print(f"""
INSERT INTO portal_users (id, api_key, is_active)
VALUES ('{user_id}', '{api_key}', true);
""")

    print("=" * 70)
    print("Note: the first login of each user is sent to /onboarding.")
    print("=" * 70)
