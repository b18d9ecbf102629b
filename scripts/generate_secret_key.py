#!/usr/bin/env python3
"""
Generate a signing key for portal session tokens.
Run this and copy the output to your .env file.
"""

import secrets

if __name__ == "__main__":
    print("=" * 60)
    print("MedPortal Token Signing Key")
    print("=" * 60)

    secret_key = secrets.token_urlsafe(48)

    print(f"\nJWT_SECRET_KEY={secret_key}\n")
    print("=" * 60)
    print("Copy the line above to your .env file; rotating it logs everyone out")
    print("=" * 60)
