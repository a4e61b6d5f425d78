#!/usr/bin/env python3
"""
Create the first owner or admin account.

Usage:
    python scripts/create_admin_user.py

The account can log in straight away. Until it enables 2FA through
/api/security/2fa/setup and /enable its logins are not challenged, and its
critical actions are refused with 2FA_SETUP_REQUIRED.
"""

import getpass
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from echoshop.database import session_scope
from echoshop.models import User, UserRole
from echoshop.services.auth_service import AuthService

MIN_PASSWORD_LENGTH = 12
PRIVILEGED_ROLES = (UserRole.OWNER, UserRole.ADMIN)


def confirm(question: str) -> bool:
    return input(f"{question} (yes/no): ").strip().lower() in ("yes", "y")


def prompt_email(db) -> str:
    while True:
        email = input("Email: ").strip().lower()
        if "@" not in email:
            print("Invalid email address")
        elif db.query(User).filter(User.email == email).first():
            print(f"Email '{email}' already exists")
        else:
            return email


def prompt_role() -> UserRole:
    while True:
        role = UserRole.parse(input("Role [owner/admin] (admin): ") or "admin")
        if role in PRIVILEGED_ROLES:
            return role
        print("Role must be owner or admin")


def prompt_password() -> str:
    while True:
        password = getpass.getpass("Password: ")
        if len(password) < MIN_PASSWORD_LENGTH:
            print(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        elif password != getpass.getpass("Confirm password: "):
            print("Passwords do not match")
        else:
            return password


def create_admin_user():
    print("Echo Shop: create owner/admin user")
    print("-" * 40)

    with session_scope() as db:
        existing = db.query(User).filter(User.role.in_([r.value for r in PRIVILEGED_ROLES])).first()
        if existing:
            print(f"A privileged user already exists: {existing.email} ({existing.role})")
            if not confirm("Create another one?"):
                print("Aborted.")
                return

        email = prompt_email(db)
        full_name = input("Full name (optional): ").strip() or None
        role = prompt_role()
        password = prompt_password()

        print(f"\n  Email: {email}\n  Name:  {full_name or '-'}\n  Role:  {role.value}\n")
        if not confirm("Create this user?"):
            print("Aborted.")
            return

        user = User(
            email=email,
            full_name=full_name,
            hashed_password=AuthService.hash_password(password),
            role=role.value,
            is_active=True,
        )
        db.add(user)
        db.flush()
        user_id = user.id

    print(f"\nCreated user {user_id}")
    print("Next steps:")
    print("  1. POST /api/auth/login to get an access token")
    print("  2. POST /api/security/2fa/setup and scan the QR code")
    print("  3. POST /api/security/2fa/enable with a code; store the backup codes")


if __name__ == "__main__":
    try:
        create_admin_user()
    except KeyboardInterrupt:
        print("\nAborted by user.")
        sys.exit(1)
