#!/usr/bin/env python3
"""Create a back-office reviewer account, or attach a role to an existing one (idempotent).

Usage:
  STAFF_PASSWORD=... python scripts/create_staff_user.py --email reviewer@studio.local --role moderator
"""

import argparse
import os
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.studio.models import Role, User
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="Staff email")
    parser.add_argument("--role", default="moderator", choices=("admin", "moderator"))
    args = parser.parse_args()

    email = args.email.strip().lower()
    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///studio.db").strip()
    with script_session(db_url) as s:
        role = s.query(Role).filter(Role.key == args.role).one_or_none()
        if not role:
            print(f"Role {args.role!r} not found. Run python scripts/init_db.py first.")
            return
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user:
            password = os.environ.get("STAFF_PASSWORD") or ""
            if len(password) < 8:
                print("Set STAFF_PASSWORD (min 8 characters) to create a new account.")
                return
            user = User(email=email, password_hash=generate_password_hash(password), is_active=True)
            s.add(user)
            print(f"Created staff user {email}")
        if role in (user.roles or []):
            print(f"User already has role {args.role}: {email}")
            return
        user.roles.append(role)
        print(f"Role {args.role} attached to {email}")


if __name__ == "__main__":
    main()
