#!/usr/bin/env python3
"""
Staff Account Seed Script
Creates administrator and police accounts. Reporters register themselves
through /auth/register.

Usage:
    python -m scripts.seed_users admin <email> <full_name> <password>
    python -m scripts.seed_users police <email> <full_name> <password> [badge_number] [station]

Example:
    python -m scripts.seed_users admin admin@caseflow.gov "Case Admin" securepassword123
    python -m scripts.seed_users police si.rao@caseflow.gov "SI Rao" securepassword123 PB-4411 "Cyber Cell North"
"""
import sys
import os
from typing import Optional
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from caseflow.database import SessionLocal, init_db
from caseflow.models.db_models import UserDB
from caseflow.auth import hash_password

STAFF_ROLES = ("admin", "police")


def create_staff_user(
    role: str,
    email: str,
    full_name: str,
    password: str,
    badge_number: Optional[str] = None,
    station: Optional[str] = None,
) -> bool:
    """Create an admin or police account, or promote an existing reporter."""
    init_db()

    db: Session = SessionLocal()
    try:
        existing = db.query(UserDB).filter(UserDB.email == email).first()
        if existing:
            if existing.role == role:
                print(f"Error: '{email}' already has the {role} role.")
                return False
            existing.role = role
            if role == "police":
                existing.badge_number = badge_number or existing.badge_number
                existing.station = station or existing.station
            db.commit()
            print(f"Changed role of '{email}' to {role}.")
            return True

        user = UserDB(
            id=str(uuid4()),
            email=email,
            full_name=full_name,
            password_hash=hash_password(password),
            role=role,
            badge_number=badge_number if role == "police" else None,
            station=station if role == "police" else None,
        )
        db.add(user)
        db.commit()

        print(f"{role.capitalize()} account created.")
        print(f"  ID: {user.id}")
        print(f"  Email: {email}")
        print(f"  Name: {full_name}")
        if role == "police":
            print(f"  Badge: {badge_number or '-'}  Station: {station or '-'}")
        return True

    except Exception as e:
        print(f"Error creating {role} account: {e}")
        db.rollback()
        return False
    finally:
        db.close()


def main():
    if len(sys.argv) < 5:
        print(__doc__)
        sys.exit(1)

    role, email, full_name, password = sys.argv[1:5]
    badge_number = sys.argv[5] if len(sys.argv) > 5 else None
    station = sys.argv[6] if len(sys.argv) > 6 else None

    if role not in STAFF_ROLES:
        print(f"Error: role must be one of {', '.join(STAFF_ROLES)}.")
        sys.exit(1)

    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    success = create_staff_user(role, email, full_name, password, badge_number, station)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
