#!/usr/bin/env python3
"""
Admin User Seed Script
Creates an admin user for the agency portal, plus the approving supervisors
used by the enforcement workflows.

Usage:
    python -m scripts.seed_admin <email> <username> <password> [--with-supervisors]

Example:
    python -m scripts.seed_admin admin@readykids.example admin securepassword123 --with-supervisors

Supervisors are created with the admin password; change it after first login.
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from agency_portal.database import session_scope, init_db
from agency_portal.models.db_models import UserDB, UserRole
from agency_portal.auth import hash_password


DEFAULT_SUPERVISORS = [
    {
        "email": "jane.director@readykids.example",
        "username": "jdirector",
        "full_name": "Jane Director",
        "job_title": "Head of Safeguarding",
    },
    {
        "email": "robert.chief@readykids.example",
        "username": "rchief",
        "full_name": "Robert Chief",
        "job_title": "Agency Manager",
    },
]


def create_user(db: Session, email: str, username: str, password: str, role: UserRole,
                full_name: str = None, job_title: str = None) -> bool:
    """Create a user, or upgrade an existing one to the given role."""
    existing = db.query(UserDB).filter(
        (UserDB.email == email) | (UserDB.username == username)
    ).first()

    if existing:
        if existing.email != email:
            print(f"Error: Username '{username}' already exists.")
            return False
        if existing.role == role.value:
            print(f"User '{email}' already has the {role.value} role.")
            return True
        existing.role = role.value
        db.flush()
        print(f"Upgraded existing user '{email}' to {role.value} role.")
        return True

    db.add(UserDB(
        id=str(uuid4()),
        email=email,
        username=username,
        password_hash=hash_password(password),
        full_name=full_name,
        job_title=job_title,
        role=role.value,
    ))
    db.flush()

    print(f"{role.value.title()} user created successfully!")
    print(f"  Email: {email}")
    print(f"  Username: {username}")
    print(f"  Role: {role.value}")
    return True


def seed(email: str, username: str, password: str, with_supervisors: bool = False) -> bool:
    # Ensure tables exist
    init_db()

    try:
        with session_scope() as db:
            ok = create_user(db, email, username, password, UserRole.ADMIN)
            if with_supervisors:
                for supervisor in DEFAULT_SUPERVISORS:
                    ok = create_user(db, password=password, role=UserRole.SUPERVISOR, **supervisor) and ok
        return ok

    except SQLAlchemyError as e:
        print(f"Error creating users: {e}")
        return False


def main():
    args = [a for a in sys.argv[1:] if not a.startswith("--")]
    with_supervisors = "--with-supervisors" in sys.argv[1:]

    if len(args) != 3:
        print(__doc__)
        sys.exit(1)

    email, username, password = args

    # Basic validation
    if len(password) < 8:
        print("Error: Password must be at least 8 characters.")
        sys.exit(1)

    if "@" not in email:
        print("Error: Invalid email format.")
        sys.exit(1)

    success = seed(email, username, password, with_supervisors)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
