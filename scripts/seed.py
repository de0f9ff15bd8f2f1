"""Seed script: permission catalog, default roles and an initial super admin."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import manuflow.models  # noqa: E402,F401
from manuflow.core.auth import hash_password  # noqa: E402
from manuflow.core.database import SessionLocal  # noqa: E402
from manuflow.core.permissions import (  # noqa: E402
    ALL_PERMISSIONS,
    DEFAULT_ROLE_PERMISSIONS,
    SUPER_ADMIN_ROLE,
)
from manuflow.models.role import Permission, Role  # noqa: E402
from manuflow.models.user import User  # noqa: E402
from manuflow.services.permission_registry import registry  # noqa: E402

ROLE_DESCRIPTIONS = {
    SUPER_ADMIN_ROLE: "Full access to every resource",
    "sales": "Manages companies, customers and the leads pipeline",
    "telecaller": "Works assigned leads and reads customers",
}

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin123"


def seed() -> None:
    db = SessionLocal()
    try:
        existing = {(p.resource, p.action) for p in db.query(Permission).all()}
        for name in ALL_PERMISSIONS:
            resource, action = name.split(":")
            if (resource, action) not in existing:
                db.add(Permission(
                    resource=resource,
                    action=action,
                    description=f"{action.capitalize()} {resource}",
                ))
        db.commit()
        print(f"Permission catalog ready: {len(ALL_PERMISSIONS)} permissions")

        for name, description in ROLE_DESCRIPTIONS.items():
            role = db.query(Role).filter(Role.name == name).first()
            if role:
                print(f"Role '{name}' already exists")
                continue
            db.add(Role(name=name, description=description))
            db.commit()
            if name in DEFAULT_ROLE_PERMISSIONS:
                entry = registry.replace(db, name, DEFAULT_ROLE_PERMISSIONS[name])
                print(f"Role '{name}' created (version {entry.version})")
            else:
                print(f"Role '{name}' created")

        admin = db.query(User).filter(User.email == ADMIN_EMAIL).first()
        if admin:
            print(f"Admin user already exists: {admin.email}")
            return

        admin_role = db.query(Role).filter(Role.name == SUPER_ADMIN_ROLE).one()
        admin = User(
            name="Administrator",
            email=ADMIN_EMAIL,
            password_hash=hash_password(ADMIN_PASSWORD),
            role_id=admin_role.id,
        )
        db.add(admin)
        db.commit()
        db.refresh(admin)
        print(f"Admin user created: id={admin.id}, email={admin.email}")
    finally:
        db.close()


if __name__ == "__main__":
    seed()
