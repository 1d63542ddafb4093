from __future__ import annotations

from sqlalchemy import select

from backend.app.db.session import SessionLocal
from backend.app.db.models.models_v1 import Location, Organization, User
from backend.app.db.models.core_types import LocationType, Role


def run_seed(name: str = "Main Store"):
    db = SessionLocal()
    try:
        # 1) Organisation
        org = db.scalar(select(Organization).where(Organization.name == name))
        if not org:
            org = Organization(name=name, active=True)
            db.add(org)
            db.flush()

        # 2) Location DOCK : destination par défaut des réceptions
        dock = db.scalar(
            select(Location).where(Location.organization_id == org.id, Location.type == LocationType.dock)
        )
        if not dock:
            db.add(Location(organization_id=org.id, name="DOCK", type=LocationType.dock))

        # 3) Admin
        user = db.scalar(select(User).where(User.organization_id == org.id, User.name == "ADMIN"))
        if not user:
            db.add(User(organization_id=org.id, name="ADMIN", role=Role.admin, active=True))

        db.commit()
        print(f"SEED OK: organization={org.name} (id={org.id}), location=DOCK, user=ADMIN")
    finally:
        db.close()


if __name__ == "__main__":
    run_seed()
