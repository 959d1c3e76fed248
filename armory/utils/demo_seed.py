"""
Seed demo data: three bases, an administrator, base commanders, logistics
officers and two purchases with sample assets.

    python -m armory.utils.demo_seed

Every demo account uses the password ``password123``. Running it against a
database that already has bases does nothing.
"""
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from armory.database import Base, SessionLocal, engine
from armory.models import Asset, AssetStatus, EquipmentType, MilitaryBase, Purchase, Role, User
from armory.utils.security import get_password_hash

DEMO_PASSWORD = "password123"

BASES = [
    {"name": "Fort Liberty", "code": "FL001", "location": "North Carolina, USA",
     "description": "Primary training and deployment base"},
    {"name": "Camp Pendleton", "code": "CP002", "location": "California, USA",
     "description": "Marine Corps base for amphibious operations"},
    {"name": "Joint Base Lewis-McChord", "code": "JBLM003", "location": "Washington, USA",
     "description": "Joint Army and Air Force base"},
]

# (email, username, first name, last name, role, base code)
USERS = [
    ("admin@military.gov", "admin", "System", "Administrator", Role.ADMIN, None),
    ("commander.fl@military.gov", "cmdfl", "John", "Smith", Role.BASE_COMMANDER, "FL001"),
    ("commander.cp@military.gov", "cmdcp", "Sarah", "Johnson", Role.BASE_COMMANDER, "CP002"),
    ("logistics.fl@military.gov", "logfl", "Mike", "Wilson", Role.LOGISTICS_OFFICER, "FL001"),
    ("logistics.cp@military.gov", "logcp", "Lisa", "Brown", Role.LOGISTICS_OFFICER, "CP002"),
]

PURCHASES = [
    {
        "purchase_order": "PO-2024-001",
        "vendor": "Defense Contractors Inc.",
        "total_amount": Decimal("250000.00"),
        "purchase_date": date(2024, 1, 15),
        "description": "Vehicle procurement for base operations",
        "base": "FL001",
        "created_by": "cmdfl",
        "assets": [
            ("VH-001-2024", "M1151 HMMWV", "Armored utility vehicle", EquipmentType.VEHICLE, "125000.00"),
            ("VH-002-2024", "M1151 HMMWV", "Armored utility vehicle", EquipmentType.VEHICLE, "125000.00"),
        ],
    },
    {
        "purchase_order": "PO-2024-002",
        "vendor": "Military Supplies Corp",
        "total_amount": Decimal("75000.00"),
        "purchase_date": date(2024, 2, 1),
        "description": "Communication equipment upgrade",
        "base": "CP002",
        "created_by": "cmdcp",
        "assets": [
            ("CM-001-2024", "AN/PRC-152 Radio", "Tactical radio system", EquipmentType.COMMUNICATION, "15000.00"),
            ("WP-001-2024", "M4A1 Carbine", "Standard issue rifle", EquipmentType.WEAPON, "1200.00"),
            ("WP-002-2024", "M249 SAW", "Squad automatic weapon", EquipmentType.WEAPON, "4500.00"),
            ("AM-001-2024", "5.56mm NATO Rounds", "Case of 1000 rounds", EquipmentType.AMMUNITION, "500.00"),
        ],
    },
]


def seed(db: Session):
    if db.query(MilitaryBase).first():
        print("Bases already exist, skipping demo seed.")
        return

    bases = {}
    for data in BASES:
        base = MilitaryBase(**data)
        db.add(base)
        bases[data["code"]] = base
    db.flush()
    print(f"Created bases: {', '.join(b['name'] for b in BASES)}")

    hashed = get_password_hash(DEMO_PASSWORD)
    users = {}
    for email, username, first_name, last_name, role, base_code in USERS:
        user = User(
            email=email,
            username=username,
            hashed_password=hashed,
            first_name=first_name,
            last_name=last_name,
            role=role,
            base_id=bases[base_code].id if base_code else None,
        )
        db.add(user)
        users[username] = user
    db.flush()
    print(f"Created users: {', '.join(u[0] for u in USERS)}")

    for data in PURCHASES:
        base = bases[data["base"]]
        purchase = Purchase(
            purchase_order=data["purchase_order"],
            vendor=data["vendor"],
            total_amount=data["total_amount"],
            purchase_date=data["purchase_date"],
            description=data["description"],
            base_id=base.id,
            created_by_id=users[data["created_by"]].id,
        )
        db.add(purchase)
        db.flush()
        for serial_number, name, description, equipment_type, value in data["assets"]:
            db.add(Asset(
                serial_number=serial_number,
                name=name,
                description=description,
                equipment_type=equipment_type,
                status=AssetStatus.AVAILABLE,
                base_id=base.id,
                purchase_id=purchase.id,
                value=Decimal(value),
                acquisition_date=data["purchase_date"],
            ))
        print(f"Created purchase {data['purchase_order']} with {len(data['assets'])} assets")

    db.commit()
    print(f"Demo data ready. Log in as admin@military.gov / {DEMO_PASSWORD}")


def main():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed(db)
    except Exception as e:
        db.rollback()
        print(f"ERROR: demo seed failed: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
