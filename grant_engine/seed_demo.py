from .config import get_settings
from .db import Base, MedicalRecord, Person, create_db_engine, create_session_factory

# ---------------------------------------------------------------------
# Demo people: patients own records, doctors receive grants
# ---------------------------------------------------------------------

people_data = [
    {"id": 1, "display_name": "Kripa Sree", "email": "kripa@example.com", "role": "patient"},
    {"id": 2, "display_name": "Arun Kumar", "email": "arun.doc@example.com", "role": "doctor"},
    {"id": 3, "display_name": "Madhu", "email": "madhu@example.com", "role": "patient"},
    {"id": 4, "display_name": "Meera Nair", "email": "meera.doc@example.com", "role": "doctor"},
]

records_data = [
    {
        "id": 10,
        "owner_id": 1,
        "title": "Annual check-up 2024",
        "record_type": "LAB_REPORT",
        "blood_group": "O+",
        "blood_pressure": "128/84",
        "heart_rate": 76,
        "temperature": 36.8,
        "weight": 61.5,
        "diagnosis_condition": "Hypertension",
        "medication": "Amlodipine 5mg",
    },
    {
        "id": 11,
        "owner_id": 1,
        "title": "Chest X-ray",
        "record_type": "IMAGING",
        "diagnosis_condition": "No acute findings",
    },
    {
        "id": 20,
        "owner_id": 3,
        "title": "Asthma follow-up",
        "record_type": "CONSULTATION",
        "blood_group": "A+",
        "heart_rate": 82,
        "diagnosis_condition": "Asthma",
        "medication": "Salbutamol inhaler",
    },
]


def seed_demo(engine, reset: bool = True) -> int:
    """Load the demo people and records. Returns how many records exist afterwards."""
    if reset:
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    db = create_session_factory(engine)()
    try:
        for p in people_data:
            db.merge(Person(**p))
        for r in records_data:
            db.merge(MedicalRecord(**r))
        db.commit()
        return db.query(MedicalRecord).count()
    finally:
        db.close()


if __name__ == "__main__":
    settings = get_settings()
    print(f"🔄 Seeding {settings.database_url} ...")
    count = seed_demo(create_db_engine(settings.database_url))
    print(f"✅ {len(people_data)} people and {count} records ready.")
