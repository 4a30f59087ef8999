"""
Lookups into collaborator-owned data: who owns a record, what it is called,
and how to reach a person. The engine only reads through this interface.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from .db import MedicalRecord, Person, RECORD_FIELDS
from .errors import StoreUnavailable


@dataclass(frozen=True)
class ResourceInfo:
    resource_id: int
    owner_id: int
    title: str


@dataclass(frozen=True)
class PersonInfo:
    person_id: int
    display_name: str
    contact: Optional[str]


class ResourceCatalog:
    def lookup_resource(self, resource_id: int) -> Optional[ResourceInfo]:
        raise NotImplementedError

    def lookup_person(self, person_id: int) -> Optional[PersonInfo]:
        raise NotImplementedError

    def load_record(self, resource_id: int) -> Optional[Dict[str, Any]]:
        """All shareable fields of a record keyed by field identifier."""
        raise NotImplementedError


class SqlCatalog(ResourceCatalog):
    """Reads the people / medical_records tables."""

    def __init__(self, session_factory):
        self._session_factory = session_factory

    def _read(self, fn):
        db = self._session_factory()
        try:
            return fn(db)
        except SQLAlchemyError as e:
            raise StoreUnavailable(str(e)) from e
        finally:
            db.close()

    def lookup_resource(self, resource_id: int) -> Optional[ResourceInfo]:
        def q(db):
            rec = db.get(MedicalRecord, resource_id)
            if not rec:
                return None
            return ResourceInfo(resource_id=rec.id, owner_id=rec.owner_id, title=rec.title or "Untitled Record")
        return self._read(q)

    def lookup_person(self, person_id: int) -> Optional[PersonInfo]:
        def q(db):
            p = db.get(Person, person_id)
            if not p:
                return None
            return PersonInfo(person_id=p.id, display_name=p.display_name, contact=p.email)
        return self._read(q)

    def load_record(self, resource_id: int) -> Optional[Dict[str, Any]]:
        def q(db):
            rec = db.get(MedicalRecord, resource_id)
            if not rec:
                return None
            return {name: getattr(rec, column) for name, column in RECORD_FIELDS.items()}
        return self._read(q)
