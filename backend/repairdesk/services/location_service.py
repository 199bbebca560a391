# Overview: Location (branch) bootstrap; every order, part and count is scoped to one.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import Location
from ..validation import clean_str


def create_location(name, code) -> Location:
    name = clean_str(name, field="name", required=True, max_len=128)
    code = clean_str(code, field="code", required=True, max_len=32).upper()

    if db.session.query(Location).filter_by(code=code).first():
        raise ValidationError(f"Location code '{code}' already exists")

    location = Location(name=name, code=code)
    db.session.add(location)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError(f"Location code '{code}' already exists")
    return location


def list_locations() -> list[Location]:
    return db.session.query(Location).order_by(Location.id.asc()).all()
