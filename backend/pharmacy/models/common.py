from __future__ import annotations

import uuid

from ..extensions import db


def new_id() -> str:
    """Random 128-bit identifier in canonical hyphenated form."""
    return str(uuid.uuid4())


def uuid_pk():
    return db.Column(db.String(36), primary_key=True, default=new_id)


def uuid_fk(target: str, *, nullable: bool = True, index: bool = True):
    return db.Column(db.String(36), db.ForeignKey(target), nullable=nullable, index=index)
