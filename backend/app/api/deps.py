from __future__ import annotations

from typing import Generator

from fastapi import Header

from backend.app.db.session import SessionLocal

def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_idempotency_key(idempotency_key: str | None = Header(default=None, alias="Idempotency-Key")) -> str | None:
    if idempotency_key is None or not idempotency_key.strip():
        return None
    return idempotency_key.strip()
