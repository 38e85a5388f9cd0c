"""
Bootstrap seeding: the first operator account and the hospital directory.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.auth import ROLES
from ..core.security import hash_password
from ..models.app_user import AppUser
from ..models.hospital import Hospital

DEFAULT_HOSPITALS_PATH = Path(__file__).resolve().parents[1] / "data" / "hospitals.json"


def seed_admin_user(db: Session) -> None:
    logger = logging.getLogger("auth-seed")
    email = (os.getenv("AMBU_ADMIN_EMAIL") or "admin@ambudispatch.local").strip().lower()
    password = (os.getenv("AMBU_ADMIN_PASSWORD") or "").strip()
    role = (os.getenv("AMBU_ADMIN_ROLE") or "ADMIN").strip().upper()

    if not password:
        logger.warning("Skipping admin seed: AMBU_ADMIN_PASSWORD is empty")
        return
    if role not in ROLES:
        logger.warning("Unknown AMBU_ADMIN_ROLE=%s; using ADMIN", role)
        role = "ADMIN"

    existing = db.query(AppUser).filter(func.lower(AppUser.email) == email).first()
    if existing:
        if existing.role != role or not existing.is_active:
            existing.role = role
            existing.is_active = True
            db.commit()
        return

    db.add(AppUser(email=email, name="Administrator", password_hash=hash_password(password), role=role))
    db.commit()
    logger.info("Seeded admin user %s", email)


def _load_seed(path: Path) -> List[Dict[str, Any]]:
    with path.open("r", encoding="utf-8") as f:
        data = json.load(f)
    return data if isinstance(data, list) else []


def seed_hospitals(db: Session, seed_path: Path = DEFAULT_HOSPITALS_PATH) -> int:
    """Insert hospitals from a JSON list when the table is empty. Returns rows inserted."""
    existing = db.query(func.count(Hospital.id)).scalar() or 0
    if existing > 0 or not seed_path.exists():
        return 0
    count = 0
    for item in _load_seed(seed_path):
        if not item.get("name") or item.get("latitude") is None or item.get("longitude") is None:
            continue
        db.add(
            Hospital(
                name=item["name"],
                address=item.get("address") or "",
                phone=item.get("phone") or "",
                email=item.get("email"),
                latitude=float(item["latitude"]),
                longitude=float(item["longitude"]),
            )
        )
        count += 1
    db.commit()
    return count
