"""Crew directory service — the minimal surface the workflow engine needs."""

import logging

from sqlalchemy import func, select

from production_hub.core.exceptions import ConflictError, ValidationError
from production_hub.models import db
from production_hub.models.crew import CrewMember

logger = logging.getLogger(__name__)


def create_crew_member(data: dict) -> CrewMember:
    """Create a crew member.

    Raises:
        ValidationError: name or email missing.
        ConflictError: email already registered.
    """
    name = data.get("name")
    name = name.strip() if isinstance(name, str) else ""
    email = data.get("email")
    email = email.strip().lower() if isinstance(email, str) else ""
    errors = {}
    if not name:
        errors["name"] = "required"
    if not email or "@" not in email:
        errors["email"] = "a valid email is required"
    if errors:
        raise ValidationError("Invalid crew member", details=errors)

    taken = db.session.execute(
        select(CrewMember.id).where(func.lower(CrewMember.email) == email)
    ).scalar_one_or_none()
    if taken is not None:
        raise ConflictError("CrewMember", "email", email)

    crew = CrewMember(
        name=name,
        email=email,
        phone=data.get("phone"),
        photo_url=data.get("photo_url"),
        is_active=bool(data.get("is_active", True)),
    )
    db.session.add(crew)
    db.session.commit()
    logger.info("CrewMember created id=%s", crew.id)
    return crew


def list_crew(include_archived: bool = False) -> list[CrewMember]:
    stmt = select(CrewMember)
    if not include_archived:
        stmt = stmt.where(CrewMember.is_archived.is_(False))
    return db.session.execute(stmt.order_by(CrewMember.name)).scalars().all()
