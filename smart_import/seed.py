from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from .db import db_session
from .models import Practitioner, Profile, Role

DEMO_USER_ID = "demo-practitioner"


def seed_base(factory: sessionmaker | None = None, user_id: str = DEMO_USER_ID) -> str:
    """
    Popola un professionista demo (idempotente):
    - profilo con ruolo practitioner collegato a user_id
    - record practitioner
    Ritorna l'id del practitioner.
    """
    with db_session(factory) as s:
        profile = s.execute(select(Profile).where(Profile.user_id == user_id)).scalar_one_or_none()
        if profile is None:
            profile = Profile(
                user_id=user_id,
                role=Role.PRACTITIONER,
                first_name="Mario",
                last_name="Rossi",
                email=f"{user_id}@studio.local",
            )
            s.add(profile)
            s.flush()

        practitioner = s.execute(
            select(Practitioner).where(Practitioner.profile_id == profile.id)
        ).scalar_one_or_none()
        if practitioner is None:
            practitioner = Practitioner(profile_id=profile.id, specialty="Odontoiatria")
            s.add(practitioner)
            s.flush()

        return practitioner.id
