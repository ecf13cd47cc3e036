from __future__ import annotations

from .auth_security import get_subject
from .errors import AuthenticationError, AuthorizationError, NotFoundError
from .gateway import ImportGateway
from .models import Role


def resolve_practitioner(token: str | None, gateway: ImportGateway) -> str:
    """
    Token bearer -> id del professionista.
    - token assente / non valido -> 401
    - profilo assente o ruolo diverso da practitioner -> 403
    - record practitioner mancante -> 404
    """
    # protezione extra: elimina spazi / virgolette accidentali
    token = (token or "").strip().strip('"').strip("'")
    if not token:
        raise AuthenticationError("Unauthorized")

    user_id = get_subject(token)
    if not user_id:
        raise AuthenticationError("Unauthorized")

    profile = gateway.find_profile_by_user_id(user_id)
    if profile is None or profile.role != Role.PRACTITIONER:
        raise AuthorizationError("Only practitioners can import data")

    practitioner_id = gateway.find_practitioner_id(profile.id)
    if not practitioner_id:
        raise NotFoundError("Practitioner profile not found")
    return practitioner_id
