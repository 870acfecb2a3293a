from __future__ import annotations

import logging

from jose import JWTError, jwt

from crm_client.core.config import Settings, get_settings
from crm_client.security.principal import Principal, Role


logger = logging.getLogger("crm_client.session")


def principal_from_claims(claims: dict) -> Principal | None:
    subject = claims.get("sub")
    email = claims.get("email")
    if not subject or not isinstance(email, str):
        return None

    role_claim = claims.get("role")
    if isinstance(role_claim, dict):
        role_name = str(role_claim.get("name") or "user")
        permissions = role_claim.get("permissions", [])
    else:
        role_name = str(role_claim or "user")
        permissions = claims.get("permissions", [])
    if not isinstance(permissions, list):
        permissions = []

    return Principal(
        id=str(subject),
        email=email,
        role=Role(name=role_name, permissions=frozenset(str(item) for item in permissions)),
    )


def principal_from_token(token: str, settings: Settings | None = None) -> Principal | None:
    if not token:
        return None

    resolved = settings or get_settings()
    try:
        claims = jwt.decode(token, resolved.jwt_secret, algorithms=[resolved.jwt_algorithm])
    except JWTError as exc:
        logger.warning("session.token_rejected", extra={"error": str(exc)})
        return None
    return principal_from_claims(claims)


def issue_token(principal: Principal, settings: Settings | None = None) -> str:
    resolved = settings or get_settings()
    claims = {
        "sub": principal.id,
        "email": principal.email,
        "role": {"name": principal.role.name, "permissions": sorted(principal.role.permissions)},
    }
    return jwt.encode(claims, resolved.jwt_secret, algorithm=resolved.jwt_algorithm)
