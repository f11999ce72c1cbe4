# Overview: Service-layer operations for bearer sessions; issue, validate and revoke.

"""
Session Token Management

WHY: The API authenticates every call with a bearer token. Issuing
credentials to people is outside this service; tokens are minted for an
existing user through the CLI.

SECURITY FEATURES:
- Cryptographically secure random tokens (32 bytes)
- Tokens hashed with SHA-256 before storage (fast, one-way)
- Absolute expiry (SESSION_TTL_HOURS)
- Revocable
- Tenant context (company_id, store_id) is fixed at issue time
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import timedelta

from ..errors import NotFound, ValidationFailed
from ..models import Company, SessionToken, User
from ..permissions import Actor, Role
from ..time_utils import utcnow


def generate_token() -> str:
    """64-character hex string (32 bytes of entropy). Never stored."""
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_session(session, user_id: int, *, ttl_hours: int = 24) -> tuple[SessionToken, str]:
    """Returns (session_record, plaintext_token); only the hash is persisted."""
    user = session.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    if not user.is_active:
        raise ValidationFailed("User is deactivated")
    if Role.parse(user.role) is not Role.SUPER_ADMIN:
        if not user.company_id:
            raise ValidationFailed("User must belong to a company")
        company = session.get(Company, user.company_id)
        if not company or not company.is_active:
            raise ValidationFailed("Company is not active")

    token = generate_token()
    now = utcnow()
    record = SessionToken(
        user_id=user.id,
        company_id=user.company_id,
        store_id=user.store_id,
        token_hash=hash_token(token),
        created_at=now,
        expires_at=now + timedelta(hours=ttl_hours),
    )
    session.add(record)
    session.commit()
    return record, token


def validate_session(session, token: str) -> Actor | None:
    """Resolve a bearer token to the caller, or None if unusable."""
    if not token:
        return None
    record = session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not record or record.revoked_at is not None:
        return None
    if record.expires_at <= utcnow():
        return None
    user = record.user
    if not user or not user.is_active:
        return None
    try:
        return Actor.from_user(user, company_id=record.company_id, store_id=record.store_id)
    except ValueError:
        return None


def revoke_session(session, token: str) -> bool:
    record = session.query(SessionToken).filter_by(token_hash=hash_token(token)).first()
    if not record or record.revoked_at is not None:
        return False
    record.revoked_at = utcnow()
    session.commit()
    return True
