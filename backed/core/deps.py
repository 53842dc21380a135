"""FastAPI dependencies for authentication, authorization, and database access."""

from functools import lru_cache
from typing import Generator
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from backed.core.config import settings
from backed.core.security import decode_access_token
from backed.db.enums import PrincipalRole
from backed.db.models import AlumniProfile, School
from backed.db.session import SessionLocal
from backed.schemas.auth import Principal
from backed.services.ai_provider import AIProvider, get_configured_provider
from backed.services.payment_gateway import PaymentGateway, SimulatedPaymentGateway
from backed.services.relevance_service import Scorer, build_scorer

BEARER_PREFIX = "bearer "


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_principal(request: Request) -> Principal:
    """
    Resolve the caller from the identity provider's bearer token.

    Raises:
        HTTPException 401: Missing, invalid or expired token
        HTTPException 403: Unknown role
    """
    header = request.headers.get("Authorization", "")
    if not header.lower().startswith(BEARER_PREFIX):
        raise HTTPException(status_code=401, detail="Not authenticated")

    token = header[len(BEARER_PREFIX):].strip()
    try:
        payload = decode_access_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    role = payload.get("role")
    if not PrincipalRole.has_value(role):
        raise HTTPException(status_code=403, detail=f"Unknown role '{role}'")

    return Principal(user_id=user_id, role=PrincipalRole(role))


def require_alumni(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> AlumniProfile:
    """The caller's alumni profile. 403 for schools, 404 without a profile."""
    if principal.role != PrincipalRole.ALUMNI:
        raise HTTPException(status_code=403, detail="Alumni access required")
    donor = db.execute(
        select(AlumniProfile).where(AlumniProfile.user_id == principal.user_id)
    ).scalar_one_or_none()
    if not donor:
        raise HTTPException(status_code=404, detail="Alumni profile not found")
    return donor


def require_school(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> School:
    """The school administered by the caller."""
    if principal.role != PrincipalRole.SCHOOL:
        raise HTTPException(status_code=403, detail="School access required")
    school = db.execute(
        select(School).where(School.admin_user_id == principal.user_id)
    ).scalar_one_or_none()
    if not school:
        raise HTTPException(status_code=404, detail="School profile not found")
    return school


@lru_cache(maxsize=1)
def _demo_gateway() -> SimulatedPaymentGateway:
    return SimulatedPaymentGateway(
        provider_name=settings.PAYMENT_PROVIDER,
        delay_seconds=settings.PAYMENT_GATEWAY_DELAY_SECONDS,
    )


def get_payment_gateway() -> PaymentGateway:
    """
    Process-wide gateway so retried references are recognized.

    Raises:
        HTTPException 503: Live payments requested but not available
    """
    if not settings.PAYMENTS_DEMO_MODE:
        raise HTTPException(status_code=503, detail="Live payments are not configured")
    return _demo_gateway()


def get_ai_provider() -> AIProvider | None:
    """Configured AI provider, or None when no key is set."""
    return get_configured_provider()


def get_scorer(provider: AIProvider | None = Depends(get_ai_provider)) -> Scorer:
    return build_scorer(provider)
