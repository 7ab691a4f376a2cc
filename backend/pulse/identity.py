"""Identity boundary.

Authentication happens upstream (the corporate SSO proxy). It forwards the
verified address in ``X-User-Email`` and, optionally, a display name in
``X-User-Name``. This module validates those headers, enforces the allowed
corporate domains, and makes sure a ``User`` row exists. Everything past
this point trusts the resulting ``Identity``.
"""
import logging
import re
from typing import Optional

from fastapi import Depends, Header
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pulse.config import settings
from pulse.database import get_db
from pulse.errors import Forbidden, Unauthenticated
from pulse.models.user import User

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@([A-Za-z0-9-]+(\.[A-Za-z0-9-]+)+)$")


class Identity(BaseModel):
    user_id: str
    email: str
    domain: str
    display_name: str


def parse_email(email: str) -> tuple[str, str]:
    """Return (normalised email, domain) or raise Forbidden."""
    email = email.strip().lower()
    match = _EMAIL_RE.match(email)
    if not match:
        raise Forbidden("A verified corporate e-mail address is required")
    domain = match.group(1)
    allowed = settings.allowed_domains
    if allowed and domain not in allowed:
        raise Forbidden(f"Domain '{domain}' is not allowed to access Pulse")
    return email, domain


def resolve_identity(db: Session, email: str, display_name: Optional[str] = None) -> Identity:
    """Look up (or register on first sight) the user behind an address."""
    email, domain = parse_email(email)
    user = db.query(User).filter(User.email == email).first()
    if not user:
        user = User(email=email, domain=domain, display_name=display_name or email.split("@")[0])
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # Registered by a concurrent first request
            db.rollback()
            user = db.query(User).filter(User.email == email).one()
        else:
            db.refresh(user)
            logger.info("Registered new user %s (%s)", user.user_id, email)
    return Identity(user_id=user.user_id, email=user.email, domain=user.domain, display_name=user.display_name)


def get_identity(
    x_user_email: Optional[str] = Header(None, description="Verified e-mail forwarded by the SSO proxy"),
    x_user_name: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Identity:
    """FastAPI dependency for the caller's identity."""
    if not x_user_email:
        raise Unauthenticated()
    return resolve_identity(db, x_user_email, x_user_name)
