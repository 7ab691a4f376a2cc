"""Current-user API routes."""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pulse.database import get_db
from pulse.identity import Identity, get_identity
from pulse.models.user import User
from pulse.schemas.user import MeOut, UserUpdate

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/me", response_model=MeOut)
def get_me(identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    """The caller's profile (registered on first request)."""
    return db.query(User).filter(User.user_id == identity.user_id).one()


@router.patch("/me", response_model=MeOut)
def update_me(payload: UserUpdate, identity: Identity = Depends(get_identity), db: Session = Depends(get_db)):
    """Update display name or avatar (partial update)."""
    user = db.query(User).filter(User.user_id == identity.user_id).one()
    for field, value in payload.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(user, field, value)
    db.commit()
    db.refresh(user)
    logger.info("Updated profile of user %s", user.user_id)
    return user
