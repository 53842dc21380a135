"""Feed Router - personalized project feed for alumni."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backed.core.deps import get_db, require_alumni
from backed.db.models import AlumniProfile
from backed.schemas.feed import FeedResponse
from backed.services import feed_service


router = APIRouter()


@router.get("/personalized", response_model=FeedResponse)
def get_personalized_feed(
    donor: AlumniProfile = Depends(require_alumni),
    db: Session = Depends(get_db),
):
    """
    Ranked feed for the caller.

    Always 200: failures come back flagged as ``degraded`` with a message.
    """
    result = feed_service.build_personalized_feed(db, donor)
    return FeedResponse.from_result(result)
