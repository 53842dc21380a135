"""
Donations Router - donation submission and history.

Payment failures are surfaced explicitly: the donor is told whether they
were charged.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from backed.core.config import settings
from backed.core.deps import get_db, get_payment_gateway, require_alumni
from backed.core.rate_limit import limiter
from backed.db.models import AlumniProfile
from backed.schemas.donation import DonationCreate, DonationRead, DonationReceipt
from backed.services import donation_service
from backed.services.payment_gateway import PaymentGateway


router = APIRouter()


@router.post("/projects/{project_id}/donations", response_model=DonationReceipt, status_code=201)
@limiter.limit(settings.RATE_LIMIT_DONATIONS)
async def submit_donation(
    request: Request,
    project_id: UUID,
    data: DonationCreate,
    donor: AlumniProfile = Depends(require_alumni),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: Session = Depends(get_db),
):
    """Charge and record a donation. Retrying with the same reference is safe."""
    try:
        result = await donation_service.submit_donation(
            db,
            donor_id=donor.id,
            project_id=project_id,
            amount=data.amount,
            is_anonymous=data.is_anonymous,
            gateway=gateway,
            transaction_reference=data.transaction_reference,
            message=data.message,
        )
    except donation_service.DonationValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except donation_service.ProjectNotFoundError:
        raise HTTPException(status_code=404, detail="Project not found")
    except donation_service.ProjectNotAcceptingDonationsError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except donation_service.ExceedsRemainingTargetError as e:
        raise HTTPException(
            status_code=409,
            detail={"message": str(e), "max_amount": str(e.max_amount)},
        )
    except donation_service.PaymentFailedError as e:
        raise HTTPException(
            status_code=402,
            detail={"message": str(e), "reference": e.reference, "charged": False},
        )
    except donation_service.DonationRecordingError as e:
        raise HTTPException(
            status_code=500,
            detail={
                "message": str(e),
                "reference": e.reference,
                "reconciliation_id": str(e.reconciliation_id) if e.reconciliation_id else None,
            },
        )
    return DonationReceipt.model_validate(result)


@router.get("/me/donations", response_model=list[DonationRead])
def list_my_donations(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    donor: AlumniProfile = Depends(require_alumni),
    db: Session = Depends(get_db),
):
    """The caller's donation history, newest first."""
    donations = donation_service.list_donor_donations(db, donor.id, limit=limit, offset=offset)
    return [DonationRead.model_validate(d) for d in donations]
