from fastapi import APIRouter, Depends, Response
from pydantic import BaseModel, Field, field_validator

from zazzles.core.security import SESSION_MAX_AGE_SECONDS, create_session_cookie
from zazzles.db.credit_store import CreditStore
from zazzles.deps import SESSION_COOKIE_NAME, get_credit_service, get_current_business, get_store
from zazzles.models.business import Business
from zazzles.services import businesses as business_service
from zazzles.services.credits import CreditService

router = APIRouter()


class CreateBusinessRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., max_length=320)

    @field_validator("email")
    @classmethod
    def _email_has_at(cls, v: str) -> str:
        if "@" not in v.strip():
            raise ValueError("Invalid email address")
        return v


def _business_out(business: Business) -> dict:
    return {
        "id": str(business.id),
        "name": business.name,
        "email": business.email,
        "subscription_status": business.subscription_status.value,
        "subscription_tier": business.subscription_tier,
        "auto_topup_enabled": business.auto_topup_enabled,
    }


@router.post("", status_code=201)
async def create_business(
    body: CreateBusinessRequest,
    response: Response,
    store: CreditStore = Depends(get_store),
    credits: CreditService = Depends(get_credit_service),
):
    """Sign up a business; grants trial credits and sets the httpOnly session cookie."""
    business = await business_service.create_business(store, credits, body.name, body.email)
    session_value = create_session_cookie(business_service.session_payload_for_business(business))
    response.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=session_value,
        max_age=SESSION_MAX_AGE_SECONDS,
        httponly=True,
        secure=False,  # set True in prod with HTTPS
        samesite="lax",
        path="/",
    )
    return {"business": _business_out(business)}


@router.get("/me")
async def business_me(business: Business = Depends(get_current_business)):
    return _business_out(business)
