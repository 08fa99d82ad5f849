"""
Subscription status endpoints.

The facade is read from app.state.subscription_facade; the application wires
it at startup. Status reads never fail: the facade degrades to the best
cached answer.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from .errors import InvalidPlanError
from .facade import SubscriptionFacade

router = APIRouter(prefix="/subscription", tags=["subscription"])


class ActivatePlanRequest(BaseModel):
    plan_id: str = Field(..., min_length=1)


class PurchaseRequest(BaseModel):
    product_id: str = Field(..., min_length=1)


def get_facade(request: Request) -> SubscriptionFacade:
    facade = getattr(request.app.state, "subscription_facade", None)
    if facade is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Subscription service not configured",
        )
    return facade


@router.get("/status", response_model=dict)
async def get_status(facade: SubscriptionFacade = Depends(get_facade)) -> dict:
    return (await facade.get_status()).to_dict()


@router.get("/plans", response_model=dict)
async def list_plans(facade: SubscriptionFacade = Depends(get_facade)) -> dict:
    return {"plans": [plan.to_dict() for plan in facade.plans]}


@router.post("/activate", response_model=dict)
async def activate_plan(
    body: ActivatePlanRequest,
    facade: SubscriptionFacade = Depends(get_facade),
) -> dict:
    try:
        result = await facade.activate(body.plan_id)
    except InvalidPlanError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_dict())
    return result.to_dict()


@router.post("/reset", response_model=dict)
async def reset(facade: SubscriptionFacade = Depends(get_facade)) -> dict:
    return (await facade.reset()).to_dict()


@router.get("/reminder", response_model=dict)
async def reminder(facade: SubscriptionFacade = Depends(get_facade)) -> dict:
    return {"should_show": await facade.should_show_reminder()}


@router.post("/reminder/shown", status_code=status.HTTP_204_NO_CONTENT)
async def mark_reminder_shown(facade: SubscriptionFacade = Depends(get_facade)) -> None:
    await facade.mark_reminder_shown()


@router.get("/feature-available", response_model=dict)
async def feature_available(facade: SubscriptionFacade = Depends(get_facade)) -> dict:
    return {"available": await facade.is_feature_available()}


@router.post("/purchase", response_model=dict)
async def purchase(
    body: PurchaseRequest,
    facade: SubscriptionFacade = Depends(get_facade),
) -> dict:
    return (await facade.purchase(body.product_id)).to_dict()


@router.post("/restore", response_model=dict)
async def restore(facade: SubscriptionFacade = Depends(get_facade)) -> dict:
    return (await facade.restore_purchases()).to_dict()
