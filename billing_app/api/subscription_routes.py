# billing_app/api/subscription_routes.py
from typing import List

from fastapi import APIRouter, Depends

from billing_app.deps import get_storage
from billing_app.exceptions import NotFoundError
from billing_app.schemas import SubscriptionCreate, SubscriptionDetailOut, SubscriptionOut, SubscriptionUpdate
from billing_app.storage import Storage

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.get("", response_model=List[SubscriptionDetailOut])
def list_subscriptions(storage: Storage = Depends(get_storage)):
    return storage.get_subscriptions()


@router.get("/recent", response_model=List[SubscriptionDetailOut])
def recent_subscriptions(storage: Storage = Depends(get_storage)):
    return storage.get_recent_subscriptions(limit=5)


@router.get("/{subscription_id}", response_model=SubscriptionDetailOut)
def get_subscription(subscription_id: int, storage: Storage = Depends(get_storage)):
    sub = storage.get_subscription(subscription_id)
    if sub is None:
        raise NotFoundError("Subscription not found")
    return sub


@router.post("", response_model=SubscriptionOut)
def create_subscription(payload: SubscriptionCreate, storage: Storage = Depends(get_storage)):
    return storage.create_subscription(payload.model_dump(exclude_unset=True))


@router.put("/{subscription_id}", response_model=SubscriptionOut)
def update_subscription(
    subscription_id: int,
    payload: SubscriptionUpdate,
    storage: Storage = Depends(get_storage),
):
    """Plan changes and status flips. Cancelled subscriptions stay cancelled."""
    sub = storage.update_subscription(subscription_id, payload.model_dump(exclude_unset=True))
    if sub is None:
        raise NotFoundError("Subscription not found")
    return sub
