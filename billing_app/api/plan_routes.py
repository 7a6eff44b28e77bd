# billing_app/api/plan_routes.py
import logging
from typing import List

from fastapi import APIRouter, Depends

from billing_app.deps import get_storage
from billing_app.exceptions import NotFoundError
from billing_app.schemas import PlanCreate, PlanOut, PlanUpdate
from billing_app.storage import Storage

log = logging.getLogger("billing_app.plan_routes")

router = APIRouter(prefix="/subscription-plans", tags=["plans"])


@router.get("", response_model=List[PlanOut])
def list_plans(storage: Storage = Depends(get_storage)):
    return storage.get_subscription_plans()


@router.post("", response_model=PlanOut)
def create_plan(payload: PlanCreate, storage: Storage = Depends(get_storage)):
    plan = storage.create_subscription_plan(payload.model_dump())
    log.info("Plan %s created: %s", plan.id, plan.name)
    return plan


@router.put("/{plan_id}", response_model=PlanOut)
def update_plan(plan_id: int, payload: PlanUpdate, storage: Storage = Depends(get_storage)):
    plan = storage.update_subscription_plan(plan_id, payload.model_dump(exclude_unset=True))
    if plan is None:
        raise NotFoundError("Plan not found")
    return plan


@router.delete("/{plan_id}")
def delete_plan(plan_id: int, storage: Storage = Depends(get_storage)):
    if not storage.delete_subscription_plan(plan_id):
        raise NotFoundError("Plan not found")
    return {"success": True}
