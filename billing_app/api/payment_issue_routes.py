# billing_app/api/payment_issue_routes.py
from typing import List

from fastapi import APIRouter, Depends

from billing_app.deps import get_storage
from billing_app.exceptions import NotFoundError
from billing_app.schemas import PaymentIssueDetailOut, PaymentIssueOut
from billing_app.storage import Storage

router = APIRouter(prefix="/payment-issues", tags=["payment-issues"])


@router.get("", response_model=List[PaymentIssueDetailOut])
def list_payment_issues(storage: Storage = Depends(get_storage)):
    return storage.get_payment_issues()


@router.post("/{issue_id}/resolve", response_model=PaymentIssueOut)
def resolve_payment_issue(issue_id: int, storage: Storage = Depends(get_storage)):
    issue = storage.resolve_payment_issue(issue_id)
    if issue is None:
        raise NotFoundError("Payment issue not found")
    return issue
