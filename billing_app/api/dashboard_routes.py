# billing_app/api/dashboard_routes.py
from fastapi import APIRouter, Depends

from billing_app.deps import get_storage
from billing_app.schemas import DashboardMetrics
from billing_app.storage import Storage

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/metrics", response_model=DashboardMetrics)
def dashboard_metrics(storage: Storage = Depends(get_storage)):
    return DashboardMetrics(**storage.get_dashboard_metrics())
