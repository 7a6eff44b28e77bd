# billing_app/api/realtime_routes.py
from fastapi import APIRouter, Depends

from billing_app import config
from billing_app.deps import get_hub, get_processor
from billing_app.payments import StripeGateway
from billing_app.schemas import RealtimeFeatures, RealtimeStatus
from billing_app.ws_broadcast import BroadcastHub

router = APIRouter(prefix="/realtime", tags=["realtime"])


@router.get("/status", response_model=RealtimeStatus)
async def realtime_status(
    hub: BroadcastHub = Depends(get_hub),
    processor: StripeGateway = Depends(get_processor),
):
    return RealtimeStatus(
        stripe_configured=processor.configured,
        webhook_endpoint=config.WEBHOOK_ENDPOINT,
        active_connections=hub.connection_count,
        features=RealtimeFeatures(
            real_time_payments=processor.configured,
            webhook_processing=processor.configured,
        ),
    )
