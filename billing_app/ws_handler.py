# billing_app/ws_handler.py
import hmac
import logging

from fastapi import APIRouter, Depends, WebSocket

from billing_app import config
from billing_app.deps import get_hub, get_ws_auth_token
from billing_app.ws_broadcast import BroadcastHub

log = logging.getLogger("billing_app.ws_handler")

router = APIRouter()


@router.websocket(config.WS_PATH)
async def realtime_ws(
    websocket: WebSocket,
    hub: BroadcastHub = Depends(get_hub),
    auth_token: str = Depends(get_ws_auth_token),
):
    await websocket.accept()

    if auth_token:
        token = websocket.query_params.get("token") or ""
        if not hmac.compare_digest(token.encode(), auth_token.encode()):
            log.warning("Rejected push client without a valid token")
            await websocket.close(code=1008)
            return

    conn = hub.connect(websocket)
    try:
        # server -> client only; inbound frames are read and ignored
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    except Exception:
        log.exception("Push channel error on client %s", conn.id)
    finally:
        await hub.disconnect(conn)
