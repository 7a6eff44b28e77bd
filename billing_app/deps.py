# billing_app/deps.py
"""
Dependency getters for the service components created in ``main.create_app``.

They take an ``HTTPConnection`` so the same getters work for HTTP routes and
the WebSocket gateway.
"""
from starlette.requests import HTTPConnection

from billing_app.events import EventIngress
from billing_app.payments import StripeGateway
from billing_app.reconciler import Reconciler
from billing_app.storage import Storage
from billing_app.ws_broadcast import BroadcastHub


def get_storage(conn: HTTPConnection) -> Storage:
    return conn.app.state.storage


def get_hub(conn: HTTPConnection) -> BroadcastHub:
    return conn.app.state.hub


def get_ingress(conn: HTTPConnection) -> EventIngress:
    return conn.app.state.ingress


def get_reconciler(conn: HTTPConnection) -> Reconciler:
    return conn.app.state.reconciler


def get_processor(conn: HTTPConnection) -> StripeGateway:
    return conn.app.state.processor


def get_ws_auth_token(conn: HTTPConnection) -> str:
    return conn.app.state.ws_auth_token
