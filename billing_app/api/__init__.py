# billing_app/api/__init__.py
import importlib
import logging
import pkgutil
from typing import List

from fastapi import APIRouter

log = logging.getLogger("billing_app.api")


def route_modules() -> List[str]:
    return sorted(m.name for m in pkgutil.iter_modules(__path__) if m.name.endswith("_routes"))


def build_api_router() -> APIRouter:
    """
    Mount every ``*_routes`` module in this package on a new router. A module
    that fails to import fails app startup.
    """
    router = APIRouter()
    mounted = []

    for module_name in route_modules():
        module = importlib.import_module(f"{__name__}.{module_name}")
        module_router = getattr(module, "router", None)
        if module_router is None:
            log.warning("⚠️ %s has no router", module_name)
            continue
        router.include_router(module_router)
        mounted.append(module_name)

    log.info("✅ Mounted %d API routers: %s", len(mounted), ", ".join(mounted))
    return router
