"""
Dashboard component handler.
"""

import structlog

from odh_controller.bootstrap import schemes
from odh_controller.handlers.registry import ComponentHandler
from odh_controller.handlers.status import patch_status
from odh_controller.services.cluster import Platform

logger = structlog.get_logger(__name__)

PRODUCT_NAMES = {
    Platform.OPEN_DATA_HUB: "Open Data Hub",
    Platform.SELF_MANAGED_RHOAI: "OpenShift AI Self-Managed",
    Platform.MANAGED_RHOAI: "OpenShift AI Cloud Service",
}


class DashboardHandler(ComponentHandler):
    name = "dashboard"

    def __init__(self):
        self.product_name = PRODUCT_NAMES[Platform.OPEN_DATA_HUB]
        self._client = None

    def init(self, platform: Platform) -> None:
        self.product_name = PRODUCT_NAMES[platform]

    def new_reconciler(self, manager) -> None:
        self._client = manager.get_client()
        manager.watch(schemes.DASHBOARD, self.reconcile, id="dashboard")

    async def reconcile(self, obj: dict, event_type: str) -> None:
        if event_type == "DELETED":
            return
        await patch_status(self._client, schemes.DASHBOARD, obj, {
            "phase": "Ready",
            "productName": self.product_name,
            "observedGeneration": obj.get("metadata", {}).get("generation"),
        })
