"""
Monitoring service handler.

Reports whether the monitoring namespace named by the Monitoring resource
exists.
"""

import asyncio

import structlog
from kubernetes import client
from kubernetes.client.rest import ApiException

from odh_controller.bootstrap import schemes
from odh_controller.handlers.registry import ServiceHandler
from odh_controller.handlers.status import patch_status
from odh_controller.services.cluster import Platform

logger = structlog.get_logger(__name__)

ODH_MONITORING_NAMESPACE = "opendatahub"
RHOAI_MONITORING_NAMESPACE = "redhat-ods-monitoring"


class MonitoringHandler(ServiceHandler):
    name = "monitoring"

    def __init__(self):
        self.default_namespace = ODH_MONITORING_NAMESPACE
        self._client = None

    def init(self, platform: Platform) -> None:
        if platform is Platform.OPEN_DATA_HUB:
            self.default_namespace = ODH_MONITORING_NAMESPACE
        else:
            self.default_namespace = RHOAI_MONITORING_NAMESPACE

    def new_reconciler(self, manager) -> None:
        self._client = manager.get_client()
        manager.watch(schemes.MONITORING, self.reconcile, id="monitoring")

    async def reconcile(self, obj: dict, event_type: str) -> None:
        if event_type == "DELETED":
            return

        namespace = obj.get("spec", {}).get("namespace") or self.default_namespace
        core = client.CoreV1Api(self._client)
        try:
            await asyncio.to_thread(core.read_namespace, namespace)
        except ApiException as e:
            if e.status != 404:
                raise
            status = {"phase": "NotReady", "reason": "NamespaceNotFound", "namespace": namespace}
        else:
            status = {"phase": "Ready", "reason": "", "namespace": namespace}

        status["observedGeneration"] = obj.get("metadata", {}).get("generation")
        await patch_status(self._client, schemes.MONITORING, obj, status)
