"""
DSCInitialization reconciler.

Makes sure the namespaces named by the DSCInitialization exist.
"""

import asyncio
from typing import List

import structlog
from kubernetes import client
from kubernetes.client.rest import ApiException

from odh_controller.bootstrap import schemes
from odh_controller.handlers.status import patch_status

logger = structlog.get_logger(__name__)

LABEL_GENERATED_NAMESPACE = "opendatahub.io/generated-namespace"


class DSCInitializationReconciler:

    def __init__(self, api_client: client.ApiClient):
        self.client = api_client

    def setup_with_manager(self, manager) -> None:
        manager.watch(schemes.DSC_INITIALIZATION, self.reconcile, id="dscinitialization")

    @staticmethod
    def required_namespaces(dsci: dict) -> List[str]:
        spec = dsci.get("spec", {})
        namespaces = []
        for namespace in (spec.get("applicationsNamespace"), (spec.get("monitoring") or {}).get("namespace")):
            if namespace and namespace not in namespaces:
                namespaces.append(namespace)
        return namespaces

    def ensure_namespace(self, name: str) -> bool:
        """Create namespace `name` if missing. Returns True if it was created."""
        core = client.CoreV1Api(self.client)
        try:
            core.read_namespace(name)
            return False
        except ApiException as e:
            if e.status != 404:
                raise

        body = client.V1Namespace(metadata=client.V1ObjectMeta(
            name=name,
            labels={LABEL_GENERATED_NAMESPACE: "true"},
        ))
        try:
            core.create_namespace(body)
        except ApiException as e:
            if e.status == 409:
                return False
            raise
        logger.info("created namespace", namespace=name)
        return True

    async def reconcile(self, dsci: dict, event_type: str) -> None:
        if event_type == "DELETED":
            return

        name = dsci.get("metadata", {}).get("name")
        try:
            for namespace in self.required_namespaces(dsci):
                await asyncio.to_thread(self.ensure_namespace, namespace)
        except ApiException as e:
            logger.error("failed to reconcile DSCInitialization", name=name, reason=e.reason)
            await patch_status(self.client, schemes.DSC_INITIALIZATION, dsci, {
                "phase": "Error",
                "errorMessage": f"unable to create namespace: {e.reason}",
            })
            raise

        await patch_status(self.client, schemes.DSC_INITIALIZATION, dsci, {
            "phase": "Ready",
            "errorMessage": "",
        })
