"""
DataScienceCluster reconciler.

Reports which registered components the DataScienceCluster enables. The
components themselves are reconciled by their own handlers.
"""

from typing import Dict

import structlog

from odh_controller.bootstrap import schemes
from odh_controller.handlers.registry import ComponentHandler, HandlerRegistry
from odh_controller.handlers.status import patch_status

logger = structlog.get_logger(__name__)


class DataScienceClusterReconciler:

    def __init__(self, manager, components: HandlerRegistry[ComponentHandler]):
        self.client = manager.get_client()
        self.components = components

    def installed_components(self, dsc: dict) -> Dict[str, bool]:
        return {handler.get_name(): handler.is_enabled(dsc) for handler in self.components}

    async def reconcile(self, dsc: dict, event_type: str) -> None:
        if event_type == "DELETED":
            return

        installed = self.installed_components(dsc)
        logger.debug("reconciling DataScienceCluster", name=dsc.get("metadata", {}).get("name"),
                      installed=installed)
        await patch_status(self.client, schemes.DATA_SCIENCE_CLUSTER, dsc, {
            "phase": "Ready",
            "installedComponents": installed,
        })


def new_datasciencecluster_reconciler(manager, components: HandlerRegistry[ComponentHandler]) -> DataScienceClusterReconciler:
    reconciler = DataScienceClusterReconciler(manager, components)
    manager.watch(schemes.DATA_SCIENCE_CLUSTER, reconciler.reconcile, id="datasciencecluster")
    return reconciler
