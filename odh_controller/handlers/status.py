"""
Status helpers shared by the reconcilers.
"""

import asyncio
from typing import Any, Dict

import structlog
from kubernetes import client

from odh_controller.bootstrap.schemes import ResourceKind

logger = structlog.get_logger(__name__)


def status_changed(obj: Dict[str, Any], status: Dict[str, Any]) -> bool:
    current = obj.get("status") or {}
    return any(current.get(key) != value for key, value in status.items())


async def patch_status(api_client: client.ApiClient, kind: ResourceKind, obj: Dict[str, Any],
                       status: Dict[str, Any]) -> bool:
    """
    Merge `status` into the object's status subresource.

    Skips the write when nothing changed, so a reconciler reacting to its
    own status update settles. Returns True if a patch was sent.
    """
    if not status_changed(obj, status):
        return False

    metadata = obj.get("metadata", {})
    api = client.CustomObjectsApi(api_client)
    body = {"status": status}

    if kind.namespaced:
        await asyncio.to_thread(
            api.patch_namespaced_custom_object_status,
            group=kind.group,
            version=kind.version,
            namespace=metadata.get("namespace"),
            plural=kind.plural,
            name=metadata.get("name"),
            body=body,
        )
    else:
        await asyncio.to_thread(
            api.patch_cluster_custom_object_status,
            group=kind.group,
            version=kind.version,
            plural=kind.plural,
            name=metadata.get("name"),
            body=body,
        )
    logger.debug("patched status", kind=kind.kind, name=metadata.get("name"), status=status)
    return True
