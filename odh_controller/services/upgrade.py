"""
Cleanup of resources left behind by previous releases.
"""

from dataclasses import dataclass
from typing import List, Optional

import structlog
from kubernetes import client
from kubernetes.client.rest import ApiException

from odh_controller.bootstrap import schemes
from odh_controller.bootstrap.errors import OperatorError
from odh_controller.bootstrap.schemes import ResourceKind
from odh_controller.services.cluster import ClusterInfo

logger = structlog.get_logger(__name__)

LEGACY_MONITORING_NAMESPACE = "redhat-ods-monitoring"


class CleanupError(OperatorError):
    """One or more legacy resources could not be deleted."""


@dataclass(frozen=True)
class LegacyResource:
    kind: ResourceKind
    name: str
    namespace: Optional[str] = None


def legacy_resources(info: ClusterInfo) -> List[LegacyResource]:
    """Objects the current release no longer manages."""
    resources = [
        LegacyResource(schemes.SERVICE_MONITOR, "rhods-monitor-federation", LEGACY_MONITORING_NAMESPACE),
        LegacyResource(schemes.PROMETHEUS_RULE, "deadmanssnitch-alerting-rules", LEGACY_MONITORING_NAMESPACE),
    ]
    if info.managed:
        resources.append(LegacyResource(schemes.CONSOLE_LINK, "rhodslink"))
    return resources


def _delete(api: client.CustomObjectsApi, resource: LegacyResource) -> bool:
    kind = resource.kind
    try:
        if resource.namespace:
            api.delete_namespaced_custom_object(
                group=kind.group,
                version=kind.version,
                namespace=resource.namespace,
                plural=kind.plural,
                name=resource.name,
            )
        else:
            api.delete_cluster_custom_object(
                group=kind.group,
                version=kind.version,
                plural=kind.plural,
                name=resource.name,
            )
    except ApiException as e:
        if e.status == 404:
            return False
        raise
    return True


def cleanup_existing_resources(api_client: client.ApiClient, info: ClusterInfo) -> int:
    """
    Delete every legacy resource that is still present.

    Keeps going past individual failures and raises CleanupError at the end
    if any deletion failed. Returns the number of deleted objects.
    """
    api = client.CustomObjectsApi(api_client)
    deleted = 0
    failures = []

    for resource in legacy_resources(info):
        try:
            if _delete(api, resource):
                deleted += 1
                logger.info("deleted legacy resource", kind=resource.kind.kind,
                            name=resource.name, namespace=resource.namespace)
        except ApiException as e:
            failures.append(f"{resource.kind.kind} {resource.name}: {e.reason}")

    if failures:
        raise CleanupError("failed to delete legacy resources: " + "; ".join(failures))
    return deleted
