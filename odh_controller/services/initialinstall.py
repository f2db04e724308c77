"""
Default resources created on first install.

Both creations are idempotent: an existing instance, or a concurrent
creation that wins the race, leaves the cluster untouched.
"""

from typing import Iterable

import structlog
from kubernetes import client
from kubernetes.client.rest import ApiException

from odh_controller.bootstrap import schemes
from odh_controller.bootstrap.schemes import ResourceKind
from odh_controller.services.cluster import ClusterInfo

logger = structlog.get_logger(__name__)

DEFAULT_DSCI_NAME = "default-dsci"
DEFAULT_DSC_NAME = "default-dsc"


def _list_instances(api: client.CustomObjectsApi, kind: ResourceKind) -> list:
    result = api.list_cluster_custom_object(group=kind.group, version=kind.version, plural=kind.plural)
    return result.get("items", [])


def _create(api: client.CustomObjectsApi, kind: ResourceKind, body: dict) -> bool:
    try:
        api.create_cluster_custom_object(
            group=kind.group,
            version=kind.version,
            plural=kind.plural,
            body=body,
        )
    except ApiException as e:
        if e.status == 409:
            logger.info("resource already exists", kind=kind.kind, name=body["metadata"]["name"])
            return False
        raise
    logger.info("created resource", kind=kind.kind, name=body["metadata"]["name"])
    return True


def default_dsci(info: ClusterInfo, monitoring_namespace: str) -> dict:
    return {
        "apiVersion": schemes.DSC_INITIALIZATION.api_version,
        "kind": schemes.DSC_INITIALIZATION.kind,
        "metadata": {"name": DEFAULT_DSCI_NAME},
        "spec": {
            "applicationsNamespace": info.application_namespace,
            "monitoring": {
                "managementState": "Managed",
                "namespace": monitoring_namespace,
            },
            "trustedCABundle": {
                "managementState": "Managed",
                "customCABundle": "",
            },
        },
    }


def default_dsc(components: Iterable[str]) -> dict:
    return {
        "apiVersion": schemes.DATA_SCIENCE_CLUSTER.api_version,
        "kind": schemes.DATA_SCIENCE_CLUSTER.kind,
        "metadata": {"name": DEFAULT_DSC_NAME},
        "spec": {
            "components": {name: {"managementState": "Managed"} for name in components},
        },
    }


def create_default_dsci(api_client: client.ApiClient, info: ClusterInfo, monitoring_namespace: str) -> bool:
    """Create the default DSCInitialization unless one exists. Returns True if created."""
    api = client.CustomObjectsApi(api_client)
    existing = _list_instances(api, schemes.DSC_INITIALIZATION)
    if existing:
        logger.info("DSCInitialization already exists, skipping default creation",
                    name=existing[0].get("metadata", {}).get("name"))
        return False
    return _create(api, schemes.DSC_INITIALIZATION, default_dsci(info, monitoring_namespace))


def create_default_dsc(api_client: client.ApiClient, components: Iterable[str]) -> bool:
    """Create the default DataScienceCluster unless one exists. Returns True if created."""
    api = client.CustomObjectsApi(api_client)
    if _list_instances(api, schemes.DATA_SCIENCE_CLUSTER):
        logger.info("DataScienceCluster already exists, skipping default creation")
        return False
    return _create(api, schemes.DATA_SCIENCE_CLUSTER, default_dsc(components))
