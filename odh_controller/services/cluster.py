"""
Cluster probe.

Resolves, once per process, the facts every other component branches on:
the platform flavor, the operator's own namespace and the application
namespace. The result is an immutable ClusterInfo value.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog
from kubernetes import client
from kubernetes.client.rest import ApiException

from odh_controller.bootstrap import schemes
from odh_controller.bootstrap.errors import OperatorError

logger = structlog.get_logger(__name__)

SERVICE_ACCOUNT_NAMESPACE_FILE = "/var/run/secrets/kubernetes.io/serviceaccount/namespace"

MANAGED_CATALOG_SOURCE = "addon-managed-odh-catalog"
SELF_MANAGED_CSV_PREFIX = "rhods-operator"

DEFAULT_ODH_APPLICATION_NAMESPACE = "opendatahub"
DEFAULT_RHOAI_APPLICATION_NAMESPACE = "redhat-ods-applications"

NAMESPACE_CONSOLE_LINK = "openshift-console"
CLUSTER_AUTHENTICATION_OBJ = "cluster"


class ClusterError(OperatorError):
    """The cluster could not be probed."""


class Platform(str, Enum):
    """Deployment flavor of the target cluster."""

    OPEN_DATA_HUB = "OpenDataHub"
    SELF_MANAGED_RHOAI = "OpenShift AI Self-Managed"
    MANAGED_RHOAI = "OpenShift AI Cloud Service"

    @property
    def default_application_namespace(self) -> str:
        if self is Platform.OPEN_DATA_HUB:
            return DEFAULT_ODH_APPLICATION_NAMESPACE
        return DEFAULT_RHOAI_APPLICATION_NAMESPACE


@dataclass(frozen=True)
class ClusterInfo:
    """Cluster-wide facts resolved during setup."""

    platform: Platform
    operator_namespace: Optional[str]
    application_namespace: Optional[str]
    server_version: str = ""

    @property
    def managed(self) -> bool:
        return self.platform is Platform.MANAGED_RHOAI


def _not_found(e: ApiException) -> bool:
    return e.status == 404


def resolve_operator_namespace(
    configured: Optional[str] = None,
    path: str = SERVICE_ACCOUNT_NAMESPACE_FILE,
) -> Optional[str]:
    """Configured namespace first, then the mounted service account namespace."""
    if configured:
        return configured
    try:
        with open(path) as f:
            namespace = f.read().strip()
    except OSError:
        return None
    return namespace or None


def detect_platform(api: client.CustomObjectsApi, operator_namespace: Optional[str]) -> Platform:
    """
    Work out which product flavor is installed.

    The managed service ships its own catalog source next to the operator;
    the self-managed product is installed from the rhods-operator CSV.
    Anything else is Open Data Hub.
    """
    if not operator_namespace:
        return Platform.OPEN_DATA_HUB

    try:
        api.get_namespaced_custom_object(
            group=schemes.CATALOG_SOURCE.group,
            version=schemes.CATALOG_SOURCE.version,
            namespace=operator_namespace,
            plural=schemes.CATALOG_SOURCE.plural,
            name=MANAGED_CATALOG_SOURCE,
        )
        return Platform.MANAGED_RHOAI
    except ApiException as e:
        if not _not_found(e):
            raise

    try:
        csvs = api.list_namespaced_custom_object(
            group=schemes.CLUSTER_SERVICE_VERSION.group,
            version=schemes.CLUSTER_SERVICE_VERSION.version,
            namespace=operator_namespace,
            plural=schemes.CLUSTER_SERVICE_VERSION.plural,
        )
    except ApiException as e:
        if not _not_found(e):
            raise
        return Platform.OPEN_DATA_HUB

    for csv in csvs.get("items", []):
        name = csv.get("metadata", {}).get("name", "")
        if name.startswith(SELF_MANAGED_CSV_PREFIX):
            return Platform.SELF_MANAGED_RHOAI

    return Platform.OPEN_DATA_HUB


def resolve_application_namespace(api: client.CustomObjectsApi, platform: Platform) -> str:
    """The namespace named by an existing DSCInitialization, else the platform default."""
    try:
        dscis = api.list_cluster_custom_object(
            group=schemes.DSC_INITIALIZATION.group,
            version=schemes.DSC_INITIALIZATION.version,
            plural=schemes.DSC_INITIALIZATION.plural,
        )
    except ApiException as e:
        if not _not_found(e):
            raise
        dscis = {}

    for dsci in dscis.get("items", []):
        namespace = dsci.get("spec", {}).get("applicationsNamespace")
        if namespace:
            return namespace

    return platform.default_application_namespace


def init_cluster(api_client: client.ApiClient, operator_namespace: Optional[str] = None) -> ClusterInfo:
    """
    Probe the cluster and resolve ClusterInfo.

    Raises ClusterError when the API server is unreachable or refuses one of
    the lookups.
    """
    try:
        version = client.VersionApi(api_client).get_code()
    except Exception as e:
        raise ClusterError(f"cluster API is not reachable: {e}") from e

    namespace = resolve_operator_namespace(operator_namespace)
    custom_api = client.CustomObjectsApi(api_client)

    try:
        platform = detect_platform(custom_api, namespace)
        app_namespace = resolve_application_namespace(custom_api, platform)
    except ApiException as e:
        raise ClusterError(f"unable to read cluster state: {e.reason}") from e

    info = ClusterInfo(
        platform=platform,
        operator_namespace=namespace,
        application_namespace=app_namespace,
        server_version=getattr(version, "git_version", "") or "",
    )
    logger.info(
        "cluster config",
        platform=info.platform.value,
        operator_namespace=info.operator_namespace,
        application_namespace=info.application_namespace,
        server_version=info.server_version,
    )
    return info
