"""
Admission webhooks.

DSCInitialization and DataScienceCluster are cluster singletons: a request
creating a second instance is denied.
"""

import kopf
import structlog
from kubernetes import client

from odh_controller.bootstrap import schemes
from odh_controller.bootstrap.errors import ManagerError
from odh_controller.bootstrap.schemes import ResourceKind

logger = structlog.get_logger(__name__)

SINGLETON_KINDS = (schemes.DSC_INITIALIZATION, schemes.DATA_SCIENCE_CLUSTER)


def singleton_validator(api_client: client.ApiClient, kind: ResourceKind):
    """Build a validating handler that rejects a second instance of `kind`."""

    def validate(body, operation, **_):
        if operation != "CREATE":
            return
        api = client.CustomObjectsApi(api_client)
        existing = api.list_cluster_custom_object(group=kind.group, version=kind.version, plural=kind.plural)
        name = body.get("metadata", {}).get("name")
        others = [i for i in existing.get("items", []) if i.get("metadata", {}).get("name") != name]
        if others:
            raise kopf.AdmissionError(
                f"only one instance of {kind.kind} object is allowed",
                code=400,
            )

    return validate


def register_all_webhooks(manager) -> None:
    for kind in SINGLETON_KINDS:
        if not manager.get_scheme().recognizes(kind):
            raise ManagerError(f"kind {kind} is not registered in the scheme")
        kopf.on.validate(
            group=kind.group,
            version=kind.version,
            plural=kind.plural,
            id=f"{kind.plural}-singleton",
            registry=manager.registry,
        )(singleton_validator(manager.get_client(), kind))
        logger.debug("registered webhook", kind=kind.kind)
