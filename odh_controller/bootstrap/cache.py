"""
Cache policy.

Decides which namespaces (or which single object) the watch layer keeps for
each resource kind. Secrets get the smallest footprint; workload-adjacent
kinds get the general set; two cluster-scoped singletons are narrowed to one
object by name.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import FrozenSet, Mapping, Optional

from odh_controller.bootstrap import schemes
from odh_controller.bootstrap.errors import CachePolicyError
from odh_controller.bootstrap.schemes import ResourceKind
from odh_controller.services.cluster import (
    CLUSTER_AUTHENTICATION_OBJ,
    NAMESPACE_CONSOLE_LINK,
    ClusterInfo,
)

MONITORING_NAMESPACE = "redhat-ods-monitoring"
INGRESS_NAMESPACE = "openshift-ingress"
OPERATORS_NAMESPACE = "openshift-operators"
DEFAULT_INGRESS_CONTROLLER = "default"

GENERAL_CACHE_KINDS = (
    schemes.CONFIG_MAP,
    schemes.DEPLOYMENT,
    schemes.PROMETHEUS_RULE,
    schemes.SERVICE_MONITOR,
    schemes.ROUTE,
    schemes.NETWORK_POLICY,
    schemes.ROLE,
    schemes.ROLE_BINDING,
)


@dataclass(frozen=True)
class ByObject:
    """Cache restriction for one kind: a namespace set or a metadata.name match."""

    namespaces: Optional[FrozenSet[str]] = None
    name: Optional[str] = None

    def allows(self, namespace: Optional[str], name: Optional[str]) -> bool:
        if self.namespaces is not None and namespace not in self.namespaces:
            return False
        if self.name is not None and name != self.name:
            return False
        return True

    @property
    def field_selector(self) -> Optional[str]:
        if self.name is None:
            return None
        return f"metadata.name={self.name}"


@dataclass(frozen=True)
class CachePolicy:
    """Immutable mapping of resource kind to cache restriction."""

    by_object: Mapping[ResourceKind, ByObject] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "by_object", MappingProxyType(dict(self.by_object)))

    def restriction(self, kind: ResourceKind) -> Optional[ByObject]:
        return self.by_object.get(kind)

    def allows(self, kind: ResourceKind, namespace: Optional[str], name: Optional[str]) -> bool:
        """Whether an object of `kind` is inside the cache scope. Unlisted kinds are unrestricted."""
        restriction = self.by_object.get(kind)
        if restriction is None:
            return True
        return restriction.allows(namespace, name)

    def kinds(self):
        return tuple(self.by_object)


def common_namespaces(info: ClusterInfo) -> FrozenSet[str]:
    """Operator, monitoring and application namespaces, plus the console link one on managed clusters."""
    if not info.operator_namespace:
        raise CachePolicyError("operator namespace could not be resolved")
    if not info.application_namespace:
        raise CachePolicyError("application namespace could not be resolved")

    namespaces = {info.operator_namespace, MONITORING_NAMESPACE, info.application_namespace}
    if info.managed:
        namespaces.add(NAMESPACE_CONSOLE_LINK)
    return frozenset(namespaces)


def secret_namespaces(info: ClusterInfo) -> FrozenSet[str]:
    return common_namespaces(info) | {INGRESS_NAMESPACE}


def general_namespaces(info: ClusterInfo) -> FrozenSet[str]:
    return common_namespaces(info) | {INGRESS_NAMESPACE, OPERATORS_NAMESPACE}


def build_cache_policy(info: ClusterInfo) -> CachePolicy:
    """Compute the cache policy for the resolved cluster."""
    secrets = secret_namespaces(info)
    general = general_namespaces(info)

    by_object = {schemes.SECRET: ByObject(namespaces=secrets)}
    for kind in GENERAL_CACHE_KINDS:
        by_object[kind] = ByObject(namespaces=general)
    by_object[schemes.INGRESS_CONTROLLER] = ByObject(name=DEFAULT_INGRESS_CONTROLLER)
    by_object[schemes.AUTHENTICATION] = ByObject(name=CLUSTER_AUTHENTICATION_OBJ)

    return CachePolicy(by_object=by_object)
