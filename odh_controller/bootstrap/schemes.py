"""
Resource kind registry.

Every API kind the operator reads, watches, caches or excludes from caching
has to be registered here. The registry is a plain value built once at
process start and handed to the components that need it.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Tuple

from odh_controller.bootstrap.errors import OperatorError


class SchemeError(OperatorError):
    """A resource kind was looked up but never registered."""


@dataclass(frozen=True)
class ResourceKind:
    """A group/version/kind plus the plural used on the REST path."""

    group: str
    version: str
    kind: str
    plural: str
    namespaced: bool = True

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"

    def __str__(self) -> str:
        return f"{self.kind}.{self.version}.{self.group or 'core'}"


# Kubernetes core groups
SECRET = ResourceKind("", "v1", "Secret", "secrets")
CONFIG_MAP = ResourceKind("", "v1", "ConfigMap", "configmaps")
POD = ResourceKind("", "v1", "Pod", "pods")
NAMESPACE = ResourceKind("", "v1", "Namespace", "namespaces", namespaced=False)
DEPLOYMENT = ResourceKind("apps", "v1", "Deployment", "deployments")
NETWORK_POLICY = ResourceKind("networking.k8s.io", "v1", "NetworkPolicy", "networkpolicies")
ROLE = ResourceKind("rbac.authorization.k8s.io", "v1", "Role", "roles")
ROLE_BINDING = ResourceKind("rbac.authorization.k8s.io", "v1", "RoleBinding", "rolebindings")
SELF_SUBJECT_RULES_REVIEW = ResourceKind(
    "authorization.k8s.io", "v1", "SelfSubjectRulesReview", "selfsubjectrulesreviews"
)
LEASE = ResourceKind("coordination.k8s.io", "v1", "Lease", "leases")

# Prometheus operator
PROMETHEUS_RULE = ResourceKind("monitoring.coreos.com", "v1", "PrometheusRule", "prometheusrules")
SERVICE_MONITOR = ResourceKind("monitoring.coreos.com", "v1", "ServiceMonitor", "servicemonitors")

# OpenShift
ROUTE = ResourceKind("route.openshift.io", "v1", "Route", "routes")
INGRESS_CONTROLLER = ResourceKind(
    "operator.openshift.io", "v1", "IngressController", "ingresscontrollers"
)
AUTHENTICATION = ResourceKind(
    "config.openshift.io", "v1", "Authentication", "authentications", namespaced=False
)
OPENSHIFT_INGRESS = ResourceKind(
    "config.openshift.io", "v1", "Ingress", "ingresses", namespaced=False
)
USER_GROUP = ResourceKind("user.openshift.io", "v1", "Group", "groups", namespaced=False)
CONSOLE_LINK = ResourceKind("console.openshift.io", "v1", "ConsoleLink", "consolelinks", namespaced=False)

# Operator lifecycle manager
SUBSCRIPTION = ResourceKind("operators.coreos.com", "v1alpha1", "Subscription", "subscriptions")
CATALOG_SOURCE = ResourceKind("operators.coreos.com", "v1alpha1", "CatalogSource", "catalogsources")
CLUSTER_SERVICE_VERSION = ResourceKind(
    "operators.coreos.com", "v1alpha1", "ClusterServiceVersion", "clusterserviceversions"
)

# Platform API
DSC_INITIALIZATION = ResourceKind(
    "dscinitialization.opendatahub.io", "v1", "DSCInitialization", "dscinitializations",
    namespaced=False,
)
DATA_SCIENCE_CLUSTER = ResourceKind(
    "datasciencecluster.opendatahub.io", "v1", "DataScienceCluster", "datascienceclusters",
    namespaced=False,
)
MONITORING = ResourceKind(
    "services.platform.opendatahub.io", "v1alpha1", "Monitoring", "monitorings",
    namespaced=False,
)
DASHBOARD = ResourceKind(
    "components.platform.opendatahub.io", "v1alpha1", "Dashboard", "dashboards",
    namespaced=False,
)

KNOWN_KINDS: Tuple[ResourceKind, ...] = (
    SECRET, CONFIG_MAP, POD, NAMESPACE, DEPLOYMENT, NETWORK_POLICY, ROLE,
    ROLE_BINDING, SELF_SUBJECT_RULES_REVIEW, LEASE, PROMETHEUS_RULE,
    SERVICE_MONITOR, ROUTE, INGRESS_CONTROLLER, AUTHENTICATION,
    OPENSHIFT_INGRESS, USER_GROUP, CONSOLE_LINK, SUBSCRIPTION, CATALOG_SOURCE,
    CLUSTER_SERVICE_VERSION, DSC_INITIALIZATION, DATA_SCIENCE_CLUSTER,
    MONITORING, DASHBOARD,
)


class Scheme:
    """Registry of the resource kinds this process recognizes."""

    def __init__(self):
        self._kinds: Dict[Tuple[str, str, str], ResourceKind] = {}

    def add(self, *kinds: ResourceKind) -> None:
        for kind in kinds:
            key = (kind.group, kind.version, kind.kind)
            existing = self._kinds.get(key)
            if existing is not None and existing != kind:
                raise SchemeError(f"conflicting registration for {kind}")
            self._kinds[key] = kind

    def recognizes(self, kind: ResourceKind) -> bool:
        return (kind.group, kind.version, kind.kind) in self._kinds

    def lookup(self, group: str, version: str, kind: str) -> ResourceKind:
        try:
            return self._kinds[(group, version, kind)]
        except KeyError:
            name = f"{kind}.{version}.{group or 'core'}"
            raise SchemeError(f"kind {name} is not registered in the scheme") from None

    def require(self, kinds: Iterable[ResourceKind]) -> None:
        """Raise SchemeError for the first kind that is not registered."""
        for kind in kinds:
            if not self.recognizes(kind):
                raise SchemeError(f"kind {kind} is not registered in the scheme")

    def __iter__(self) -> Iterator[ResourceKind]:
        return iter(self._kinds.values())

    def __len__(self) -> int:
        return len(self._kinds)


def register_schemes(scheme: Scheme) -> None:
    """Register every kind the operator touches."""
    scheme.add(*KNOWN_KINDS)


def new_scheme() -> Scheme:
    scheme = Scheme()
    register_schemes(scheme)
    return scheme
