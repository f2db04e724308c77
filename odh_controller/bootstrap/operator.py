"""
Main operator.

setup() turns the static configuration into a manager with every watch
loop registered, in a fixed order, stopping at the first failure. start()
hands control to the manager until the stop flag is set.
"""

import asyncio
import os
from abc import ABC, abstractmethod
from enum import Enum
from typing import Mapping, Optional

import structlog
from kubernetes import client

from odh_controller.bootstrap import schemes
from odh_controller.bootstrap.cache import build_cache_policy
from odh_controller.bootstrap.errors import HandlerError, OperatorStateError, SetupError
from odh_controller.bootstrap.schemes import Scheme, new_scheme
from odh_controller.bootstrap.tasks import add_startup_tasks
from odh_controller.handlers.datasciencecluster import new_datasciencecluster_reconciler
from odh_controller.handlers.dscinitialization import DSCInitializationReconciler
from odh_controller.handlers.registry import (
    ComponentHandler,
    HandlerRegistry,
    ServiceHandler,
    for_each,
)
from odh_controller.handlers.webhooks import register_all_webhooks
from odh_controller.services.cluster import ClusterInfo, Platform, init_cluster
from odh_controller.services.config import Config
from odh_controller.services.manager import Manager, ManagerOptions, strip_managed_fields
from odh_controller.services.probes import ping

logger = structlog.get_logger(__name__)

LEADER_ELECTION_ID = "07ed84f7.opendatahub.io"

# Kinds read straight from the API server: rarely read cluster singletons,
# security sensitive objects, or too many and too short-lived to cache.
CACHE_DISABLED_KINDS = (
    schemes.OPENSHIFT_INGRESS,
    schemes.SUBSCRIPTION,
    schemes.SELF_SUBJECT_RULES_REVIEW,
    schemes.POD,
    schemes.USER_GROUP,
    schemes.CATALOG_SOURCE,
)


class OperatorState(str, Enum):
    CREATED = "Created"
    CONFIGURING = "Configuring"
    READY = "Ready"
    RUNNING = "Running"
    STOPPED = "Stopped"
    FAILED = "Failed"


class Operator(ABC):
    """An operator implementation: set up once, then run until stopped."""

    @abstractmethod
    def setup(self) -> None:
        """Create the manager and register controllers, webhooks and startup tasks."""

    @abstractmethod
    async def start(self, stop_flag: Optional[asyncio.Event] = None) -> None:
        """Run the operator until `stop_flag` is set or a fatal error occurs."""


class MainOperator(Operator):
    """The Open Data Hub operator."""

    def __init__(
        self,
        config: Config,
        services: Optional[HandlerRegistry[ServiceHandler]] = None,
        components: Optional[HandlerRegistry[ComponentHandler]] = None,
        scheme: Optional[Scheme] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.config = config
        self.services = services if services is not None else HandlerRegistry("service")
        self.components = components if components is not None else HandlerRegistry("component")
        self.scheme = scheme if scheme is not None else new_scheme()
        self.environ = os.environ if environ is None else environ
        self.state = OperatorState.CREATED
        self.cluster_info: Optional[ClusterInfo] = None
        self.mgr: Optional[Manager] = None

    def setup(self) -> None:
        if self.state is not OperatorState.CREATED:
            raise OperatorStateError(f"setup called in state {self.state.value}")
        self.state = OperatorState.CONFIGURING
        try:
            self._setup()
        except Exception:
            self.state = OperatorState.FAILED
            raise
        self.state = OperatorState.READY

    def _setup(self) -> None:
        # Non-cached client for setup operations
        if self.config.rest_config is None:
            raise SetupError("error getting client for setup", ValueError("no cluster connection configured"))
        try:
            setup_client = client.ApiClient(self.config.rest_config)
        except Exception as e:
            raise SetupError("error getting client for setup", e) from e

        try:
            self.cluster_info = init_cluster(setup_client, self.config.operator_namespace)
        except Exception as e:
            raise SetupError("unable to initialize cluster config", e) from e

        platform = self.cluster_info.platform

        try:
            self._init_services(platform)
        except HandlerError as e:
            raise SetupError("unable to init services", e) from e
        try:
            self._init_components(platform)
        except HandlerError as e:
            raise SetupError("unable to init components", e) from e

        try:
            cache_policy = build_cache_policy(self.cluster_info)
        except Exception as e:
            raise SetupError("unable to get application namespace into cache", e) from e

        try:
            self.mgr = Manager(setup_client, ManagerOptions(
                scheme=self.scheme,
                cache_policy=cache_policy,
                metrics_addr=self.config.metrics_addr,
                health_probe_addr=self.config.health_probe_addr,
                pprof_addr=self.config.pprof_addr,
                leader_election=self.config.leader_election,
                leader_election_id=LEADER_ELECTION_ID,
                leader_election_namespace=self.cluster_info.operator_namespace,
                disable_cache_for=CACHE_DISABLED_KINDS,
                default_transform=strip_managed_fields,
            ))
        except Exception as e:
            raise SetupError("unable to start manager", e) from e

        try:
            register_all_webhooks(self.mgr)
        except Exception as e:
            raise SetupError("unable to register webhooks", e) from e

        try:
            DSCInitializationReconciler(self.mgr.get_client()).setup_with_manager(self.mgr)
        except Exception as e:
            raise SetupError("unable to create controller DSCInitialization", e) from e

        try:
            new_datasciencecluster_reconciler(self.mgr, self.components)
        except Exception as e:
            raise SetupError("unable to create controller DataScienceCluster", e) from e

        try:
            self._create_service_reconcilers()
        except HandlerError as e:
            raise SetupError("unable to create service controllers", e) from e
        try:
            self._create_component_reconcilers()
        except HandlerError as e:
            raise SetupError("unable to create component controllers", e) from e

        add_startup_tasks(
            self.mgr,
            setup_client,
            self.cluster_info,
            self.config.monitoring_namespace,
            components=self.components.names(),
            environ=self.environ,
        )

        try:
            self.mgr.add_healthz_check("healthz", ping)
        except Exception as e:
            raise SetupError("unable to set up health check", e) from e
        try:
            self.mgr.add_readyz_check("readyz", ping)
        except Exception as e:
            raise SetupError("unable to set up ready check", e) from e

    async def start(self, stop_flag: Optional[asyncio.Event] = None) -> None:
        if self.state is not OperatorState.READY:
            raise OperatorStateError(f"start called in state {self.state.value}")
        if stop_flag is None:
            stop_flag = asyncio.Event()
        self.state = OperatorState.RUNNING
        try:
            await self.mgr.start(stop_flag)
        finally:
            self.state = OperatorState.STOPPED

    def _init_services(self, platform: Platform) -> None:
        for_each(self.services, lambda sh: sh.init(platform))

    def _init_components(self, platform: Platform) -> None:
        for_each(self.components, lambda ch: ch.init(platform))

    def _create_service_reconcilers(self) -> None:
        def create(sh: ServiceHandler) -> None:
            logger.info("creating reconciler", type="service", name=sh.get_name())
            try:
                sh.new_reconciler(self.mgr)
            except Exception as e:
                raise HandlerError(sh.get_name(), f"error creating {sh.get_name()} service reconciler: {e}") from e

        for_each(self.services, create)

    def _create_component_reconcilers(self) -> None:
        def create(ch: ComponentHandler) -> None:
            logger.info("creating reconciler", type="component", name=ch.get_name())
            try:
                ch.new_reconciler(self.mgr)
            except Exception as e:
                raise HandlerError(ch.get_name(), f"error creating {ch.get_name()} component reconciler: {e}") from e

        for_each(self.components, create)
