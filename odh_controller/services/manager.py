"""
Runtime manager.

Owns everything the watch loops share: the kopf registry the reconcilers
register into, the kopf settings, the API client, the cache policy and the
startup tasks. start() runs all of it until the stop flag is set.
"""

import asyncio
import copy
import logging
import os
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple

import kopf
import structlog
from kubernetes import client

from odh_controller.bootstrap.cache import CachePolicy
from odh_controller.bootstrap.errors import ManagerError
from odh_controller.bootstrap.schemes import ResourceKind, Scheme, SchemeError
from odh_controller.bootstrap.tasks import StartupTask
from odh_controller.services.config import ConfigError, parse_bind_address
from odh_controller.services.leader import LeaderElector
from odh_controller.services.metrics import RECONCILERS_REGISTERED, start_metrics_server
from odh_controller.services.probes import Check, DebugServer, ProbeServer

logger = structlog.get_logger(__name__)

WEBHOOK_PORT = 9443
WEBHOOK_CERT_DIR = "/tmp/k8s-webhook-server/serving-certs"

Transform = Callable[[Dict[str, Any]], Dict[str, Any]]
Reconcile = Callable[[Dict[str, Any], str], Awaitable[None]]


def strip_managed_fields(obj: Dict[str, Any]) -> Dict[str, Any]:
    """Drop server-side-apply bookkeeping from an object."""
    metadata = obj.get("metadata")
    if isinstance(metadata, dict) and metadata.get("managedFields") is not None:
        metadata.pop("managedFields")
    return obj


@dataclass(frozen=True)
class ManagerOptions:
    scheme: Scheme
    cache_policy: CachePolicy
    metrics_addr: str = ":8080"
    health_probe_addr: str = ":8081"
    pprof_addr: str = ""
    leader_election: bool = False
    leader_election_id: str = ""
    leader_election_namespace: Optional[str] = None
    webhook_port: int = WEBHOOK_PORT
    webhook_cert_dir: str = WEBHOOK_CERT_DIR
    disable_cache_for: Tuple[ResourceKind, ...] = ()
    default_transform: Optional[Transform] = None


def connection_info(rest_config: client.Configuration) -> kopf.ConnectionInfo:
    """Translate the kubernetes client configuration into kopf credentials."""
    if rest_config.refresh_api_key_hook is not None:
        rest_config.refresh_api_key_hook(rest_config)

    token = (rest_config.api_key or {}).get("authorization")
    if token and token.lower().startswith("bearer "):
        token = token[len("bearer "):]

    return kopf.ConnectionInfo(
        server=rest_config.host,
        ca_path=rest_config.ssl_ca_cert,
        insecure=not rest_config.verify_ssl,
        username=rest_config.username or None,
        password=rest_config.password or None,
        token=token or None,
        certificate_path=rest_config.cert_file,
        private_key_path=rest_config.key_file,
    )


class Manager:
    """
    Shared runtime for all reconcilers.

    Reconcilers register through watch(); one-shot work through add();
    health checks through add_healthz_check()/add_readyz_check().
    """

    def __init__(self, api_client: client.ApiClient, options: ManagerOptions):
        try:
            options.scheme.require(options.cache_policy.kinds())
            options.scheme.require(options.disable_cache_for)
        except SchemeError as e:
            raise ManagerError(str(e)) from e

        try:
            self._metrics_addr = parse_bind_address(options.metrics_addr)
            self._health_addr = parse_bind_address(options.health_probe_addr)
            self._pprof_addr = parse_bind_address(options.pprof_addr)
        except ConfigError as e:
            raise ManagerError(str(e)) from e

        if options.leader_election and not (options.leader_election_id and options.leader_election_namespace):
            raise ManagerError("leader election requires an election id and a namespace")

        self.api_client = api_client
        self.options = options
        self.scheme = options.scheme
        self.cache_policy = options.cache_policy

        self.registry = kopf.OperatorRegistry()
        self.settings = kopf.OperatorSettings()
        self.settings.posting.level = logging.WARNING
        self.settings.watching.connect_timeout = 60
        self.settings.watching.server_timeout = 300
        # Leadership comes from our own Lease; kopf peering stays off
        self.settings.peering.standalone = True
        self._configure_webhook_server()

        kopf.on.login(registry=self.registry)(self._login)

        self.elector: Optional[LeaderElector] = None
        if options.leader_election:
            self.elector = LeaderElector(
                api_client,
                name=options.leader_election_id,
                namespace=options.leader_election_namespace,
            )

        self._tasks: Dict[str, StartupTask] = {}
        self._healthz: Dict[str, Check] = {}
        self._readyz: Dict[str, Check] = {}
        self._watched: Dict[str, ResourceKind] = {}
        self._started = False

    def _configure_webhook_server(self) -> None:
        certfile = os.path.join(self.options.webhook_cert_dir, "tls.crt")
        pkeyfile = os.path.join(self.options.webhook_cert_dir, "tls.key")
        if os.path.exists(certfile) and os.path.exists(pkeyfile):
            self.settings.admission.server = kopf.WebhookServer(
                port=self.options.webhook_port,
                certfile=certfile,
                pkeyfile=pkeyfile,
            )
        else:
            logger.info("webhook serving certificates not found, admission webhooks disabled",
                        cert_dir=self.options.webhook_cert_dir)

    def _login(self, **_) -> kopf.ConnectionInfo:
        return connection_info(self.api_client.configuration)

    def get_client(self) -> client.ApiClient:
        return self.api_client

    def get_scheme(self) -> Scheme:
        return self.scheme

    @property
    def tasks(self) -> Tuple[StartupTask, ...]:
        return tuple(self._tasks.values())

    @property
    def watched(self) -> Mapping[str, ResourceKind]:
        return dict(self._watched)

    def _check_not_started(self) -> None:
        if self._started:
            raise ManagerError("manager already started")

    def add(self, task: StartupTask) -> None:
        """Register a one-shot task to run after start()."""
        self._check_not_started()
        if task.name in self._tasks:
            raise ManagerError(f"startup task {task.name!r} already registered")
        self._tasks[task.name] = task

    def add_healthz_check(self, name: str, check: Check) -> None:
        self._check_not_started()
        if name in self._healthz:
            raise ManagerError(f"healthz check {name!r} already registered")
        self._healthz[name] = check

    def add_readyz_check(self, name: str, check: Check) -> None:
        self._check_not_started()
        if name in self._readyz:
            raise ManagerError(f"readyz check {name!r} already registered")
        self._readyz[name] = check

    def transform(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        obj = copy.deepcopy(dict(body))
        if self.options.default_transform is not None:
            obj = self.options.default_transform(obj)
        return obj

    def watch(self, kind: ResourceKind, reconcile: Reconcile, id: str) -> None:
        """
        Run `reconcile(obj, event_type)` for every watch event on `kind`.

        Only objects inside the cache policy reach the reconciler, and they
        arrive already transformed.
        """
        self._check_not_started()
        if not self.scheme.recognizes(kind):
            raise ManagerError(f"kind {kind} is not registered in the scheme")
        if kind in self.options.disable_cache_for:
            raise ManagerError(f"{kind} is excluded from caching and cannot be watched")
        if id in self._watched:
            raise ManagerError(f"watch {id!r} already registered")

        policy = self.cache_policy

        def in_scope(namespace, name, **_) -> bool:
            return policy.allows(kind, namespace, name)

        async def on_event(body, type, **_) -> None:
            await reconcile(self.transform(body), type or "")

        kopf.on.event(
            group=kind.group,
            version=kind.version,
            plural=kind.plural,
            id=id,
            when=in_scope,
            registry=self.registry,
        )(on_event)
        self._watched[id] = kind
        RECONCILERS_REGISTERED.labels(type=kind.kind).inc()

    async def _run_startup_tasks(self) -> None:
        if not self._tasks:
            return
        gated = [t for t in self._tasks.values() if t.need_leader_election]
        ungated = [t for t in self._tasks.values() if not t.need_leader_election]

        for task in ungated:
            await task.run()

        if gated and self.elector is not None:
            await self.elector.leading.wait()
        for task in gated:
            await task.run()

    async def start(self, stop_flag: asyncio.Event) -> None:
        """Run every registered watch loop and task until `stop_flag` is set."""
        self._check_not_started()
        self._started = True

        metrics_server = start_metrics_server(self._metrics_addr)
        servers = []
        if self._health_addr is not None:
            servers.append(ProbeServer(self._health_addr, self._healthz, self._readyz))
        if self._pprof_addr is not None:
            servers.append(DebugServer(self._pprof_addr))

        pending = set()
        try:
            for server in servers:
                await server.start()

            operator_task = asyncio.create_task(
                kopf.operator(
                    registry=self.registry,
                    settings=self.settings,
                    clusterwide=True,
                    standalone=True,
                    stop_flag=stop_flag,
                ),
                name="kopf-operator",
            )
            pending = {operator_task, asyncio.create_task(self._run_startup_tasks(), name="startup-tasks")}
            if self.elector is not None:
                pending.add(asyncio.create_task(self.elector.run(stop_flag), name="leader-election"))

            while not operator_task.done():
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task is not operator_task and task.exception() is not None:
                        logger.error("manager runnable failed", runnable=task.get_name())
                        raise task.exception()
            operator_task.result()
        finally:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for server in reversed(servers):
                await server.stop()
            if metrics_server is not None:
                metrics_server.shutdown()
            logger.info("manager stopped")
