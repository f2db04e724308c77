"""
Startup tasks.

A startup task is a one-shot coroutine the manager runs once after it
starts. Tasks scheduled here are leader-gated: with several replicas only
the elected leader runs them. Their bodies are best-effort; failures are
logged and counted, never raised.

Default DSCInitialization creation is skipped only when DISABLE_DSC_CONFIG
is exactly "true". Other truthy spellings ("1", "yes", "True") and an empty
value leave creation on.
"""

import asyncio
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, Mapping, Optional

import structlog
from kubernetes import client

from odh_controller.bootstrap.errors import ManagerError, SetupError
from odh_controller.services import initialinstall, upgrade
from odh_controller.services.cluster import ClusterInfo, Platform
from odh_controller.services.metrics import STARTUP_TASK_RUNS

logger = structlog.get_logger(__name__)

DISABLE_DSC_CONFIG_ENV = "DISABLE_DSC_CONFIG"
DISABLE_DSC_CONFIG_VALUE = "true"

TaskFunc = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class StartupTask:
    """A named one-shot coroutine and whether it may only run on the leader."""

    name: str
    fn: TaskFunc
    need_leader_election: bool = True

    async def run(self) -> None:
        await self.fn()


def leader_task(name: str, fn: TaskFunc) -> StartupTask:
    """Wrap `fn` as a task that only the elected leader runs."""
    return StartupTask(name=name, fn=fn, need_leader_election=True)


def dsci_creation_disabled(environ: Mapping[str, str]) -> bool:
    """Exact, case-sensitive match on "true"."""
    return environ.get(DISABLE_DSC_CONFIG_ENV) == DISABLE_DSC_CONFIG_VALUE


def best_effort(name: str, error_message: str, fn: Callable[[], object]) -> TaskFunc:
    """
    Turn a blocking cluster call into a task body that never raises.

    The call runs in a worker thread; any failure is logged with
    `error_message` and recorded in the task metric.
    """
    async def run() -> None:
        logger.info("running startup task", task=name)
        try:
            await asyncio.to_thread(fn)
        except Exception:
            logger.exception(error_message, task=name)
            STARTUP_TASK_RUNS.labels(task=name, result="error").inc()
        else:
            STARTUP_TASK_RUNS.labels(task=name, result="success").inc()

    return run


def add_startup_tasks(
    manager,
    api_client: client.ApiClient,
    info: ClusterInfo,
    monitoring_namespace: str,
    components: Iterable[str] = (),
    environ: Optional[Mapping[str, str]] = None,
) -> None:
    """Schedule the default-resource and cleanup tasks on `manager`."""
    env = os.environ if environ is None else environ
    component_names = list(components)

    if dsci_creation_disabled(env):
        logger.info("DSCI auto creation is disabled")
    else:
        task = leader_task(
            "create-default-dsci",
            best_effort(
                "create-default-dsci",
                "unable to create initial setup for the operator",
                lambda: initialinstall.create_default_dsci(api_client, info, monitoring_namespace),
            ),
        )
        try:
            manager.add(task)
        except ManagerError as e:
            raise SetupError("error scheduling DSCI creation", e) from e

    if info.platform is Platform.MANAGED_RHOAI:
        task = leader_task(
            "create-default-dsc",
            best_effort(
                "create-default-dsc",
                "unable to create default DSC CR by the operator",
                lambda: initialinstall.create_default_dsc(api_client, component_names),
            ),
        )
        try:
            manager.add(task)
        except ManagerError as e:
            raise SetupError("error scheduling DSC creation", e) from e

    cleanup = leader_task(
        "cleanup-legacy-resources",
        best_effort(
            "cleanup-legacy-resources",
            "unable to perform cleanup",
            lambda: upgrade.cleanup_existing_resources(api_client, info),
        ),
    )
    try:
        manager.add(cleanup)
    except ManagerError:
        logger.exception("error remove deprecated resources from previous version")
