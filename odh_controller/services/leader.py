"""
Leader election over a coordination.k8s.io Lease.

The acquire/renew protocol is the kubernetes client's own
`leaderelection` package; this module runs it off the event loop and turns
its callbacks into an asyncio `leading` event and a fatal
LeaderElectionLost.
"""

import asyncio
import os
import socket
import threading
import uuid
from typing import Optional

import structlog
from kubernetes import client
from kubernetes.client.rest import ApiException
from kubernetes.leaderelection import electionconfig, leaderelection
from kubernetes.leaderelection.resourcelock.leaselock import LeaseLock
from urllib3.exceptions import HTTPError

from odh_controller.bootstrap.errors import OperatorError

logger = structlog.get_logger(__name__)

DEFAULT_LEASE_DURATION = 15
DEFAULT_RENEW_DEADLINE = 10
DEFAULT_RETRY_PERIOD = 2

# Transport failures count as a failed attempt, like a refused API call
TRANSIENT_ERRORS = (HTTPError, OSError)


class LeaderElectionLost(OperatorError):
    """A held lease could not be renewed within the renew deadline."""


class _ElectionStopped(Exception):
    pass


def default_identity() -> str:
    return f"{os.getenv('POD_NAME') or socket.gethostname()}_{uuid.uuid4()}"


class ClientLeaseLock(LeaseLock):
    """
    LeaseLock bound to our ApiClient.

    Transport errors become failed attempts instead of escaping the election
    thread, and every attempt after `stopped` is set ends the election.
    """

    def __init__(self, api_client: client.ApiClient, name: str, namespace: str, identity: str,
                 stopped: threading.Event):
        super().__init__(name, namespace, identity)
        self.api_instance = client.CoordinationV1Api(api_client)
        self.stopped = stopped

    def get(self, name, namespace):
        if self.stopped.is_set():
            raise _ElectionStopped()
        try:
            return super().get(name, namespace)
        except TRANSIENT_ERRORS as e:
            logger.warning("error reading leader lease", lease=f"{namespace}/{name}", error=str(e))
            return False, ApiException(status=0, reason=str(e))

    def create(self, name, namespace, election_record):
        try:
            return super().create(name, namespace, election_record)
        except TRANSIENT_ERRORS as e:
            logger.warning("error creating leader lease", lease=f"{namespace}/{name}", error=str(e))
            return False

    def update(self, name, namespace, updated_record):
        try:
            return super().update(name, namespace, updated_record)
        except TRANSIENT_ERRORS as e:
            logger.warning("error renewing leader lease", lease=f"{namespace}/{name}", error=str(e))
            return False


class LeaderElector:
    """
    Acquire and keep a Lease.

    `leading` is set once this process holds the lease. Failing to renew a
    held lease within the renew deadline raises LeaderElectionLost out of
    run(); the process is expected to exit and be restarted.
    """

    def __init__(
        self,
        api_client: client.ApiClient,
        name: str,
        namespace: str,
        identity: Optional[str] = None,
        lease_duration: int = DEFAULT_LEASE_DURATION,
        renew_deadline: int = DEFAULT_RENEW_DEADLINE,
        retry_period: int = DEFAULT_RETRY_PERIOD,
    ):
        # electionconfig.Config calls sys.exit() on bad timings
        if renew_deadline >= lease_duration:
            raise ValueError("renew_deadline must be shorter than lease_duration")
        if retry_period < 1 or renew_deadline <= 1.2 * retry_period:
            raise ValueError("retry_period must be at least 1s and well under renew_deadline")

        self.name = name
        self.namespace = namespace
        self.identity = identity or default_identity()
        self.leading = asyncio.Event()
        self._stopped = threading.Event()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self.lock = ClientLeaseLock(api_client, name, namespace, self.identity, self._stopped)
        self.election = leaderelection.LeaderElection(electionconfig.Config(
            lock=self.lock,
            lease_duration=lease_duration,
            renew_deadline=renew_deadline,
            retry_period=retry_period,
            onstarted_leading=self._on_started_leading,
            onstopped_leading=self._on_stopped_leading,
        ))

    def _on_started_leading(self) -> None:
        logger.info("successfully acquired lease", lease=f"{self.namespace}/{self.name}")
        self._loop.call_soon_threadsafe(self.leading.set)

    def _on_stopped_leading(self) -> None:
        if self._stopped.is_set():
            return
        raise LeaderElectionLost(f"leader election lost: {self.namespace}/{self.name}")

    def _run_election(self) -> None:
        try:
            self.election.run()
        except _ElectionStopped:
            pass

    async def run(self, stop_flag: asyncio.Event) -> None:
        logger.info("attempting to acquire leader lease", lease=f"{self.namespace}/{self.name}",
                    identity=self.identity)
        self._loop = asyncio.get_running_loop()
        election = asyncio.ensure_future(asyncio.to_thread(self._run_election))
        stopped = asyncio.ensure_future(stop_flag.wait())
        try:
            await asyncio.wait({election, stopped}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self._stopped.set()
            stopped.cancel()
        # The election thread sees the stop on its next attempt, at most one retry period away
        await election
