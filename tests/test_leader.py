"""
Tests for Lease based leader election.
"""

import asyncio
import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from kubernetes import client
from kubernetes.client.rest import ApiException
from urllib3.exceptions import MaxRetryError

from odh_controller.services.leader import ClientLeaseLock, LeaderElectionLost, LeaderElector


def not_found():
    error = ApiException(status=404, reason="Not Found")
    error.body = '{"kind": "Status", "code": 404}'
    return error


def lease(holder):
    now = datetime.now(timezone.utc)
    return client.V1Lease(
        metadata=client.V1ObjectMeta(name="lock", namespace="ns"),
        spec=client.V1LeaseSpec(
            holder_identity=holder,
            lease_duration_seconds=3,
            acquire_time=now,
            renew_time=now,
        ),
    )


@pytest.fixture
def coordination():
    with patch("kubernetes.client.CoordinationV1Api") as api_class:
        yield api_class.return_value


def make_elector():
    return LeaderElector(MagicMock(), name="lock", namespace="ns", identity="me",
                         lease_duration=3, renew_deadline=2, retry_period=1)


class TestLeaseLock:
    """Test the client-bound lease lock."""

    def test_uses_given_client(self, coordination):
        lock = ClientLeaseLock(MagicMock(), "lock", "ns", "me", threading.Event())

        assert lock.api_instance is coordination

    def test_transport_error_is_failed_attempt(self, coordination):
        coordination.read_namespaced_lease.side_effect = MaxRetryError(None, "/leases/lock", "refused")
        elector = make_elector()

        assert elector.election.try_acquire_or_renew() is False

    def test_transport_error_on_renew(self, coordination):
        coordination.read_namespaced_lease.return_value = lease("me")
        coordination.replace_namespaced_lease.side_effect = ConnectionResetError("reset")
        elector = make_elector()

        assert elector.election.try_acquire_or_renew() is False

    def test_creates_missing_lease(self, coordination):
        coordination.read_namespaced_lease.side_effect = not_found()
        elector = make_elector()

        assert elector.election.try_acquire_or_renew() is True

        namespace, body = coordination.create_namespaced_lease.call_args[0]
        assert namespace == "ns"
        assert body.spec.holder_identity == "me"

    def test_held_by_another(self, coordination):
        coordination.read_namespaced_lease.return_value = lease("other")
        elector = make_elector()

        assert elector.election.try_acquire_or_renew() is False
        coordination.replace_namespaced_lease.assert_not_called()

    def test_invalid_timings(self, coordination):
        with pytest.raises(ValueError):
            LeaderElector(MagicMock(), name="lock", namespace="ns", lease_duration=10, renew_deadline=10)
        with pytest.raises(ValueError):
            LeaderElector(MagicMock(), name="lock", namespace="ns", renew_deadline=2, retry_period=2)


class TestRun:
    """Test the election loop."""

    @pytest.mark.asyncio
    async def test_becomes_leader_and_stops(self, coordination):
        coordination.read_namespaced_lease.side_effect = not_found()
        elector = make_elector()
        stop_flag = asyncio.Event()

        runner = asyncio.create_task(elector.run(stop_flag))
        await asyncio.wait_for(elector.leading.wait(), timeout=5)
        stop_flag.set()
        await asyncio.wait_for(runner, timeout=5)

        assert elector.leading.is_set()

    @pytest.mark.asyncio
    async def test_survives_transport_error(self, coordination):
        """A dropped connection is retried, not raised."""
        failures = [MaxRetryError(None, "/leases/lock", "refused")]

        def read(name, namespace):
            if failures:
                raise failures.pop()
            raise not_found()

        coordination.read_namespaced_lease.side_effect = read
        elector = make_elector()
        stop_flag = asyncio.Event()

        runner = asyncio.create_task(elector.run(stop_flag))
        await asyncio.wait_for(elector.leading.wait(), timeout=10)
        stop_flag.set()
        await asyncio.wait_for(runner, timeout=5)

    @pytest.mark.asyncio
    async def test_follower_never_leads(self, coordination):
        coordination.read_namespaced_lease.return_value = lease("other")
        elector = make_elector()
        stop_flag = asyncio.Event()

        runner = asyncio.create_task(elector.run(stop_flag))
        await asyncio.sleep(0.2)
        stop_flag.set()
        await asyncio.wait_for(runner, timeout=5)

        assert not elector.leading.is_set()

    @pytest.mark.asyncio
    async def test_lost_lease_is_fatal(self, coordination):
        coordination.read_namespaced_lease.side_effect = [not_found()] + [lease("other")] * 100
        elector = make_elector()

        with pytest.raises(LeaderElectionLost):
            await asyncio.wait_for(elector.run(asyncio.Event()), timeout=10)

        assert elector.leading.is_set()
