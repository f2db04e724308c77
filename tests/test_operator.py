"""
Tests for the main operator's setup and start sequence.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from kubernetes import client

from odh_controller.bootstrap import schemes
from odh_controller.bootstrap.errors import OperatorStateError, SetupError
from odh_controller.bootstrap.factory import Factory
from odh_controller.bootstrap.operator import CACHE_DISABLED_KINDS, MainOperator, OperatorState
from odh_controller.handlers.registry import ComponentHandler, HandlerRegistry, ServiceHandler
from odh_controller.services.cluster import Platform
from odh_controller.services.config import Config

from conftest import api_error


class RecordingService(ServiceHandler):
    def __init__(self, name, calls, fail_init=False):
        self.name = name
        self.calls = calls
        self.fail_init = fail_init

    def init(self, platform):
        self.calls.append(("init", self.name))
        if self.fail_init:
            raise RuntimeError("init exploded")

    def new_reconciler(self, manager):
        self.calls.append(("reconciler", self.name))


class RecordingComponent(ComponentHandler):
    def __init__(self, name, calls, fail_reconciler=False):
        self.name = name
        self.calls = calls
        self.fail_reconciler = fail_reconciler

    def init(self, platform):
        self.calls.append(("init", self.name))

    def new_reconciler(self, manager):
        self.calls.append(("reconciler", self.name))
        if self.fail_reconciler:
            raise RuntimeError("no watch")


@pytest.fixture
def cluster_api():
    """An Open Data Hub cluster with no operator resources yet."""
    api = MagicMock()
    api.get_namespaced_custom_object.side_effect = api_error(404)
    api.list_namespaced_custom_object.return_value = {"items": []}
    api.list_cluster_custom_object.return_value = {"items": []}

    with patch("kubernetes.client.VersionApi") as version_api, \
            patch("kubernetes.client.CustomObjectsApi", return_value=api):
        version_api.return_value.get_code.return_value = MagicMock(git_version="v1.29.0")
        yield api


@pytest.fixture
def config():
    return Config(
        rest_config=client.Configuration(),
        operator_namespace="opendatahub-operator-system",
        metrics_addr="0",
        health_probe_addr="0",
    )


def registries(calls, fail_service_init=False, fail_component=False):
    services = HandlerRegistry("service")
    services.register(RecordingService("monitoring", calls, fail_init=fail_service_init))
    services.register(RecordingService("auth", calls))
    components = HandlerRegistry("component")
    components.register(RecordingComponent("dashboard", calls, fail_reconciler=fail_component))
    components.register(RecordingComponent("workbenches", calls))
    return services, components


class TestSetup:
    """Test the setup sequence."""

    def test_setup_without_handlers(self, cluster_api, config):
        operator = MainOperator(config, environ={})

        operator.setup()

        assert operator.state is OperatorState.READY
        assert operator.cluster_info.platform is Platform.OPEN_DATA_HUB
        assert operator.cluster_info.application_namespace == "opendatahub"
        assert set(operator.mgr.watched) == {"dscinitialization", "datasciencecluster"}
        assert [t.name for t in operator.mgr.tasks] == ["create-default-dsci", "cleanup-legacy-resources"]
        assert all(t.need_leader_election for t in operator.mgr.tasks)

    def test_factory_built_operator_sets_up(self, cluster_api, config):
        """An operator straight from the factory reaches READY on an empty cluster."""
        calls = []
        services, components = registries(calls)
        operator = Factory(config, services=services, components=components).create("main")

        operator.setup()

        assert operator.state is OperatorState.READY
        assert set(operator.mgr.watched) == {"dscinitialization", "datasciencecluster"}
        assert ("reconciler", "workbenches") in calls

    def test_manager_options(self, cluster_api, config):
        operator = MainOperator(config, environ={})

        operator.setup()

        options = operator.mgr.options
        assert options.disable_cache_for == CACHE_DISABLED_KINDS
        assert options.leader_election_namespace == "opendatahub-operator-system"
        assert options.cache_policy.restriction(schemes.SECRET) is not None

    def test_dsci_opt_out(self, cluster_api, config):
        operator = MainOperator(config, environ={"DISABLE_DSC_CONFIG": "true"})

        operator.setup()

        assert [t.name for t in operator.mgr.tasks] == ["cleanup-legacy-resources"]

    def test_handler_call_order(self, cluster_api, config):
        """All inits run before the manager exists; services precede components."""
        calls = []
        services, components = registries(calls)
        operator = MainOperator(config, services=services, components=components, environ={})

        operator.setup()

        assert calls == [
            ("init", "monitoring"),
            ("init", "auth"),
            ("init", "dashboard"),
            ("init", "workbenches"),
            ("reconciler", "monitoring"),
            ("reconciler", "auth"),
            ("reconciler", "dashboard"),
            ("reconciler", "workbenches"),
        ]

    def test_service_init_failure(self, cluster_api, config):
        calls = []
        services, components = registries(calls, fail_service_init=True)
        operator = MainOperator(config, services=services, components=components, environ={})

        with pytest.raises(SetupError, match="unable to init services") as excinfo:
            operator.setup()

        assert "monitoring" in str(excinfo.value)
        assert operator.state is OperatorState.FAILED
        assert operator.mgr is None
        assert calls == [("init", "monitoring")]

    def test_component_reconciler_failure(self, cluster_api, config):
        calls = []
        services, components = registries(calls, fail_component=True)
        operator = MainOperator(config, services=services, components=components, environ={})

        with pytest.raises(SetupError, match="unable to create component controllers") as excinfo:
            operator.setup()

        assert "error creating dashboard component reconciler: no watch" in str(excinfo.value)
        assert ("reconciler", "workbenches") not in calls
        assert operator.state is OperatorState.FAILED

    def test_missing_rest_config(self):
        operator = MainOperator(Config(), environ={})

        with pytest.raises(SetupError, match="error getting client for setup"):
            operator.setup()

        assert operator.state is OperatorState.FAILED

    def test_unreachable_cluster(self, config):
        with patch("kubernetes.client.VersionApi") as version_api:
            version_api.return_value.get_code.side_effect = ConnectionRefusedError("refused")
            operator = MainOperator(config, environ={})

            with pytest.raises(SetupError, match="unable to initialize cluster config"):
                operator.setup()

    def test_unresolved_operator_namespace(self, cluster_api, config):
        operator = MainOperator(Config(rest_config=config.rest_config), environ={})

        with patch("odh_controller.services.cluster.resolve_operator_namespace", return_value=None):
            with pytest.raises(SetupError, match="unable to get application namespace into cache"):
                operator.setup()

    def test_setup_twice(self, cluster_api, config):
        operator = MainOperator(config, environ={})
        operator.setup()

        with pytest.raises(OperatorStateError):
            operator.setup()

        assert operator.state is OperatorState.READY


class TestStart:
    """Test handing control to the manager."""

    def test_start_before_setup(self):
        operator = MainOperator(Config(), environ={})

        with pytest.raises(OperatorStateError):
            asyncio.run(operator.start())

        assert operator.state is OperatorState.CREATED

    @pytest.mark.asyncio
    async def test_start_runs_manager(self, cluster_api, config):
        operator = MainOperator(config, environ={})
        operator.setup()
        operator.mgr.start = AsyncMock()
        stop_flag = asyncio.Event()

        await operator.start(stop_flag)

        operator.mgr.start.assert_awaited_once_with(stop_flag)
        assert operator.state is OperatorState.STOPPED

    @pytest.mark.asyncio
    async def test_manager_failure_propagates(self, cluster_api, config):
        operator = MainOperator(config, environ={})
        operator.setup()
        operator.mgr.start = AsyncMock(side_effect=RuntimeError("watch stream died"))

        with pytest.raises(RuntimeError, match="watch stream died"):
            await operator.start(asyncio.Event())

        assert operator.state is OperatorState.STOPPED
