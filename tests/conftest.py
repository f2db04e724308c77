"""
Shared fixtures for the controller tests.
"""

from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException

from odh_controller.bootstrap import schemes
from odh_controller.bootstrap.cache import build_cache_policy
from odh_controller.bootstrap.schemes import new_scheme
from odh_controller.services.cluster import ClusterInfo, Platform
from odh_controller.services.manager import Manager, ManagerOptions, strip_managed_fields


def api_error(status: int, reason: str = "") -> ApiException:
    return ApiException(status=status, reason=reason or f"status {status}")


def cluster_info(platform: Platform = Platform.OPEN_DATA_HUB, **overrides) -> ClusterInfo:
    values = {
        "platform": platform,
        "operator_namespace": "opendatahub-operator-system",
        "application_namespace": platform.default_application_namespace,
    }
    values.update(overrides)
    return ClusterInfo(**values)


@pytest.fixture
def odh_info():
    return cluster_info(Platform.OPEN_DATA_HUB)


@pytest.fixture
def managed_info():
    return cluster_info(Platform.MANAGED_RHOAI)


@pytest.fixture
def make_manager(tmp_path):
    """Build a Manager with every network endpoint disabled."""

    def build(info=None, api_client=None, **overrides):
        info = info or cluster_info()
        options = {
            "scheme": new_scheme(),
            "cache_policy": build_cache_policy(info),
            "metrics_addr": "0",
            "health_probe_addr": "0",
            "pprof_addr": "",
            "webhook_cert_dir": str(tmp_path),
            "disable_cache_for": (schemes.POD, schemes.SUBSCRIPTION),
            "default_transform": strip_managed_fields,
        }
        options.update(overrides)
        return Manager(api_client or MagicMock(), ManagerOptions(**options))

    return build
