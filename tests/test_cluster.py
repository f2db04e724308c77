"""
Tests for the cluster probe.
"""

from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from odh_controller.services.cluster import (
    MANAGED_CATALOG_SOURCE,
    ClusterError,
    Platform,
    detect_platform,
    init_cluster,
    resolve_application_namespace,
    resolve_operator_namespace,
)

from conftest import api_error


def custom_api(catalog=None, csvs=(), dscis=()):
    api = MagicMock()
    if catalog is None:
        api.get_namespaced_custom_object.side_effect = api_error(404)
    else:
        api.get_namespaced_custom_object.return_value = catalog
    api.list_namespaced_custom_object.return_value = {
        "items": [{"metadata": {"name": name}} for name in csvs],
    }
    api.list_cluster_custom_object.return_value = {"items": list(dscis)}
    return api


class TestOperatorNamespace:
    """Test operator namespace resolution."""

    def test_configured_wins(self, tmp_path):
        path = tmp_path / "namespace"
        path.write_text("from-file")

        assert resolve_operator_namespace("configured", str(path)) == "configured"

    def test_service_account_file(self, tmp_path):
        path = tmp_path / "namespace"
        path.write_text("from-file\n")

        assert resolve_operator_namespace(None, str(path)) == "from-file"

    def test_unresolvable(self, tmp_path):
        assert resolve_operator_namespace(None, str(tmp_path / "missing")) is None


class TestDetectPlatform:
    """Test platform detection."""

    def test_managed_catalog_source(self):
        api = custom_api(catalog={"metadata": {"name": MANAGED_CATALOG_SOURCE}})

        assert detect_platform(api, "redhat-ods-operator") is Platform.MANAGED_RHOAI

    def test_self_managed_csv(self):
        api = custom_api(csvs=["rhods-operator.2.16.0"])

        assert detect_platform(api, "redhat-ods-operator") is Platform.SELF_MANAGED_RHOAI

    def test_open_data_hub(self):
        api = custom_api(csvs=["opendatahub-operator.v2.20.0"])

        assert detect_platform(api, "openshift-operators") is Platform.OPEN_DATA_HUB

    def test_no_olm(self):
        """Clusters without OLM resources are Open Data Hub."""
        api = custom_api()
        api.list_namespaced_custom_object.side_effect = api_error(404)

        assert detect_platform(api, "odh") is Platform.OPEN_DATA_HUB

    def test_no_namespace(self):
        api = custom_api()

        assert detect_platform(api, None) is Platform.OPEN_DATA_HUB
        api.get_namespaced_custom_object.assert_not_called()

    def test_forbidden_propagates(self):
        api = custom_api()
        api.get_namespaced_custom_object.side_effect = api_error(403)

        with pytest.raises(ApiException) as excinfo:
            detect_platform(api, "odh")

        assert excinfo.value.status == 403


class TestApplicationNamespace:
    """Test application namespace resolution."""

    def test_from_existing_dsci(self):
        api = custom_api(dscis=[{"spec": {"applicationsNamespace": "custom-apps"}}])

        assert resolve_application_namespace(api, Platform.OPEN_DATA_HUB) == "custom-apps"

    @pytest.mark.parametrize("platform,expected", [
        (Platform.OPEN_DATA_HUB, "opendatahub"),
        (Platform.SELF_MANAGED_RHOAI, "redhat-ods-applications"),
        (Platform.MANAGED_RHOAI, "redhat-ods-applications"),
    ])
    def test_platform_default(self, platform, expected):
        assert resolve_application_namespace(custom_api(), platform) == expected


class TestInitCluster:
    """Test the full probe."""

    def test_resolves_cluster_info(self):
        api = custom_api(csvs=["rhods-operator.2.16.0"])
        version = MagicMock(git_version="v1.29.0")

        with patch("kubernetes.client.VersionApi") as version_api, \
                patch("kubernetes.client.CustomObjectsApi", return_value=api):
            version_api.return_value.get_code.return_value = version
            info = init_cluster(MagicMock(), "redhat-ods-operator")

        assert info.platform is Platform.SELF_MANAGED_RHOAI
        assert info.operator_namespace == "redhat-ods-operator"
        assert info.application_namespace == "redhat-ods-applications"
        assert info.server_version == "v1.29.0"
        assert not info.managed

    def test_unreachable(self):
        with patch("kubernetes.client.VersionApi") as version_api:
            version_api.return_value.get_code.side_effect = ConnectionRefusedError("refused")

            with pytest.raises(ClusterError, match="not reachable"):
                init_cluster(MagicMock(), "odh")

    def test_lookup_refused(self):
        api = custom_api()
        api.get_namespaced_custom_object.side_effect = api_error(403, "Forbidden")

        with patch("kubernetes.client.VersionApi"), \
                patch("kubernetes.client.CustomObjectsApi", return_value=api):
            with pytest.raises(ClusterError, match="Forbidden"):
                init_cluster(MagicMock(), "odh")
