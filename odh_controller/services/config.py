"""
Configuration management for the ODH controller.
"""

import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from kubernetes import client, config as kube_config

TRUE_VALUES = ("1", "true", "yes", "on")
FALSE_VALUES = ("0", "false", "no", "off", "")


class ConfigError(ValueError):
    """Configuration could not be loaded."""


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def parse_bind_address(value: str) -> Optional[tuple]:
    """
    Split a "host:port" bind address.

    Returns None when the endpoint is disabled ("" or "0"). An empty host
    means all interfaces.
    """
    value = value.strip()
    if value in ("", "0"):
        return None
    host, sep, port = value.rpartition(":")
    if not sep:
        host, port = "", value
    try:
        port_number = int(port)
    except ValueError:
        raise ConfigError(f"invalid bind address {value!r}") from None
    if port_number == 0:
        return None
    if not 0 < port_number < 65536:
        raise ConfigError(f"invalid port in bind address {value!r}")
    return (host or "0.0.0.0", port_number)


@dataclass(frozen=True)
class Config:
    """Controller configuration."""

    # Connection to the cluster; filled in by load_config()
    rest_config: Optional[client.Configuration] = field(default=None, repr=False)

    metrics_addr: str = ":8080"
    health_probe_addr: str = ":8081"
    pprof_addr: str = ""

    leader_election: bool = False

    # Namespace for the default DSCInitialization monitoring stack
    monitoring_namespace: str = "opendatahub"

    # Namespace the operator runs in (None = read from the service account)
    operator_namespace: Optional[str] = None

    # "devel"/"development" switches to console output, anything else is JSON
    log_mode: str = ""
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Load configuration from environment variables."""
        env = os.environ if environ is None else environ

        cfg = cls(
            metrics_addr=env.get("METRICS_BIND_ADDRESS", ":8080"),
            health_probe_addr=env.get("HEALTH_PROBE_BIND_ADDRESS", ":8081"),
            pprof_addr=env.get("PPROF_BIND_ADDRESS", ""),
            leader_election=_parse_bool("LEADER_ELECT", env.get("LEADER_ELECT", "false")),
            monitoring_namespace=env.get("MONITORING_NAMESPACE", "opendatahub"),
            operator_namespace=env.get("OPERATOR_NAMESPACE") or None,
            log_mode=env.get("ZAP_LOG_MODE", env.get("LOG_MODE", "")),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),
        )

        # Fail on malformed addresses now rather than when the manager binds
        for addr in (cfg.metrics_addr, cfg.health_probe_addr, cfg.pprof_addr):
            parse_bind_address(addr)

        return cfg

    @property
    def development(self) -> bool:
        return self.log_mode.lower() in ("devel", "development")


def load_rest_config() -> client.Configuration:
    """
    Load the cluster connection.

    In-cluster service account credentials win; otherwise the local
    kubeconfig ($KUBECONFIG or ~/.kube/config) is used.
    """
    rest_config = client.Configuration()
    try:
        kube_config.load_incluster_config(client_configuration=rest_config)
    except kube_config.ConfigException:
        try:
            kube_config.load_kube_config(client_configuration=rest_config)
        except (kube_config.ConfigException, OSError) as e:
            raise ConfigError(f"could not configure Kubernetes client: {e}") from e
    return rest_config


def load_config(environ: Optional[Mapping[str, str]] = None) -> Config:
    """Load the full process configuration, cluster connection included."""
    cfg = Config.from_env(environ)
    return replace(cfg, rest_config=load_rest_config())
