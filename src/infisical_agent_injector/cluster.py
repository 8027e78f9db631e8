"""Kubernetes cluster interaction utilities.

This module provides the Cluster class which owns the Kubernetes client
configuration and the two API calls the webhook makes: reading agent
ConfigMaps and patching its own webhook registration.
"""

import logging
from typing import Any

from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from urllib3.exceptions import MaxRetryError

from infisical_agent_injector.exceptions import ClusterConnectionError, ConfigResolutionError

log = logging.getLogger(__name__)


class Cluster:
    """Manages Kubernetes cluster interactions for the webhook.

    Attributes:
        in_cluster: Whether the in-cluster service account configuration
            was used instead of a local kubeconfig.

    """

    def __init__(self) -> None:
        """Load the Kubernetes client configuration.

        Raises:
            ClusterConnectionError: If neither in-cluster configuration nor
                a kubeconfig is available.

        """
        self.in_cluster: bool = self._load_config()

    @staticmethod
    def _load_config() -> bool:
        """Load in-cluster configuration, falling back to the local kubeconfig.

        Returns:
            True if the in-cluster configuration was loaded.

        Raises:
            ClusterConnectionError: If no usable configuration exists.

        """
        try:
            config.load_incluster_config()
            return True
        except ConfigException:
            log.debug("In-cluster configuration unavailable, falling back to kubeconfig")

        try:
            config.load_kube_config()
        except ConfigException as e:
            raise ClusterConnectionError(f"Invalid or missing kubeconfig: {e}") from e
        return False

    @staticmethod
    def read_config_map(name: str, namespace: str) -> dict[str, str]:
        """Read the data of a ConfigMap.

        Args:
            name: ConfigMap name.
            namespace: ConfigMap namespace.

        Returns:
            The ConfigMap's data mapping (empty if it has none).

        Raises:
            ConfigResolutionError: If the ConfigMap cannot be read.

        """
        try:
            config_map: Any = client.CoreV1Api().read_namespaced_config_map(name, namespace)
        except ApiException as e:
            raise ConfigResolutionError(
                f"failed to get ConfigMap {name} in namespace {namespace}: {e.status} {e.reason}"
            ) from e
        except MaxRetryError as e:
            raise ConfigResolutionError(
                f"failed to get ConfigMap {name} in namespace {namespace}: {e.reason}"
            ) from e

        return dict(config_map.data or {})

    @staticmethod
    def patch_mutating_webhook_configuration(name: str, patch: list[dict[str, Any]]) -> None:
        """Apply a JSON patch to a MutatingWebhookConfiguration.

        Args:
            name: Name of the webhook configuration.
            patch: RFC6902 operations to apply.

        Raises:
            ApiException: If the API server rejects the patch.
            MaxRetryError: If the API server is unreachable.

        """
        client.AdmissionregistrationV1Api().patch_mutating_webhook_configuration(name, patch)

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return f"Cluster(in_cluster={self.in_cluster!r})"
