"""infisical-agent-injector: Kubernetes admission webhook for the Infisical agent.

This package mutates annotated pods so that the Infisical agent renders
secrets into a shared volume, either once before the workload starts
(init container), continuously next to it (sidecar), or both.

Example usage:
    from infisical_agent_injector import AdmissionHandler, Cluster, ConfigResolver

    handler = AdmissionHandler(ConfigResolver(Cluster()))
    review = handler.review(body, "application/json")
"""

__version__ = "0.1.0"

from infisical_agent_injector.admission import AdmissionHandler
from infisical_agent_injector.cli import cli
from infisical_agent_injector.cluster import Cluster
from infisical_agent_injector.config import ConfigResolver
from infisical_agent_injector.exceptions import (
    AdmissionProtocolError,
    CertificateError,
    ClusterConnectionError,
    ConfigResolutionError,
    InjectionValidationError,
    InjectorError,
)

__all__ = [
    # Version
    "__version__",
    # Main CLI
    "cli",
    # Classes
    "AdmissionHandler",
    "Cluster",
    "ConfigResolver",
    # Exceptions
    "InjectorError",
    "AdmissionProtocolError",
    "CertificateError",
    "ClusterConnectionError",
    "ConfigResolutionError",
    "InjectionValidationError",
]
