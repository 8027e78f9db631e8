"""Custom exceptions for infisical-agent-injector.

This module defines the exception hierarchy used throughout the webhook
to separate request-level failures (which are answered fail-open) from
protocol and startup failures.
"""


class InjectorError(Exception):
    """Base exception for all infisical-agent-injector errors.

    All custom exceptions in this package inherit from this class,
    allowing the admission handler to catch every injector failure
    with a single except clause.
    """

    pass


class InjectionValidationError(InjectorError):
    """Raised when a pod or its agent configuration cannot be injected.

    This can occur when:
    - The inject mode annotation holds an unsupported value
    - The auth type is unsupported or misses required fields
    - A template destination path is not an absolute folder path
    - A resource or retry annotation cannot be parsed
    """

    pass


class ConfigResolutionError(InjectorError):
    """Raised when the referenced agent ConfigMap cannot be resolved.

    This can occur when:
    - The pod does not name a ConfigMap
    - The ConfigMap does not exist or cannot be read
    - The ConfigMap document is not valid YAML
    """

    pass


class AdmissionProtocolError(InjectorError):
    """Raised when an admission request cannot be decoded.

    These errors abort the request before any planning happens and are
    answered with a plain HTTP error instead of an admission review.

    Attributes:
        status_code: HTTP status code to answer with.

    """

    def __init__(self, message: str, status_code: int = 400) -> None:
        """Initialize the error with a message and HTTP status code.

        Args:
            message: Human readable description of the failure.
            status_code: HTTP status code to answer with.

        """
        super().__init__(message)
        self.status_code = status_code


class ClusterConnectionError(InjectorError):
    """Raised when the Kubernetes client cannot be constructed.

    This can occur when:
    - The process runs outside a cluster without a kubeconfig
    - The kubeconfig is invalid
    """

    pass


class CertificateError(InjectorError):
    """Raised when the self-signed serving certificate cannot be produced.

    This can occur when:
    - Key or certificate generation fails
    - The certificate directory cannot be created or written
    """

    pass
