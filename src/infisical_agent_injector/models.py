"""Data models for infisical-agent-injector.

This module provides type-safe data structures for the agent ConfigMap
and everything derived from it, replacing the loosely-typed YAML
mappings with proper Python data classes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, NamedTuple


class InjectMode(str, Enum):
    """Supported combinations of injected agent containers.

    Inherits from str so annotation values compare and serialize directly.
    """

    INIT = "init"
    SIDECAR = "sidecar"
    SIDECAR_INIT = "sidecar-init"

    @property
    def has_init(self) -> bool:
        """Whether an init container is injected."""
        return self in (InjectMode.INIT, InjectMode.SIDECAR_INIT)

    @property
    def has_sidecar(self) -> bool:
        """Whether a long-lived sidecar container is injected."""
        return self in (InjectMode.SIDECAR, InjectMode.SIDECAR_INIT)


class AuthType(str, Enum):
    """Authentication methods the agent can be configured with."""

    KUBERNETES = "kubernetes"
    LDAP = "ldap"

    @classmethod
    def _missing_(cls, value: object) -> "AuthType | None":
        # The agent itself names LDAP auth "ldap-auth"; accept both spellings.
        if value == "ldap-auth":
            return cls.LDAP
        return None

    @property
    def agent_type(self) -> str:
        """The auth type name understood by the agent binary."""
        return "ldap-auth" if self is AuthType.LDAP else self.value


@dataclass(frozen=True, slots=True)
class Template:
    """A secret template rendered by the agent.

    Attributes:
        destination_path: File the rendered secret is written to.
        source_path: Path of a template file inside the agent container.
        template_content: Inline template.
        base64_template_content: Base64 encoded inline template.
        polling_interval: How often the agent re-renders the template.

    """

    destination_path: str = ""
    source_path: str = ""
    template_content: str = ""
    base64_template_content: str = ""
    polling_interval: str = ""


@dataclass(frozen=True, slots=True)
class RetryStrategy:
    """Client retry tuning passed through to the agent."""

    max_retries: int | None = None
    base_delay: str = ""
    max_delay: str = ""


@dataclass(frozen=True, slots=True)
class PersistentCache:
    """Persistent cache descriptor of the agent config."""

    type: str
    service_account_token_path: str
    path: str


@dataclass(frozen=True, slots=True)
class AuthConfig:
    """Authentication section as found in the ConfigMap.

    The parameters stay untyped here; the planner turns them into a
    `KubernetesAuth` or `LdapAuth` before anything else sees them.
    """

    type: str = ""
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AgentConfig:
    """The agent ConfigMap document.

    Attributes:
        address: URL of the Infisical instance.
        auth: Authentication section.
        templates: Secret templates, in document order.
        cache: Optional persistent cache descriptor.
        retry_strategy: Optional client retry tuning.
        revoke_credentials_on_shutdown: Revoke the access token when the
            sidecar stops.

    """

    address: str = ""
    auth: AuthConfig = field(default_factory=AuthConfig)
    templates: tuple[Template, ...] = ()
    cache: PersistentCache | None = None
    retry_strategy: RetryStrategy | None = None
    revoke_credentials_on_shutdown: bool = False


@dataclass(frozen=True, slots=True)
class KubernetesAuth:
    """Kubernetes service account authentication."""

    type: ClassVar[AuthType] = AuthType.KUBERNETES

    identity_id: str


@dataclass(frozen=True, slots=True)
class LdapAuth:
    """LDAP authentication."""

    type: ClassVar[AuthType] = AuthType.LDAP

    identity_id: str
    username: str
    password: str


ResolvedAuth = KubernetesAuth | LdapAuth


class ServiceAccountTokenVolume(NamedTuple):
    """The projected service account token mount discovered on the pod.

    Attributes:
        name: Name of the volume backing the mount.
        mount_path: Directory the token volume is mounted at.
        token_path: Token file name inside the mount.

    """

    name: str
    mount_path: str
    token_path: str


@dataclass(frozen=True, slots=True)
class ResourceProfile:
    """Resource limits and requests of an injected container."""

    limits: dict[str, str]
    requests: dict[str, str]

    def to_dict(self) -> dict[str, dict[str, str]]:
        """Return the profile as a Kubernetes ``resources`` mapping."""
        return {"limits": dict(self.limits), "requests": dict(self.requests)}
