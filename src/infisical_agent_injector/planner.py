"""Mutation planning for agent injection.

This module validates a pod and its resolved agent configuration and
computes the target state of the injection: the inject mode, the
volumes that must exist and the mounts every workload container needs.
Nothing here touches the pod; the patch builder turns a plan into
operations.
"""

import dataclasses
import logging
import re
from dataclasses import dataclass
from typing import Any

from infisical_agent_injector.constants import (
    ACCESS_TOKEN_FILE_NAME,
    AGENT_STATUS_ANNOTATION,
    AGENT_STATUS_INJECTED,
    CACHE_DIR_NAME,
    CACHING_ENABLED_ANNOTATION,
    CLIENT_BASE_DELAY_ANNOTATION,
    CLIENT_MAX_DELAY_ANNOTATION,
    CLIENT_MAX_RETRIES_ANNOTATION,
    DEFAULT_INFISICAL_ADDRESS,
    INJECT_MODE_ANNOTATION,
    REVOKE_ON_SHUTDOWN_ANNOTATION,
    SECRETS_VOLUME_NAME,
    SERVICE_ACCOUNT_MOUNT_MARKER,
    SERVICE_ACCOUNT_TOKEN_FILE,
    WORK_DIR_VOLUME_NAME,
)
from infisical_agent_injector.exceptions import InjectionValidationError
from infisical_agent_injector.models import (
    AgentConfig,
    AuthConfig,
    AuthType,
    InjectMode,
    KubernetesAuth,
    LdapAuth,
    PersistentCache,
    ResolvedAuth,
    RetryStrategy,
    ServiceAccountTokenVolume,
    Template,
)
from infisical_agent_injector.platform import Platform, detect_platform, pinned_architecture

log = logging.getLogger(__name__)

# Go-style durations as understood by the agent, e.g. "300ms", "5s", "1m30s"
_DURATION_PATTERN = re.compile(r"^(\d+(\.\d+)?(ns|us|µs|ms|s|m|h))+$")

_SUPPORTED_WINDOWS_ARCH = "amd64"


@dataclass(frozen=True, slots=True)
class InjectionPlan:
    """The validated target state of one injection.

    Attributes:
        mode: Which agent containers are injected.
        platform: Platform the pod targets.
        config: Agent config with defaults applied and every template
            holding a destination path.
        auth: Typed authentication parameters.
        service_account: Discovered service account token mount, if any.
        annotations: The pod's annotations, used for resource overrides.
        revoke_on_shutdown: Revoke the access token when the sidecar stops.

    """

    mode: InjectMode
    platform: Platform
    config: AgentConfig
    auth: ResolvedAuth
    service_account: ServiceAccountTokenVolume | None
    annotations: dict[str, str]
    revoke_on_shutdown: bool = False

    @property
    def config_dir(self) -> str:
        """Directory inside the work dir holding the agent config and auth files."""
        return self.platform.join(self.platform.work_dir, "config")

    def config_file(self, name: str) -> str:
        """Return the path of a file inside the agent config directory."""
        return self.platform.join(self.config_dir, name)

    @property
    def access_token_path(self) -> str:
        """File the agent writes its access token to."""
        return self.config_file(ACCESS_TOKEN_FILE_NAME)

    def secret_volume_name(self, index: int) -> str:
        """Return the volume name of the template at ``index`` (0-based)."""
        if len(self.config.templates) > 1:
            return f"{SECRETS_VOLUME_NAME}-{index + 1}"
        return SECRETS_VOLUME_NAME

    def volumes(self) -> list[dict[str, Any]]:
        """Return every volume the injection needs, work dir first."""
        volumes: list[dict[str, Any]] = [{"name": WORK_DIR_VOLUME_NAME, "emptyDir": {"medium": "Memory"}}]
        for index in range(len(self.config.templates)):
            volumes.append({"name": self.secret_volume_name(index), "emptyDir": {}})
        return volumes

    def work_dir_mount(self) -> dict[str, Any]:
        """Return the mount of the agent work directory."""
        return {"name": WORK_DIR_VOLUME_NAME, "mountPath": self.platform.work_dir}

    def secret_mounts(self) -> list[dict[str, Any]]:
        """Return one mount per template, at its destination's parent directory.

        Templates sharing a directory produce mounts with the same path; the
        patch builder keeps only the first of them.

        """
        return [
            {
                "name": self.secret_volume_name(index),
                "mountPath": self.platform.dirname(template.destination_path),
                "readOnly": False,
            }
            for index, template in enumerate(self.config.templates)
        ]

    def workload_mounts(self) -> list[dict[str, Any]]:
        """Return the mounts every workload container should end up with."""
        return [self.work_dir_mount(), *self.secret_mounts()]

    def status_annotations(self) -> dict[str, str]:
        """Return the annotations marking the pod as injected."""
        return {AGENT_STATUS_ANNOTATION: AGENT_STATUS_INJECTED}


def pod_annotations(pod: dict[str, Any]) -> dict[str, str]:
    """Return the pod's annotations, empty if it has none."""
    return dict((pod.get("metadata") or {}).get("annotations") or {})


def _is_true(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


def resolve_inject_mode(annotations: dict[str, str]) -> InjectMode:
    """Return the inject mode requested by the pod, ``init`` by default.

    Raises:
        InjectionValidationError: If the annotation holds an unsupported value.

    """
    value = annotations.get(INJECT_MODE_ANNOTATION) or InjectMode.INIT.value
    try:
        return InjectMode(value)
    except ValueError:
        supported = ", ".join(mode.value for mode in InjectMode)
        raise InjectionValidationError(f"invalid inject mode '{value}', supported modes are: {supported}") from None


def find_service_account_token_volume(pod: dict[str, Any]) -> ServiceAccountTokenVolume | None:
    """Find the projected service account token mount of a pod.

    Scans the regular containers' mounts for a path that looks like a
    service account projection (``.../serviceaccount``).

    Args:
        pod: The pod object from the admission request.

    Returns:
        The first matching mount, or None if the pod has none.

    """
    for container in (pod.get("spec") or {}).get("containers") or []:
        for mount in container.get("volumeMounts") or []:
            if SERVICE_ACCOUNT_MOUNT_MARKER in (mount.get("mountPath") or ""):
                return ServiceAccountTokenVolume(
                    name=mount.get("name", ""),
                    mount_path=mount["mountPath"],
                    token_path=SERVICE_ACCOUNT_TOKEN_FILE,
                )
    return None


def _require_param(params: dict[str, Any], key: str, auth_type: AuthType) -> str:
    value = params.get(key)
    if value is None or str(value) == "":
        raise InjectionValidationError(f"auth config '{key}' is required for {auth_type.value} auth")
    return str(value)


def resolve_auth(
    auth: AuthConfig,
    service_account: ServiceAccountTokenVolume | None,
) -> ResolvedAuth:
    """Turn the ConfigMap's auth section into a typed auth value.

    Args:
        auth: The untyped auth section.
        service_account: The discovered service account token mount.

    Returns:
        `KubernetesAuth` or `LdapAuth`.

    Raises:
        InjectionValidationError: If the type is missing or unsupported, a
            required parameter is missing, or Kubernetes auth is requested
            for a pod without a usable service account token mount.

    """
    if not auth.type:
        raise InjectionValidationError("auth type is required")

    try:
        auth_type = AuthType(auth.type)
    except ValueError:
        raise InjectionValidationError(
            f"auth type {auth.type} not supported. please use {AuthType.KUBERNETES.value} or {AuthType.LDAP.value}"
        ) from None

    match auth_type:
        case AuthType.KUBERNETES:
            if service_account is None:
                raise InjectionValidationError("service account token volume is required")
            if not service_account.name:
                raise InjectionValidationError("service account token volume name is required")
            if not service_account.mount_path:
                raise InjectionValidationError("service account token volume mount path is required")
            if not service_account.token_path:
                raise InjectionValidationError("service account token volume token path is required")
            return KubernetesAuth(identity_id=_require_param(auth.params, "identity-id", auth_type))
        case AuthType.LDAP:
            return LdapAuth(
                identity_id=_require_param(auth.params, "identity-id", auth_type),
                username=_require_param(auth.params, "username", auth_type),
                password=_require_param(auth.params, "password", auth_type),
            )


def assign_destination_paths(templates: tuple[Template, ...], platform: Platform) -> tuple[Template, ...]:
    """Give every template without a destination path the default one.

    A single template gets the default path as-is; with several, the
    default is suffixed with the template's 1-based index.

    Args:
        templates: Templates in document order.
        platform: Platform the pod targets.

    Returns:
        The templates, each with a destination path.

    """
    default = platform.default_destination_path
    resolved: list[Template] = []
    for index, template in enumerate(templates):
        if not template.destination_path:
            path = f"{default}-{index + 1}" if len(templates) > 1 else default
            template = dataclasses.replace(template, destination_path=path)
        resolved.append(template)
    return tuple(resolved)


def _check_duration(value: str, annotation: str) -> str:
    if not _DURATION_PATTERN.match(value):
        raise InjectionValidationError(
            f"annotation {annotation} must be a duration such as 500ms, 5s or 1m30s, got '{value}'"
        )
    return value


def resolve_retry_strategy(base: RetryStrategy | None, annotations: dict[str, str]) -> RetryStrategy | None:
    """Overlay the retry tuning annotations on the ConfigMap's retry strategy.

    Args:
        base: Retry strategy from the ConfigMap, if any.
        annotations: The pod's annotations.

    Returns:
        The merged strategy, or None if neither source sets anything.

    Raises:
        InjectionValidationError: If an annotation value cannot be parsed.

    """
    max_retries = annotations.get(CLIENT_MAX_RETRIES_ANNOTATION)
    base_delay = annotations.get(CLIENT_BASE_DELAY_ANNOTATION)
    max_delay = annotations.get(CLIENT_MAX_DELAY_ANNOTATION)

    if not (max_retries or base_delay or max_delay):
        return base

    strategy = base or RetryStrategy()

    if max_retries:
        try:
            retries = int(max_retries)
        except ValueError:
            retries = -1
        if retries < 0:
            raise InjectionValidationError(
                f"annotation {CLIENT_MAX_RETRIES_ANNOTATION} must be a non-negative integer, got '{max_retries}'"
            )
        strategy = dataclasses.replace(strategy, max_retries=retries)
    if base_delay:
        strategy = dataclasses.replace(strategy, base_delay=_check_duration(base_delay, CLIENT_BASE_DELAY_ANNOTATION))
    if max_delay:
        strategy = dataclasses.replace(strategy, max_delay=_check_duration(max_delay, CLIENT_MAX_DELAY_ANNOTATION))

    return strategy


def _resolve_cache(
    config: AgentConfig,
    annotations: dict[str, str],
    platform: Platform,
    service_account: ServiceAccountTokenVolume | None,
) -> PersistentCache | None:
    if config.cache is not None or not _is_true(annotations.get(CACHING_ENABLED_ANNOTATION)):
        return config.cache

    if service_account is None:
        raise InjectionValidationError("caching requires a service account token volume on the pod")

    return PersistentCache(
        type="kubernetes",
        service_account_token_path=platform.join(service_account.mount_path, service_account.token_path),
        path=platform.join(platform.work_dir, CACHE_DIR_NAME),
    )


def plan_injection(pod: dict[str, Any], config: AgentConfig) -> InjectionPlan:
    """Validate a pod and its agent config and compute the injection plan.

    Args:
        pod: The pod object from the admission request.
        config: The agent config the pod refers to.

    Returns:
        The validated plan.

    Raises:
        InjectionValidationError: If anything about the pod or the config
            prevents injection.

    """
    annotations = pod_annotations(pod)
    mode = resolve_inject_mode(annotations)
    platform = detect_platform(pod)

    if platform.windows:
        arch = pinned_architecture(pod)
        if arch and arch != _SUPPORTED_WINDOWS_ARCH:
            raise InjectionValidationError(
                f"windows pods are only supported on {_SUPPORTED_WINDOWS_ARCH} nodes, got '{arch}'"
            )

    service_account = find_service_account_token_volume(pod)
    auth = resolve_auth(config.auth, service_account)

    if not config.templates:
        raise InjectionValidationError("no templates found in config map")

    templates = assign_destination_paths(config.templates, platform)
    for template in templates:
        platform.validate_destination_path(template.destination_path)

    revoke_on_shutdown = config.revoke_credentials_on_shutdown or _is_true(
        annotations.get(REVOKE_ON_SHUTDOWN_ANNOTATION)
    )
    if revoke_on_shutdown and not mode.has_sidecar:
        raise InjectionValidationError(
            f"revoke on shutdown requires a sidecar, use inject mode "
            f"{InjectMode.SIDECAR.value} or {InjectMode.SIDECAR_INIT.value}"
        )

    resolved = dataclasses.replace(
        config,
        address=config.address or DEFAULT_INFISICAL_ADDRESS,
        templates=templates,
        cache=_resolve_cache(config, annotations, platform, service_account),
        retry_strategy=resolve_retry_strategy(config.retry_strategy, annotations),
        revoke_credentials_on_shutdown=revoke_on_shutdown,
    )

    log.debug("Planned %s injection for %s pod with %d template(s)", mode.value, platform.value, len(templates))

    return InjectionPlan(
        mode=mode,
        platform=platform,
        config=resolved,
        auth=auth,
        service_account=service_account,
        annotations=annotations,
        revoke_on_shutdown=revoke_on_shutdown,
    )
