"""Agent ConfigMap resolution and parsing.

This module turns the YAML document stored in the ConfigMap referenced
by a pod into an `AgentConfig`.
"""

import logging
from typing import Any

import yaml

from infisical_agent_injector.constants import AGENT_CONFIG_MAP_ANNOTATION, CONFIG_MAP_DATA_KEY
from infisical_agent_injector.exceptions import ConfigResolutionError
from infisical_agent_injector.models import AgentConfig, AuthConfig, PersistentCache, RetryStrategy, Template

log = logging.getLogger(__name__)


def _mapping(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigResolutionError(f"agent config field '{where}' must be a mapping")
    return value


def _string(value: Any) -> str:
    return "" if value is None else str(value)


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _parse_template(raw: Any, index: int) -> Template:
    item = _mapping(raw, f"templates[{index}]")
    template_config = _mapping(item.get("config"), f"templates[{index}].config")
    return Template(
        destination_path=_string(item.get("destination-path")),
        source_path=_string(item.get("source-path")),
        template_content=_string(item.get("template-content")),
        base64_template_content=_string(item.get("base64-template-content")),
        polling_interval=_string(template_config.get("polling-interval")),
    )


def _parse_retry_strategy(raw: Any) -> RetryStrategy | None:
    if raw is None:
        return None
    section = _mapping(raw, "infisical.retry-strategy")
    max_retries = section.get("max-retries")
    if max_retries is not None:
        try:
            max_retries = int(max_retries)
        except (TypeError, ValueError) as err:
            raise ConfigResolutionError(
                f"agent config field 'infisical.retry-strategy.max-retries' must be an integer, got {max_retries!r}"
            ) from err
    return RetryStrategy(
        max_retries=max_retries,
        base_delay=_string(section.get("base-delay")),
        max_delay=_string(section.get("max-delay")),
    )


def _parse_cache(raw: Any) -> PersistentCache | None:
    persistent = _mapping(raw, "cache").get("persistent")
    if persistent is None:
        return None
    section = _mapping(persistent, "cache.persistent")
    return PersistentCache(
        type=_string(section.get("type")),
        service_account_token_path=_string(section.get("service-account-token-path")),
        path=_string(section.get("path")),
    )


def parse_agent_config(document: str) -> AgentConfig:
    """Parse the YAML agent config stored in a ConfigMap.

    Args:
        document: The raw YAML text.

    Returns:
        The parsed agent configuration.

    Raises:
        ConfigResolutionError: If the document is malformed YAML or does not
            have the expected shape.

    """
    try:
        data = yaml.safe_load(document)
    except yaml.YAMLError as err:
        raise ConfigResolutionError(f"agent config contains malformed YAML: {err}") from err

    root = _mapping(data, "<root>")
    infisical = _mapping(root.get("infisical"), "infisical")
    auth = _mapping(infisical.get("auth"), "infisical.auth")

    raw_templates = root.get("templates") or []
    if not isinstance(raw_templates, list):
        raise ConfigResolutionError("agent config field 'templates' must be a list")

    return AgentConfig(
        address=_string(infisical.get("address")),
        auth=AuthConfig(
            type=_string(auth.get("type")),
            params=dict(_mapping(auth.get("config"), "infisical.auth.config")),
        ),
        templates=tuple(_parse_template(raw, i) for i, raw in enumerate(raw_templates)),
        cache=_parse_cache(root.get("cache")),
        retry_strategy=_parse_retry_strategy(infisical.get("retry-strategy")),
        revoke_credentials_on_shutdown=_flag(infisical.get("revoke-credentials-on-shutdown")),
    )


class ConfigResolver:
    """Fetches the agent ConfigMap a pod refers to.

    Attributes:
        cluster: Object exposing ``read_config_map(name, namespace)``.

    """

    def __init__(self, cluster: Any) -> None:
        """Initialize the resolver.

        Args:
            cluster: Object exposing ``read_config_map(name, namespace)``,
                normally a `Cluster`.

        """
        self.cluster = cluster

    def resolve(self, pod: dict[str, Any], namespace: str) -> AgentConfig:
        """Return the parsed agent config referenced by the pod's annotation.

        Args:
            pod: The pod object from the admission request.
            namespace: Namespace the pod is created in.

        Returns:
            The parsed agent configuration.

        Raises:
            ConfigResolutionError: If the annotation is missing, the ConfigMap
                cannot be read, or its document is invalid.

        """
        annotations = (pod.get("metadata") or {}).get("annotations") or {}
        name = annotations.get(AGENT_CONFIG_MAP_ANNOTATION, "")
        if not name:
            raise ConfigResolutionError(f"no config map found, set the {AGENT_CONFIG_MAP_ANNOTATION} annotation")

        data = self.cluster.read_config_map(name, namespace)
        document = data.get(CONFIG_MAP_DATA_KEY)
        if not document:
            raise ConfigResolutionError(
                f"ConfigMap {name} in namespace {namespace} has no '{CONFIG_MAP_DATA_KEY}' key"
            )

        log.debug("Parsing agent config from ConfigMap %s/%s", namespace, name)
        return parse_agent_config(document)
