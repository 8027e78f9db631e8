"""Bootstrap scripts and container definitions for the injected agent.

This module renders, per injected container, the agent config the
container writes at startup, the platform-specific bootstrap script
(POSIX shell or PowerShell) that writes it and runs the agent, and the
resource profile the container runs with.
"""

import shlex
from typing import Any, NamedTuple

import yaml
from kubernetes.utils import parse_quantity

from infisical_agent_injector.constants import (
    AGENT_CONFIG_FILE_NAME,
    IDENTITY_ID_FILE_NAME,
    INIT_CONTAINER_NAME,
    INIT_TIMEOUT_SECONDS,
    LIMITS_CPU_ANNOTATION,
    LIMITS_EPHEMERAL_ANNOTATION,
    LIMITS_MEMORY_ANNOTATION,
    PASSWORD_FILE_NAME,
    REQUESTS_CPU_ANNOTATION,
    REQUESTS_EPHEMERAL_ANNOTATION,
    REQUESTS_MEMORY_ANNOTATION,
    SIDECAR_CONTAINER_NAME,
    USERNAME_FILE_NAME,
)
from infisical_agent_injector.exceptions import InjectionValidationError
from infisical_agent_injector.models import KubernetesAuth, LdapAuth, ResourceProfile
from infisical_agent_injector.patch import select_new_mounts
from infisical_agent_injector.planner import InjectionPlan
from infisical_agent_injector.platform import Platform

# (section, resource, annotation) triples that override the defaults
_RESOURCE_OVERRIDES = (
    ("limits", "cpu", LIMITS_CPU_ANNOTATION),
    ("limits", "memory", LIMITS_MEMORY_ANNOTATION),
    ("requests", "cpu", REQUESTS_CPU_ANNOTATION),
    ("requests", "memory", REQUESTS_MEMORY_ANNOTATION),
    ("limits", "ephemeral-storage", LIMITS_EPHEMERAL_ANNOTATION),
    ("requests", "ephemeral-storage", REQUESTS_EPHEMERAL_ANNOTATION),
)

_CONFIG_DELIMITER = "INFISICAL_AGENT_CONFIG"
_SECRET_DELIMITER = "INFISICAL_AGENT_SECRET"

# exit code of timeout(1) when the command ran out of time
_TIMEOUT_EXIT_CODE = 124


class AuthFile(NamedTuple):
    """A credential the bootstrap script writes to the config directory."""

    path: str
    value: str


class AgentContainers(NamedTuple):
    """The containers an injection adds, None for those the mode skips."""

    init: dict[str, Any] | None
    sidecar: dict[str, Any] | None


def resource_profile(platform: Platform, annotations: dict[str, str]) -> ResourceProfile:
    """Return the resource profile of an agent container.

    Starts from the platform defaults and applies the cpu/memory override
    annotations. Ephemeral storage is only set when explicitly annotated,
    leaving the cluster's own defaults in charge otherwise.

    Args:
        platform: Platform the pod targets.
        annotations: The pod's annotations.

    Returns:
        The resource profile.

    Raises:
        InjectionValidationError: If an override is not a valid quantity.

    """
    profile = platform.default_resources()
    sections = {"limits": dict(profile.limits), "requests": dict(profile.requests)}

    for section, resource, annotation in _RESOURCE_OVERRIDES:
        value = (annotations.get(annotation) or "").strip()
        if not value:
            continue
        try:
            parse_quantity(value)
        except (ValueError, ArithmeticError):
            raise InjectionValidationError(
                f"annotation {annotation} is not a valid resource quantity: '{value}'"
            ) from None
        sections[section][resource] = value

    return ResourceProfile(limits=sections["limits"], requests=sections["requests"])


def auth_files(plan: InjectionPlan) -> list[AuthFile]:
    """Return the credential files the bootstrap script has to write."""
    files = [AuthFile(plan.config_file(IDENTITY_ID_FILE_NAME), plan.auth.identity_id)]
    if isinstance(plan.auth, LdapAuth):
        files.append(AuthFile(plan.config_file(USERNAME_FILE_NAME), plan.auth.username))
        files.append(AuthFile(plan.config_file(PASSWORD_FILE_NAME), plan.auth.password))
    return files


def _auth_section(plan: InjectionPlan) -> dict[str, Any]:
    auth_config: dict[str, str] = {"identity-id": plan.config_file(IDENTITY_ID_FILE_NAME)}

    if isinstance(plan.auth, KubernetesAuth) and plan.service_account is not None:
        auth_config["service-account-token"] = plan.platform.join(
            plan.service_account.mount_path, plan.service_account.token_path
        )
    elif isinstance(plan.auth, LdapAuth):
        auth_config["username"] = plan.config_file(USERNAME_FILE_NAME)
        auth_config["password"] = plan.config_file(PASSWORD_FILE_NAME)

    return {"type": plan.auth.type.agent_type, "config": auth_config}


def _template_section(plan: InjectionPlan) -> list[dict[str, Any]]:
    templates = []
    for template in plan.config.templates:
        item: dict[str, Any] = {"destination-path": template.destination_path}
        if template.source_path:
            item["source-path"] = template.source_path
        if template.template_content:
            item["template-content"] = template.template_content
        if template.base64_template_content:
            item["base64-template-content"] = template.base64_template_content
        if template.polling_interval:
            item["config"] = {"polling-interval": template.polling_interval}
        templates.append(item)
    return templates


def agent_config_document(plan: InjectionPlan, *, exit_after_auth: bool) -> dict[str, Any]:
    """Build the agent config a container hands to the agent binary.

    Secrets never appear in the document; it only points at the files the
    bootstrap script writes.

    Args:
        plan: The injection plan.
        exit_after_auth: True for the init container, which must exit once
            the templates are rendered.

    Returns:
        The agent config as a plain mapping.

    """
    infisical: dict[str, Any] = {
        "address": plan.config.address,
        "exit-after-auth": exit_after_auth,
    }
    if not exit_after_auth:
        infisical["revoke-credentials-on-shutdown"] = plan.revoke_on_shutdown

    retry = plan.config.retry_strategy
    if retry is not None:
        strategy: dict[str, Any] = {}
        if retry.max_retries is not None:
            strategy["max-retries"] = retry.max_retries
        if retry.base_delay:
            strategy["base-delay"] = retry.base_delay
        if retry.max_delay:
            strategy["max-delay"] = retry.max_delay
        if strategy:
            infisical["retry-strategy"] = strategy

    document: dict[str, Any] = {
        "infisical": infisical,
        "auth": _auth_section(plan),
        "sinks": [{"type": "file", "config": {"path": plan.access_token_path}}],
        "templates": _template_section(plan),
    }

    cache = plan.config.cache
    if cache is not None:
        document["cache"] = {
            "persistent": {
                "type": cache.type,
                "service-account-token-path": cache.service_account_token_path,
                "path": cache.path,
            }
        }

    return document


def render_agent_config(plan: InjectionPlan, *, exit_after_auth: bool) -> str:
    """Serialize the agent config of a container to YAML."""
    return yaml.safe_dump(
        agent_config_document(plan, exit_after_auth=exit_after_auth),
        sort_keys=False,
        default_flow_style=False,
    )


def _heredoc_delimiter(base: str, content: str) -> str:
    lines = set(content.splitlines())
    delimiter, suffix = base, 0
    while delimiter in lines:
        suffix += 1
        delimiter = f"{base}_{suffix}"
    return delimiter


def _heredoc(path: str, content: str, base_delimiter: str) -> list[str]:
    delimiter = _heredoc_delimiter(base_delimiter, content)
    return [
        f"cat > {shlex.quote(path)} << '{delimiter}'",
        content.rstrip("\n"),
        delimiter,
    ]


def render_linux_script(plan: InjectionPlan, *, init: bool) -> str:
    """Render the POSIX shell bootstrap script of an agent container.

    The script writes the agent config and the credential files, locks the
    credential files down and runs the agent. Credentials go through quoted
    heredocs so they never show up in argument lists or shell traces. Only
    the subshell writing them runs under a restrictive umask; the agent keeps
    the container default so the workload can read the secrets it renders.

    The init variant bounds the agent with a wall-clock timeout and treats
    exit code 124 as that timeout expiring, so an agent exiting 124 on its
    own is reported as timed out too. The sidecar variant execs the agent so
    its exit ends the container.

    Args:
        plan: The injection plan.
        init: Render the init container variant.

    Returns:
        The script text.

    """
    config_file = plan.config_file(AGENT_CONFIG_FILE_NAME)
    files = auth_files(plan)

    script = [
        "#!/bin/sh",
        "set -e",
        "",
        f"mkdir -p {shlex.quote(plan.config_dir)}",
        "",
        "# Write agent config",
        *_heredoc(config_file, render_agent_config(plan, exit_after_auth=init), _CONFIG_DELIMITER),
        "",
        "# Write auth credentials",
        "(",
        "umask 077",
    ]
    for auth_file in files:
        script.extend(_heredoc(auth_file.path, auth_file.value, _SECRET_DELIMITER))
    script.append(")")
    script.append("chmod 600 " + " ".join(shlex.quote(auth_file.path) for auth_file in files))

    script.extend(["", 'echo "Starting infisical agent..."'])

    if not init:
        script.append(f"exec infisical agent --config {shlex.quote(config_file)}")
        return "\n".join(script) + "\n"

    script.extend(
        [
            "status=0",
            f"timeout {INIT_TIMEOUT_SECONDS} infisical agent --config {shlex.quote(config_file)} || status=$?",
            f'if [ "$status" -eq {_TIMEOUT_EXIT_CODE} ]; then',
            f'    echo "Infisical agent did not finish within {INIT_TIMEOUT_SECONDS} seconds" >&2',
            "    exit 1",
            "fi",
            'if [ "$status" -ne 0 ]; then',
            '    echo "Infisical agent failed with exit code $status" >&2',
            '    exit "$status"',
            "fi",
        ]
    )
    return "\n".join(script) + "\n"


def powershell_quote(value: str) -> str:
    """Quote a value as a PowerShell double-quoted string.

    Backticks, double quotes and dollar signs are escaped with a backtick.

    Args:
        value: The raw value.

    Returns:
        The quoted string.

    """
    escaped = value.replace("`", "``").replace('"', '`"').replace("$", "`$")
    return f'"{escaped}"'


def _here_string(variable: str, content: str) -> list[str]:
    # a single-quoted here-string ends at the first line starting with '@
    if any(line.startswith("'@") for line in content.splitlines()):
        raise InjectionValidationError(f"value written to ${variable} cannot contain a line starting with '@")
    return [f"${variable} = @'", content.rstrip("\n"), "'@"]


def render_windows_script(plan: InjectionPlan, *, init: bool) -> str:
    """Render the PowerShell bootstrap script of an agent container.

    Behaves like `render_linux_script`: credentials pass through literal
    here-strings, and the init variant waits on the agent process with a
    timeout, killing it and failing when the timeout expires.

    Args:
        plan: The injection plan.
        init: Render the init container variant.

    Returns:
        The script text.

    """
    config_file = powershell_quote(plan.config_file(AGENT_CONFIG_FILE_NAME))

    script = [
        "$ErrorActionPreference = 'Stop'",
        "",
        f"New-Item -ItemType Directory -Force -Path {powershell_quote(plan.config_dir)} | Out-Null",
        "",
        "# Write agent config",
        *_here_string("agentConfig", render_agent_config(plan, exit_after_auth=init)),
        f"[System.IO.File]::WriteAllText({config_file}, $agentConfig)",
        "",
        "# Write auth credentials",
    ]
    for index, auth_file in enumerate(auth_files(plan)):
        variable = f"credential{index}"
        path = powershell_quote(auth_file.path)
        script.extend(_here_string(variable, auth_file.value))
        script.append(f"[System.IO.File]::WriteAllText({path}, ${variable})")
        script.append(f'icacls {path} /inheritance:r /grant:r "$($env:USERNAME):(R,W)" | Out-Null')

    script.extend(["", 'Write-Host "Starting infisical agent..."'])

    if not init:
        script.extend([f"& infisical agent --config {config_file}", "exit $LASTEXITCODE"])
        return "\n".join(script) + "\n"

    quoted_config_arg = powershell_quote(f'"{plan.config_file(AGENT_CONFIG_FILE_NAME)}"')
    script.extend(
        [
            f'$agent = Start-Process -FilePath "infisical" -ArgumentList @("agent", "--config", {quoted_config_arg}) '
            "-NoNewWindow -PassThru",
            # reading the handle keeps ExitCode available after the process ends
            "$null = $agent.Handle",
            f"if (-not $agent.WaitForExit({INIT_TIMEOUT_SECONDS * 1000})) {{",
            "    Stop-Process -Id $agent.Id -Force",
            f'    Write-Host "Infisical agent did not finish within {INIT_TIMEOUT_SECONDS} seconds"',
            "    exit 1",
            "}",
            "if ($agent.ExitCode -ne 0) {",
            '    Write-Host "Infisical agent failed with exit code $($agent.ExitCode)"',
            "    exit $agent.ExitCode",
            "}",
            "exit 0",
        ]
    )
    return "\n".join(script) + "\n"


_RENDERERS = {
    Platform.LINUX: render_linux_script,
    Platform.WINDOWS: render_windows_script,
}


def render_script(plan: InjectionPlan, *, init: bool) -> str:
    """Render the bootstrap script for the plan's platform."""
    return _RENDERERS[plan.platform](plan, init=init)


def agent_container_mounts(plan: InjectionPlan) -> list[dict[str, Any]]:
    """Return the mounts of an injected agent container."""
    desired = [plan.work_dir_mount()]
    if plan.service_account is not None:
        desired.append(
            {
                "name": plan.service_account.name,
                "mountPath": plan.service_account.mount_path,
                "readOnly": True,
            }
        )
    desired.extend(plan.secret_mounts())
    return select_new_mounts([], desired)


def _container(plan: InjectionPlan, name: str, *, init: bool) -> dict[str, Any]:
    return {
        "name": name,
        "image": plan.platform.image,
        "command": plan.platform.entrypoint,
        "args": [render_script(plan, init=init)],
        "env": [
            {"name": plan.platform.home_env, "value": plan.platform.work_dir},
            {"name": "INFISICAL_DISABLE_UPDATE_CHECK", "value": "true"},
        ],
        "resources": resource_profile(plan.platform, plan.annotations).to_dict(),
        "volumeMounts": agent_container_mounts(plan),
    }


def build_init_container(plan: InjectionPlan) -> dict[str, Any]:
    """Return the init container that renders the secrets and exits."""
    return _container(plan, INIT_CONTAINER_NAME, init=True)


def build_sidecar_container(plan: InjectionPlan) -> dict[str, Any]:
    """Return the sidecar container that keeps the secrets up to date."""
    return _container(plan, SIDECAR_CONTAINER_NAME, init=False)


def build_containers(plan: InjectionPlan) -> AgentContainers:
    """Return the containers the plan's inject mode calls for."""
    return AgentContainers(
        init=build_init_container(plan) if plan.mode.has_init else None,
        sidecar=build_sidecar_container(plan) if plan.mode.has_sidecar else None,
    )
