"""Target platform detection and platform-specific conventions.

This module provides the Platform value object which gathers every
Linux/Windows difference of the injected containers (path rules, image,
work directory, resource defaults), and the detector that classifies a
pod from its scheduling hints.
"""

from enum import Enum
from typing import Any

from infisical_agent_injector import paths
from infisical_agent_injector.constants import (
    LINUX_CONTAINER_IMAGE,
    WINDOWS_CONTAINER_IMAGE,
)
from infisical_agent_injector.exceptions import InjectionValidationError
from infisical_agent_injector.models import ResourceProfile

OS_LABEL = "kubernetes.io/os"
ARCH_LABEL = "kubernetes.io/arch"


class Platform(str, Enum):
    """Operating system targeted by a pod."""

    LINUX = "linux"
    WINDOWS = "windows"

    @property
    def windows(self) -> bool:
        """Whether this is the Windows platform."""
        return self is Platform.WINDOWS

    @property
    def separator(self) -> str:
        """Path separator used inside the container."""
        return paths.separator(windows=self.windows)

    @property
    def image(self) -> str:
        """Agent image for the platform."""
        return WINDOWS_CONTAINER_IMAGE if self.windows else LINUX_CONTAINER_IMAGE

    @property
    def work_dir(self) -> str:
        """Mount path of the agent work directory volume."""
        return "C:\\.infisical-workdir" if self.windows else "/home/.infisical-workdir"

    @property
    def default_destination_path(self) -> str:
        """Destination path assigned to templates that do not set one."""
        return "C:\\shared\\infisical-secrets" if self.windows else "/shared/infisical-secrets"

    @property
    def example_destination_path(self) -> str:
        """Example destination path quoted in validation errors."""
        if self.windows:
            return "C:\\path\\to\\destination\\secret-file"
        return "/path/to/destination/secret-file"

    @property
    def home_env(self) -> str:
        """Environment variable naming the user's home directory."""
        return "USERPROFILE" if self.windows else "HOME"

    @property
    def entrypoint(self) -> list[str]:
        """Command that runs a bootstrap script passed as the sole argument."""
        if self.windows:
            return ["powershell.exe", "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command"]
        return ["/bin/sh", "-c"]

    def join(self, base: str, *parts: str) -> str:
        """Join path segments with the platform separator."""
        return paths.join(base, *parts, windows=self.windows)

    def dirname(self, path: str) -> str:
        """Return the parent directory of a container path."""
        return paths.dirname(path, windows=self.windows)

    def is_abs(self, path: str) -> bool:
        """Report whether a container path is absolute."""
        return paths.is_abs(path, windows=self.windows)

    def validate_destination_path(self, path: str) -> None:
        """Check that a template destination is an absolute, nested path.

        The destination must sit at least two segments deep so that its
        parent directory, which becomes a volume mount, is never the root.
        Segments are counted after dropping empty ones, so ``/shared/`` and
        ``//secrets`` are as shallow as ``/secrets``.

        Args:
            path: The template destination path.

        Raises:
            InjectionValidationError: If the path is empty, relative or too shallow.

        """
        if not path:
            raise InjectionValidationError("template destination path is required")

        if not self.is_abs(path):
            raise InjectionValidationError(
                f"template destination path must be an absolute path (e.g. {self.example_destination_path})"
            )

        mount_dir = self.dirname(path)
        if len(paths.segments(path, windows=self.windows)) < 2 or not paths.segments(mount_dir, windows=self.windows):
            raise InjectionValidationError(
                f"template destination path must be a folder (e.g. {self.example_destination_path})"
            )

    def default_resources(self) -> ResourceProfile:
        """Return the baseline resource profile of an agent container.

        Windows containers carry a noticeably larger runtime footprint and
        get four times the Linux memory limit.

        """
        if self.windows:
            memory_limit, memory_request = "512Mi", "256Mi"
        else:
            memory_limit, memory_request = "128Mi", "64Mi"

        return ResourceProfile(
            limits={"cpu": "500m", "memory": memory_limit},
            requests={"cpu": "100m", "memory": memory_request},
        )


def _requires_windows(term: dict[str, Any]) -> bool:
    for expression in term.get("matchExpressions") or []:
        if (
            expression.get("key") == OS_LABEL
            and expression.get("operator") == "In"
            and Platform.WINDOWS.value in (expression.get("values") or [])
        ):
            return True
    return False


def detect_platform(pod: dict[str, Any]) -> Platform:
    """Classify a pod as Linux- or Windows-targeted.

    Any one of three signals marks a pod as Windows: the explicit
    ``spec.os.name`` field, a ``kubernetes.io/os`` node selector, or a
    required node affinity term matching ``kubernetes.io/os In [windows]``.

    Args:
        pod: The pod object from the admission request.

    Returns:
        The detected platform, Linux when no signal is present.

    """
    spec = pod.get("spec") or {}

    if (spec.get("os") or {}).get("name") == Platform.WINDOWS.value:
        return Platform.WINDOWS

    if (spec.get("nodeSelector") or {}).get(OS_LABEL) == Platform.WINDOWS.value:
        return Platform.WINDOWS

    required = (
        ((spec.get("affinity") or {}).get("nodeAffinity") or {}).get(
            "requiredDuringSchedulingIgnoredDuringExecution"
        )
        or {}
    )
    if any(_requires_windows(term) for term in required.get("nodeSelectorTerms") or []):
        return Platform.WINDOWS

    return Platform.LINUX


def pinned_architecture(pod: dict[str, Any]) -> str | None:
    """Return the CPU architecture a pod's node selector pins, if any."""
    return ((pod.get("spec") or {}).get("nodeSelector") or {}).get(ARCH_LABEL)
