"""Tests for platform.py module."""

import pytest

from infisical_agent_injector.constants import LINUX_CONTAINER_IMAGE, WINDOWS_CONTAINER_IMAGE
from infisical_agent_injector.exceptions import InjectionValidationError
from infisical_agent_injector.platform import Platform, detect_platform, pinned_architecture


class TestDetectPlatform:
    """Tests for pod platform classification."""

    def test_defaults_to_linux(self, make_pod):
        """Test a pod without any OS hint is Linux."""
        assert detect_platform(make_pod()) is Platform.LINUX

    def test_explicit_os_field(self, make_pod):
        """Test spec.os.name marks a Windows pod."""
        pod = make_pod(os={"name": "windows"})
        assert detect_platform(pod) is Platform.WINDOWS

    def test_node_selector_alone(self, make_pod):
        """Test a kubernetes.io/os node selector is enough on its own."""
        pod = make_pod(nodeSelector={"kubernetes.io/os": "windows"})
        assert detect_platform(pod) is Platform.WINDOWS

    def test_linux_node_selector(self, make_pod):
        """Test a Linux node selector keeps the pod on Linux."""
        pod = make_pod(nodeSelector={"kubernetes.io/os": "linux"})
        assert detect_platform(pod) is Platform.LINUX

    def test_required_node_affinity(self, make_pod):
        """Test a required node affinity term selecting Windows nodes."""
        pod = make_pod(
            affinity={
                "nodeAffinity": {
                    "requiredDuringSchedulingIgnoredDuringExecution": {
                        "nodeSelectorTerms": [
                            {
                                "matchExpressions": [
                                    {"key": "kubernetes.io/os", "operator": "In", "values": ["windows"]}
                                ]
                            }
                        ]
                    }
                }
            }
        )
        assert detect_platform(pod) is Platform.WINDOWS

    def test_preferred_node_affinity_is_ignored(self, make_pod):
        """Test preferred scheduling terms do not change the platform."""
        pod = make_pod(
            affinity={
                "nodeAffinity": {
                    "preferredDuringSchedulingIgnoredDuringExecution": [
                        {
                            "weight": 1,
                            "preference": {
                                "matchExpressions": [
                                    {"key": "kubernetes.io/os", "operator": "In", "values": ["windows"]}
                                ]
                            },
                        }
                    ]
                }
            }
        )
        assert detect_platform(pod) is Platform.LINUX

    def test_pinned_architecture(self, make_pod):
        """Test reading the architecture node selector."""
        assert pinned_architecture(make_pod(nodeSelector={"kubernetes.io/arch": "arm64"})) == "arm64"
        assert pinned_architecture(make_pod()) is None


class TestPlatformConventions:
    """Tests for per-platform values."""

    def test_linux_values(self):
        """Test Linux conventions."""
        assert Platform.LINUX.image == LINUX_CONTAINER_IMAGE
        assert Platform.LINUX.separator == "/"
        assert Platform.LINUX.entrypoint == ["/bin/sh", "-c"]
        assert Platform.LINUX.home_env == "HOME"

    def test_windows_values(self):
        """Test Windows conventions."""
        assert Platform.WINDOWS.image == WINDOWS_CONTAINER_IMAGE
        assert Platform.WINDOWS.separator == "\\"
        assert Platform.WINDOWS.entrypoint[0] == "powershell.exe"
        assert Platform.WINDOWS.home_env == "USERPROFILE"

    def test_default_resources(self):
        """Test Windows containers get more memory than Linux ones."""
        linux = Platform.LINUX.default_resources().to_dict()
        windows = Platform.WINDOWS.default_resources().to_dict()

        assert linux == {
            "limits": {"cpu": "500m", "memory": "128Mi"},
            "requests": {"cpu": "100m", "memory": "64Mi"},
        }
        assert windows["limits"]["memory"] == "512Mi"
        assert windows["requests"]["memory"] == "256Mi"


class TestValidateDestinationPath:
    """Tests for template destination validation."""

    @pytest.mark.parametrize("path", ["/shared/infisical-secrets", "/shared/secrets/app.env"])
    def test_linux_accepts(self, path):
        """Test nested absolute Linux paths are accepted."""
        Platform.LINUX.validate_destination_path(path)

    def test_linux_rejects_single_segment(self):
        """Test a root-level destination is rejected."""
        with pytest.raises(InjectionValidationError) as exc_info:
            Platform.LINUX.validate_destination_path("/secrets")

        assert "must be a folder" in str(exc_info.value)
        assert "/path/to/destination/secret-file" in str(exc_info.value)

    @pytest.mark.parametrize("path", ["/shared/", "//secrets", "///"])
    def test_linux_rejects_root_mount(self, path):
        """Test destinations whose parent directory would be the root are rejected."""
        with pytest.raises(InjectionValidationError, match="must be a folder"):
            Platform.LINUX.validate_destination_path(path)

    def test_linux_accepts_trailing_separator(self):
        """Test a trailing separator on a nested destination is tolerated."""
        Platform.LINUX.validate_destination_path("/shared/secrets/")

    def test_linux_rejects_relative(self):
        """Test a relative destination is rejected."""
        with pytest.raises(InjectionValidationError) as exc_info:
            Platform.LINUX.validate_destination_path("shared/secrets")

        assert "must be an absolute path" in str(exc_info.value)

    def test_rejects_empty(self):
        """Test a missing destination is rejected."""
        with pytest.raises(InjectionValidationError, match="destination path is required"):
            Platform.LINUX.validate_destination_path("")

    def test_windows_accepts(self):
        """Test a nested Windows destination is accepted."""
        Platform.WINDOWS.validate_destination_path("C:\\shared\\infisical-secrets")

    def test_windows_rejects_single_segment(self):
        """Test a drive-level Windows destination is rejected with a Windows example."""
        with pytest.raises(InjectionValidationError) as exc_info:
            Platform.WINDOWS.validate_destination_path("C:\\secrets")

        assert "must be a folder" in str(exc_info.value)
        assert "C:\\path\\to\\destination\\secret-file" in str(exc_info.value)

    @pytest.mark.parametrize("path", ["C:\\shared\\", "C:\\\\secrets", "\\\\server\\share\\secrets"])
    def test_windows_rejects_root_mount(self, path):
        """Test Windows destinations whose parent is a drive or share root are rejected."""
        with pytest.raises(InjectionValidationError, match="must be a folder"):
            Platform.WINDOWS.validate_destination_path(path)

    def test_windows_rejects_posix_path(self):
        """Test a POSIX path is not absolute on Windows."""
        with pytest.raises(InjectionValidationError, match="must be an absolute path"):
            Platform.WINDOWS.validate_destination_path("/shared/secrets")
