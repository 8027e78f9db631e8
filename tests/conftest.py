"""Shared test fixtures for infisical-agent-injector tests."""

import copy
import json
from unittest.mock import MagicMock

import pytest

from infisical_agent_injector.config import parse_agent_config
from infisical_agent_injector.constants import AGENT_CONFIG_MAP_ANNOTATION, INJECT_ANNOTATION

SERVICE_ACCOUNT_MOUNT_PATH = "/var/run/secrets/kubernetes.io/serviceaccount"

KUBERNETES_AUTH_CONFIG = """
infisical:
  address: https://infisical.example.com
  auth:
    type: kubernetes
    config:
      identity-id: 4f1c2a3b-identity
templates:
  - destination-path: /shared/secrets/app.env
    template-content: |
      {{- with secret "6553ccb2" "dev" "/" }}
      {{- range . }}
      {{ .Key }}={{ .Value }}
      {{- end }}
      {{- end }}
"""

LDAP_AUTH_CONFIG = """
infisical:
  auth:
    type: ldap
    config:
      identity-id: ldap-identity
      username: jane
      password: s3cr3t
templates:
  - template-content: "{{ .Key }}"
  - template-content: "{{ .Value }}"
"""


@pytest.fixture
def kubernetes_config_yaml():
    """Agent config document using Kubernetes auth and one template."""
    return KUBERNETES_AUTH_CONFIG


@pytest.fixture
def ldap_config_yaml():
    """Agent config document using LDAP auth and two templates without destinations."""
    return LDAP_AUTH_CONFIG


@pytest.fixture
def kubernetes_config(kubernetes_config_yaml):
    """Parsed Kubernetes auth agent config."""
    return parse_agent_config(kubernetes_config_yaml)


@pytest.fixture
def ldap_config(ldap_config_yaml):
    """Parsed LDAP auth agent config."""
    return parse_agent_config(ldap_config_yaml)


@pytest.fixture
def make_pod():
    """Factory building pod objects as found in admission requests."""

    def _make_pod(
        annotations=None,
        containers=None,
        init_containers=None,
        volumes=None,
        namespace="default",
        **spec,
    ):
        pod_annotations = {
            INJECT_ANNOTATION: "true",
            AGENT_CONFIG_MAP_ANNOTATION: "agent-config",
        }
        if annotations is not None:
            pod_annotations.update(annotations)

        if containers is None:
            containers = [
                {
                    "name": "app",
                    "image": "nginx:1.27",
                    "volumeMounts": [
                        {
                            "name": "kube-api-access-x7k2p",
                            "mountPath": SERVICE_ACCOUNT_MOUNT_PATH,
                            "readOnly": True,
                        }
                    ],
                }
            ]

        pod_spec = {"containers": copy.deepcopy(containers), **spec}
        if init_containers is not None:
            pod_spec["initContainers"] = copy.deepcopy(init_containers)
        if volumes is not None:
            pod_spec["volumes"] = copy.deepcopy(volumes)

        return {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {"name": "web", "namespace": namespace, "annotations": pod_annotations},
            "spec": pod_spec,
        }

    return _make_pod


@pytest.fixture
def service_account_volume():
    """Projected service account token volume as added by the API server."""
    return {
        "name": "kube-api-access-x7k2p",
        "projected": {"sources": [{"serviceAccountToken": {"path": "token", "expirationSeconds": 3607}}]},
    }


@pytest.fixture
def mock_cluster(kubernetes_config_yaml):
    """Mock Cluster whose ConfigMap reads return the Kubernetes auth config."""
    cluster = MagicMock()
    cluster.read_config_map.return_value = {"config.yaml": kubernetes_config_yaml}
    return cluster


@pytest.fixture
def admission_body():
    """Factory encoding an AdmissionReview request around a pod."""

    def _admission_body(pod, api_version="admission.k8s.io/v1", namespace=None):
        review = {
            "apiVersion": api_version,
            "kind": "AdmissionReview",
            "request": {
                "uid": "705ab4f5-6393-11e8-b7cc-42010a800002",
                "kind": {"group": "", "version": "v1", "kind": "Pod"},
                "operation": "CREATE",
                "namespace": namespace or pod["metadata"].get("namespace", "default"),
                "object": pod,
            },
        }
        return json.dumps(review).encode("utf-8")

    return _admission_body
