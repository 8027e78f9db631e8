"""Admission review handling.

This module decodes AdmissionReview requests, runs the injection
pipeline (config resolution, planning, container rendering, patch
building) and encodes the AdmissionReview response.

Every failure past decoding is answered with ``allowed: true`` and an
explanatory message: a broken agent config must not block scheduling of
the pod, it only leaves the pod without secrets.
"""

import base64
import json
import logging
import uuid
from typing import Any

from icecream import ic

from infisical_agent_injector.config import ConfigResolver
from infisical_agent_injector.constants import INJECT_ANNOTATION, PROTECTED_NAMESPACES
from infisical_agent_injector.exceptions import AdmissionProtocolError, InjectorError
from infisical_agent_injector.patch import build_pod_patch
from infisical_agent_injector.planner import plan_injection, pod_annotations
from infisical_agent_injector.scripts import build_containers

log = logging.getLogger(__name__)

ADMISSION_V1 = "admission.k8s.io/v1"
ADMISSION_V1BETA1 = "admission.k8s.io/v1beta1"
SUPPORTED_API_VERSIONS = (ADMISSION_V1, ADMISSION_V1BETA1)
ADMISSION_REVIEW_KIND = "AdmissionReview"
JSON_CONTENT_TYPE = "application/json"


def is_injectable(pod: dict[str, Any]) -> bool:
    """Report whether the pod opted in to agent injection."""
    return pod_annotations(pod).get(INJECT_ANNOTATION) == "true"


def allowed_response(uid: str, patch: bytes | None = None) -> dict[str, Any]:
    """Build an admission response allowing the pod, with an optional patch."""
    response: dict[str, Any] = {"uid": uid, "allowed": True}
    if patch:
        response["patch"] = base64.b64encode(patch).decode("utf-8")
        response["patchType"] = "JSONPatch"
    return response


def error_response(uid: str, message: str) -> dict[str, Any]:
    """Build a fail-open admission response carrying an error message."""
    return {"uid": uid, "allowed": True, "status": {"message": message}}


def _request_id() -> str:
    return uuid.uuid4().hex[:10]


class AdmissionHandler:
    """Answers AdmissionReview requests for pods.

    Attributes:
        resolver: Resolves the agent config a pod refers to.

    """

    def __init__(self, resolver: ConfigResolver) -> None:
        """Initialize the handler.

        Args:
            resolver: Resolves the agent config a pod refers to.

        """
        self.resolver = resolver

    def review(self, body: bytes, content_type: str | None) -> dict[str, Any]:
        """Answer an encoded AdmissionReview request.

        The response uses the API version and kind of the request, so both
        ``admission.k8s.io/v1`` and ``v1beta1`` callers are served.

        Args:
            body: The raw request body.
            content_type: The request's Content-Type header.

        Returns:
            The AdmissionReview response document.

        Raises:
            AdmissionProtocolError: If the request is not a decodable
                AdmissionReview.

        """
        media_type = (content_type or "").split(";", 1)[0].strip().lower()
        if media_type != JSON_CONTENT_TYPE:
            raise AdmissionProtocolError(f"Only {JSON_CONTENT_TYPE} is supported, got: {content_type!r}", 400)

        if not body:
            raise AdmissionProtocolError("No request body was sent in the request", 400)

        try:
            review = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as err:
            raise AdmissionProtocolError(f"error decoding admission request: {err}", 500) from err

        if not isinstance(review, dict):
            raise AdmissionProtocolError("error decoding admission request: expected a JSON object", 500)

        api_version = review.get("apiVersion") or ADMISSION_V1
        if api_version not in SUPPORTED_API_VERSIONS:
            raise AdmissionProtocolError(
                f"error decoding admission request: unsupported apiVersion {api_version!r}", 500
            )

        kind = review.get("kind") or ADMISSION_REVIEW_KIND
        if kind != ADMISSION_REVIEW_KIND:
            raise AdmissionProtocolError(f"error decoding admission request: unsupported kind {kind!r}", 500)

        request = review.get("request")
        if not isinstance(request, dict):
            raise AdmissionProtocolError("error decoding admission request: missing request", 500)

        return {"apiVersion": api_version, "kind": kind, "response": self.mutate(request)}

    def mutate(self, request: dict[str, Any]) -> dict[str, Any]:
        """Compute the admission response for one admission request.

        Args:
            request: The ``request`` field of an AdmissionReview.

        Returns:
            The ``response`` field of the AdmissionReview.

        """
        request_id = _request_id()
        uid = request.get("uid", "")

        pod = request.get("object")
        if not isinstance(pod, dict):
            log.warning("[request-id=%s] admission request carries no pod object", request_id)
            return error_response(uid, "admission request carries no pod object")

        metadata = pod.get("metadata") or {}
        name = metadata.get("name") or metadata.get("generateName") or ""
        namespace = metadata.get("namespace") or request.get("namespace") or ""

        log.info(
            "[request-id=%s] New create or update mutation request received for pod: %s in namespace: %s. "
            "Checking if secrets should be injected..",
            request_id,
            name,
            namespace,
        )

        if not is_injectable(pod):
            log.info("[request-id=%s] Pod %s in namespace %s is not injectable, skipping..", request_id, name, namespace)
            return allowed_response(uid)

        # refused, but the pod is still admitted like any other injection failure
        if namespace in PROTECTED_NAMESPACES:
            message = f"system namespace is not injectable: {namespace}"
            log.warning("[request-id=%s] %s", request_id, message)
            return error_response(uid, message)

        log.info("[request-id=%s] Injecting into pod: %s in namespace: %s", request_id, name, namespace)

        try:
            config = self.resolver.resolve(pod, namespace)
            plan = plan_injection(pod, config)
            ic(plan.mode, plan.platform, plan.config.templates)
            patch = build_pod_patch(pod, plan, build_containers(plan))
        except InjectorError as err:
            log.error("[request-id=%s] Error injecting into pod %s in namespace %s: %s", request_id, name, namespace, err)
            return error_response(uid, str(err))
        except Exception as err:
            log.exception("[request-id=%s] Unexpected error injecting into pod %s in namespace %s", request_id, name, namespace)
            return error_response(uid, f"internal error: {err}")

        if patch is None:
            log.info("[request-id=%s] Pod %s in namespace %s is already injected", request_id, name, namespace)
        else:
            log.info("[request-id=%s] Successfully patched pod: %s in namespace: %s", request_id, name, namespace)
        return allowed_response(uid, patch)
