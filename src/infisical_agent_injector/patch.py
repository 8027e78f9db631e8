"""JSON Patch generation for pod mutation.

This module turns an injection plan into an RFC6902 patch against the
pod as it was submitted. Every helper returns an immutable fragment
(a tuple of operations) and `build_pod_patch` concatenates them. Items
already present in the pod are never added again, so admitting an
already-injected pod yields no operations.
"""

import json
import logging
from typing import TYPE_CHECKING, Any

from infisical_agent_injector.constants import (
    AGENT_CONTAINER_NAMES,
    INIT_CONTAINER_NAME,
    SIDECAR_CONTAINER_NAME,
)
from infisical_agent_injector.planner import InjectionPlan

if TYPE_CHECKING:
    from infisical_agent_injector.scripts import AgentContainers

log = logging.getLogger(__name__)

Operation = dict[str, Any]
Patch = tuple[Operation, ...]

ANNOTATIONS_PATH = "/metadata/annotations"
VOLUMES_PATH = "/spec/volumes"
CONTAINERS_PATH = "/spec/containers"
INIT_CONTAINERS_PATH = "/spec/initContainers"


def escape_json_pointer(token: str) -> str:
    """Escape a JSON Pointer reference token (``~`` -> ``~0``, ``/`` -> ``~1``)."""
    return token.replace("~", "~0").replace("/", "~1")


def unescape_json_pointer(token: str) -> str:
    """Reverse `escape_json_pointer`."""
    return token.replace("~1", "/").replace("~0", "~")


def add_op(path: str, value: Any) -> Operation:
    """Return an ``add`` operation."""
    return {"op": "add", "path": path, "value": value}


def remove_op(path: str) -> Operation:
    """Return a ``remove`` operation."""
    return {"op": "remove", "path": path}


def add_items(existing: list[Any], new_items: list[Any], base_path: str) -> Patch:
    """Add items to the array at ``base_path``.

    An empty (or absent) target array is created in one ``add`` holding all
    new items; otherwise each item is appended with ``<base_path>/-`` in
    order.

    Args:
        existing: Current content of the target array.
        new_items: Items to add.
        base_path: JSON Pointer of the target array.

    Returns:
        The operations, empty if there is nothing to add.

    """
    if not new_items:
        return ()
    if not existing:
        return (add_op(base_path, list(new_items)),)
    return tuple(add_op(f"{base_path}/-", item) for item in new_items)


def select_new_mounts(existing: list[dict[str, Any]], desired: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Return the desired mounts whose path is not mounted yet.

    A mount is skipped when the container already has a mount at that path
    or an earlier desired mount claims it.

    Args:
        existing: The container's current mounts.
        desired: Mounts to add, in order.

    Returns:
        The mounts to add.

    """
    taken = {mount.get("mountPath") for mount in existing}
    selected: list[dict[str, Any]] = []
    for mount in desired:
        if mount["mountPath"] in taken:
            log.info("volume mount %s already exists at %s. skipping creation.", mount["name"], mount["mountPath"])
            continue
        taken.add(mount["mountPath"])
        selected.append(mount)
    return selected


def workload_mount_ops(containers: list[dict[str, Any]], plan: InjectionPlan, base_path: str) -> Patch:
    """Mount the work dir and secret volumes into workload containers.

    The agent's own containers are left alone.

    Args:
        containers: The container array as it will look when the operations
            apply.
        plan: The injection plan.
        base_path: JSON Pointer of the container array.

    Returns:
        The operations.

    """
    ops: Patch = ()
    for index, container in enumerate(containers):
        if container.get("name") in AGENT_CONTAINER_NAMES:
            continue
        existing = container.get("volumeMounts") or []
        ops += add_items(
            existing,
            select_new_mounts(existing, plan.workload_mounts()),
            f"{base_path}/{index}/volumeMounts",
        )
    return ops


def volume_ops(existing: list[dict[str, Any]], plan: InjectionPlan) -> Patch:
    """Add the plan's volumes that the pod does not have yet."""
    names = {volume.get("name") for volume in existing}
    new_volumes = [volume for volume in plan.volumes() if volume["name"] not in names]
    return add_items(existing, new_volumes, VOLUMES_PATH)


def init_container_ops(
    existing: list[dict[str, Any]],
    init_container: dict[str, Any],
    plan: InjectionPlan,
) -> Patch:
    """Place the agent init container first in the init container list.

    Existing init containers are removed and re-added behind the agent,
    keeping their order, then receive the secret mounts.

    Args:
        existing: The pod's current init containers.
        init_container: The agent init container.
        plan: The injection plan.

    Returns:
        The operations.

    """
    if any(container.get("name") == INIT_CONTAINER_NAME for container in existing):
        log.info("init container %s already present. skipping creation.", INIT_CONTAINER_NAME)
        return workload_mount_ops(existing, plan, INIT_CONTAINERS_PATH)

    ops: Patch = ()
    if existing:
        ops += (remove_op(INIT_CONTAINERS_PATH),)

    containers = [init_container, *existing]
    ops += add_items([], containers, INIT_CONTAINERS_PATH)
    ops += workload_mount_ops(containers, plan, INIT_CONTAINERS_PATH)
    return ops


def sidecar_container_ops(existing: list[dict[str, Any]], sidecar: dict[str, Any]) -> Patch:
    """Append the agent sidecar to the pod's containers."""
    if any(container.get("name") == SIDECAR_CONTAINER_NAME for container in existing):
        log.info("sidecar container %s already present. skipping creation.", SIDECAR_CONTAINER_NAME)
        return ()
    return add_items(existing, [sidecar], CONTAINERS_PATH)


def annotation_ops(existing: dict[str, str], annotations: dict[str, str]) -> Patch:
    """Set annotations on the pod.

    A pod without annotations gets the whole map in one operation;
    otherwise each key is added on its own, escaped for JSON Pointer.
    Keys already holding the wanted value are left out.

    Args:
        existing: The pod's current annotations.
        annotations: Annotations to set.

    Returns:
        The operations.

    """
    changed = {key: value for key, value in annotations.items() if existing.get(key) != value}
    if not changed:
        return ()
    if not existing:
        return (add_op(ANNOTATIONS_PATH, changed),)
    return tuple(add_op(f"{ANNOTATIONS_PATH}/{escape_json_pointer(key)}", value) for key, value in changed.items())


def pod_patch_operations(pod: dict[str, Any], plan: InjectionPlan, containers: "AgentContainers") -> Patch:
    """Return every operation needed to inject the agent into the pod.

    Args:
        pod: The pod as submitted.
        plan: The injection plan.
        containers: The agent containers to add.

    Returns:
        The operations in application order.

    """
    spec = pod.get("spec") or {}
    pod_containers = spec.get("containers") or []

    ops = workload_mount_ops(pod_containers, plan, CONTAINERS_PATH)
    ops += volume_ops(spec.get("volumes") or [], plan)

    if containers.init is not None:
        ops += init_container_ops(spec.get("initContainers") or [], containers.init, plan)
    if containers.sidecar is not None:
        ops += sidecar_container_ops(pod_containers, containers.sidecar)

    ops += annotation_ops(plan.annotations, plan.status_annotations())
    return ops


def build_pod_patch(pod: dict[str, Any], plan: InjectionPlan, containers: "AgentContainers") -> bytes | None:
    """Serialize the injection patch for the pod.

    Args:
        pod: The pod as submitted.
        plan: The injection plan.
        containers: The agent containers to add.

    Returns:
        The JSON Patch document, or None if nothing has to change.

    """
    ops = pod_patch_operations(pod, plan, containers)
    if not ops:
        return None
    return json.dumps(list(ops)).encode("utf-8")
