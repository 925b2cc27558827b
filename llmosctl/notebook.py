"""Construction of the workloads and status of notebooks."""

from __future__ import annotations

import copy
import logging
import os
from collections.abc import Mapping
from typing import Any

from llmosctl.store import controller_ref

log = logging.getLogger(__name__)

NAME_PREFIX = "notebook-"
DEFAULT_FS_GROUP = 100
DEFAULT_CONTAINER_PORT = 8888
DEFAULT_SERVING_PORT = 80

LABEL_LLMOS_ML_APP_NAME = "ml.llmos.ai/app-name"
LABEL_NOTEBOOK_NAME = "ml.llmos.ai/notebook-name"
ANNOTATION_RESOURCE_STOPPED = "llmos.ai/resource-stopped"


def _meta(obj: Mapping[str, Any]) -> dict[str, Any]:
    return obj.get("metadata") or {}


def _spec(obj: Mapping[str, Any]) -> dict[str, Any]:
    return obj.get("spec") or {}


def get_notebook_selector(notebook: Mapping[str, Any]) -> dict[str, Any]:
    """Label selector of a notebook's pods."""
    app_name = notebook.get("kind", "").lower()
    name = _meta(notebook).get("name", "")
    selector = _spec(notebook).get("selector")
    if selector is not None:
        result = copy.deepcopy(dict(selector))
        labels = result.get("matchLabels") or {}
        labels[LABEL_LLMOS_ML_APP_NAME] = app_name
        labels[LABEL_NOTEBOOK_NAME] = name
        result["matchLabels"] = labels
        return result
    return {"matchLabels": {LABEL_LLMOS_ML_APP_NAME: app_name, LABEL_NOTEBOOK_NAME: name}}


def formatted_notebook_name(notebook: Mapping[str, Any]) -> str:
    return f"{NAME_PREFIX}{_meta(notebook).get('name', '')}"


def construct_notebook_stateful_set(notebook: Mapping[str, Any]) -> dict[str, Any]:
    """The stateful set that runs a notebook."""
    meta = _meta(notebook)
    spec = _spec(notebook)
    replicas = spec.get("replicas", 0)
    if ANNOTATION_RESOURCE_STOPPED in (meta.get("annotations") or {}):
        replicas = 0

    match_labels = get_notebook_selector(notebook)["matchLabels"]
    pod_labels = dict(match_labels)
    pod_labels.update(meta.get("labels") or {})
    pod_annotations = {
        key: value for key, value in (meta.get("annotations") or {}).items()
        if "kubectl" not in key and "notebook" not in key
    }

    pod_spec = copy.deepcopy((spec.get("template") or {}).get("spec") or {})
    containers = pod_spec.get("containers") or []
    if not containers:
        raise ValueError(f"notebook {meta.get('name', '')} has no containers")
    container = containers[0]
    container["name"] = meta.get("name", "")
    if not container.get("workingDir"):
        container["workingDir"] = "/home/jovyan"
    if container.get("ports") is None:
        container["ports"] = [{
            "containerPort": DEFAULT_CONTAINER_PORT,
            "name": "notebook-port",
            "protocol": "TCP",
        }]

    add_fs_group = os.environ.get("ADD_FSGROUP")
    if (add_fs_group is None or add_fs_group == "true") and pod_spec.get("securityContext") is None:
        pod_spec["securityContext"] = {"fsGroup": DEFAULT_FS_GROUP}

    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": {
            "name": formatted_notebook_name(notebook),
            "namespace": meta.get("namespace", ""),
            "ownerReferences": [controller_ref(notebook)],
            "labels": dict(match_labels),
        },
        "spec": {
            "replicas": replicas,
            "selector": {"matchLabels": dict(match_labels)},
            "template": {
                "metadata": {"labels": pod_labels, "annotations": pod_annotations},
                "spec": pod_spec,
            },
            "volumeClaimTemplates": copy.deepcopy(list(spec.get("volumeClaimTemplates") or [])),
        },
    }


def construct_notebook_service(notebook: Mapping[str, Any]) -> dict[str, Any]:
    """The service that exposes a notebook on port 80."""
    meta = _meta(notebook)
    spec = _spec(notebook)
    svc_type = spec.get("serviceType") or "ClusterIP"
    match_labels = get_notebook_selector(notebook)["matchLabels"]

    containers = (spec.get("template") or {}).get("spec", {}).get("containers") or []
    ports = containers[0].get("ports") if containers else None
    port = ports[0].get("containerPort") if ports else DEFAULT_CONTAINER_PORT

    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": formatted_notebook_name(notebook),
            "namespace": meta.get("namespace", ""),
            "ownerReferences": [controller_ref(notebook)],
            "labels": dict(match_labels),
        },
        "spec": {
            "type": svc_type,
            "selector": dict(match_labels),
            "ports": [{
                "name": "http",
                "port": DEFAULT_SERVING_PORT,
                "targetPort": port,
                "protocol": "TCP",
            }],
        },
    }


def construct_notebook_status(ss: Mapping[str, Any], pod: Mapping[str, Any]) -> dict[str, Any]:
    """Notebook status mirrored from its stateful set and first pod."""
    status: dict[str, Any] = {
        "conditions": [],
        "readyReplicas": (ss.get("status") or {}).get("readyReplicas", 0),
        "containerState": {},
        "state": "",
    }
    pod_status = pod.get("status") or {}
    if not any(pod_status.values()):
        log.info("notebook pod status is empty, skip updating conditions and state")
        return status

    container_statuses = pod_status.get("containerStatuses") or []
    if container_statuses:
        state = copy.deepcopy(container_statuses[0].get("state") or {})
        status["containerState"] = state
        if state.get("running") is not None:
            status["state"] = "Running"
        elif state.get("waiting") is not None:
            status["state"] = "Waiting"
        elif state.get("terminated") is not None:
            status["state"] = "Terminated"
        else:
            status["state"] = "Unknown"

    status["conditions"] = [
        {
            "type": c.get("type", ""),
            "status": c.get("status", ""),
            "reason": c.get("reason", ""),
            "message": c.get("message", ""),
            "lastTransitionTime": c.get("lastTransitionTime"),
        }
        for c in pod_status.get("conditions") or []
    ]
    return status


def related_stateful_set_keys(pod: Any) -> list[tuple[str, str]]:
    """(namespace, name) of the notebook stateful set that owns a pod."""
    if not isinstance(pod, Mapping) or pod.get("kind", "Pod") != "Pod":
        return []
    meta = _meta(pod)
    for ref in meta.get("ownerReferences") or []:
        if ref.get("kind") == "StatefulSet" and NAME_PREFIX in ref.get("name", ""):
            log.debug("reconcile notebook by: %s/%s", meta.get("namespace"), ref.get("name"))
            return [(meta.get("namespace", ""), ref["name"])]
    return []