"""Construction of the workloads and status of model services."""

from __future__ import annotations

import copy
import logging
import math
import re
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from llmosctl.store import controller_ref

log = logging.getLogger(__name__)

MS_PREFIX = "modelservice"
TYPE_NAME = "model-service"
VLLM_ENGINE_NAME = "vllm"
MODEL_SCOPE_NAME = "modelscope"
VGPU_NUMBER = "volcano.sh/vgpu-number"

LABEL_LLMOS_ML_TYPE = "ml.llmos.ai/ml-type"
LABEL_MODEL_SERVICE_NAME = "ml.llmos.ai/model-service-name"
LABEL_MODEL_SERVICE_SERVE_ENGINE = "ml.llmos.ai/serve-engine"
ANNOTATION_RESOURCE_STOPPED = "llmos.ai/resource-stopped"

_QUANTITY = re.compile(r"^([+-]?[0-9.]+)([eE][+-]?[0-9]+|[a-zA-Z]*)$")
_SUFFIXES = {
    "": Decimal(1),
    "n": Decimal("1e-9"),
    "u": Decimal("1e-6"),
    "m": Decimal("1e-3"),
    "k": Decimal("1e3"),
    "M": Decimal("1e6"),
    "G": Decimal("1e9"),
    "T": Decimal("1e12"),
    "P": Decimal("1e15"),
    "E": Decimal("1e18"),
    "Ki": Decimal(2**10),
    "Mi": Decimal(2**20),
    "Gi": Decimal(2**30),
    "Ti": Decimal(2**40),
    "Pi": Decimal(2**50),
    "Ei": Decimal(2**60),
}


def _meta(obj: Mapping[str, Any]) -> dict[str, Any]:
    return obj.get("metadata") or {}


def _spec(obj: Mapping[str, Any]) -> dict[str, Any]:
    return obj.get("spec") or {}


def _pod_spec(ms: Mapping[str, Any]) -> dict[str, Any]:
    return (_spec(ms).get("template") or {}).get("spec") or {}


def _containers(ms: Mapping[str, Any]) -> list[dict[str, Any]]:
    return _pod_spec(ms).get("containers") or []


def _quantity_value(quantity: Any) -> int:
    """Integer value of a resource quantity, rounded up."""
    if isinstance(quantity, (int, float)):
        return math.ceil(quantity)
    match = _QUANTITY.match(str(quantity).strip())
    if match is None:
        raise ValueError(f"invalid quantity {quantity!r}")
    number, suffix = match.groups()
    if suffix[:1] in ("e", "E") and len(suffix) > 1:
        value = Decimal(number) * (Decimal(10) ** int(suffix[1:]))
    elif suffix in _SUFFIXES:
        value = Decimal(number) * _SUFFIXES[suffix]
    else:
        raise ValueError(f"invalid quantity suffix in {quantity!r}")
    return int(value.to_integral_value(rounding="ROUND_CEILING"))


def get_vgpu_number(ms: Mapping[str, Any] | None) -> int:
    """Number of vGPUs the first container asks for, or 0."""
    if ms is None:
        return 0
    containers = _containers(ms)
    if not containers:
        return 0
    limits = (containers[0].get("resources") or {}).get("limits") or {}
    if VGPU_NUMBER in limits:
        return _quantity_value(limits[VGPU_NUMBER])
    return 0


def build_args(ms: Mapping[str, Any]) -> list[str]:
    """Container args with the model, served name and tensor-parallel size applied."""
    containers = _containers(ms)
    args = list(containers[0].get("args") or []) if containers else []

    spec = _spec(ms)
    spec_args = {
        "--model": spec.get("modelName", ""),
        "--served-model-name": spec.get("servedModelName", ""),
    }
    vgpus = get_vgpu_number(ms)
    if vgpus > 0:
        spec_args["--tensor-parallel-size"] = str(vgpus)

    existing: set[str] = set()
    for position, arg in enumerate(args):
        for key, value in spec_args.items():
            if arg.startswith(key + "=") and value:
                existing.add(key)
                args[position] = f"{key}={value}"
                break

    args.extend(f"{key}={value}" for key, value in spec_args.items()
                if key not in existing and value)
    return args


def build_envs(ms: Mapping[str, Any], container: Mapping[str, Any]) -> list[dict[str, Any]]:
    """The container's env, plus the ModelScope switch when that registry is used."""
    envs = copy.deepcopy(list(container.get("env") or []))
    if _spec(ms).get("modelRegistry") == MODEL_SCOPE_NAME:
        envs.append({"name": "VLLM_USE_MODELSCOPE", "value": "True"})
    return envs


def get_model_service_selector(ms: Mapping[str, Any]) -> dict[str, Any]:
    """Label selector of a model service's pods."""
    name = _meta(ms).get("name", "")
    selector = _spec(ms).get("selector")
    if selector is not None:
        result = copy.deepcopy(dict(selector))
        labels = result.get("matchLabels") or {}
        labels[LABEL_MODEL_SERVICE_NAME] = name
        labels[LABEL_LLMOS_ML_TYPE] = TYPE_NAME
        result["matchLabels"] = labels
        return result
    return {"matchLabels": {LABEL_LLMOS_ML_TYPE: TYPE_NAME, LABEL_MODEL_SERVICE_NAME: name}}


def construct_init_containers(ms: Mapping[str, Any],
                              container: Mapping[str, Any]) -> list[dict[str, Any]] | None:
    """An init container that downloads the model, unless it is served locally."""
    registry = _spec(ms).get("modelRegistry", "")
    if registry in ("", "local"):
        return None
    registry_cli = "modelscope" if registry == "modelscope" else "huggingface-cli"
    envs = copy.deepcopy(list(container.get("env") or []))
    envs.append({"name": "HF_HUB_ENABLE_HF_TRANSFER", "value": "1"})
    return [{
        "name": "download-models",
        "image": container.get("image", ""),
        "command": [registry_cli],
        "args": ["download", _spec(ms).get("modelName", "")],
        "volumeMounts": copy.deepcopy(container.get("volumeMounts")),
        "env": envs,
    }]


def formatted_ms_name(name: str, appendix: str = "") -> str:
    """Resource name for a model service, with dots turned into dashes."""
    name = name.replace(".", "-")
    if not appendix:
        return f"{MS_PREFIX}-{name}"
    return f"{MS_PREFIX}-{name}-{appendix}"


def _http_probe(port: int, **settings: int) -> dict[str, Any]:
    return {"httpGet": {"path": "/health", "port": port}, **settings}


def construct_model_stateful_set(ms: Mapping[str, Any]) -> dict[str, Any]:
    """The stateful set that runs a model service."""
    meta = _meta(ms)
    spec = _spec(ms)
    selector = get_model_service_selector(ms)
    replicas = spec.get("replicas", 0)
    if ANNOTATION_RESOURCE_STOPPED in (meta.get("annotations") or {}):
        replicas = 0

    pod_spec = copy.deepcopy(_pod_spec(ms))
    containers = pod_spec.get("containers") or []
    if not containers:
        raise ValueError(f"model service {meta.get('name', '')} has no containers")
    original = copy.deepcopy(containers[0])
    init_containers = construct_init_containers(ms, original)
    if init_containers is None:
        pod_spec.pop("initContainers", None)
    else:
        pod_spec["initContainers"] = init_containers

    container = containers[0]
    container["args"] = build_args(ms)
    container["env"] = build_envs(ms, original)
    ports = container.get("ports") or []
    if not ports:
        raise ValueError(f"model service {meta.get('name', '')} container has no ports")
    container_port = ports[0].get("containerPort")

    if container.get("livenessProbe") is None:
        container["livenessProbe"] = _http_probe(container_port, periodSeconds=30, failureThreshold=3)
    if container.get("readinessProbe") is None:
        container["readinessProbe"] = _http_probe(
            container_port, initialDelaySeconds=30, failureThreshold=60, periodSeconds=10)

    pod_labels = dict(selector["matchLabels"])
    pod_labels.update(meta.get("labels") or {})
    pod_annotations = {
        key: value for key, value in (meta.get("annotations") or {}).items()
        if "kubectl" not in key and "notebook" not in key
    }

    return {
        "apiVersion": "apps/v1",
        "kind": "StatefulSet",
        "metadata": {
            "name": formatted_ms_name(meta.get("name", "")),
            "namespace": meta.get("namespace", ""),
            "ownerReferences": [controller_ref(ms)],
            "labels": {
                LABEL_LLMOS_ML_TYPE: TYPE_NAME,
                LABEL_MODEL_SERVICE_NAME: meta.get("name", ""),
                LABEL_MODEL_SERVICE_SERVE_ENGINE: VLLM_ENGINE_NAME,
            },
        },
        "spec": {
            "replicas": replicas,
            "selector": selector,
            "template": {
                "metadata": {"labels": pod_labels, "annotations": pod_annotations},
                "spec": pod_spec,
            },
            "updateStrategy": copy.deepcopy(spec.get("updateStrategy") or {}),
            "volumeClaimTemplates": copy.deepcopy(list(spec.get("volumeClaimTemplates") or [])),
        },
    }


def construct_model_service(ms: Mapping[str, Any]) -> dict[str, Any]:
    """The service that exposes every port of a model service's container."""
    meta = _meta(ms)
    selector = get_model_service_selector(ms)
    containers = _containers(ms)
    ports = containers[0].get("ports") or [] if containers else []
    svc_ports = [
        {"name": port.get("name", ""), "port": port.get("containerPort"),
         "targetPort": port.get("name", "")}
        for port in ports
    ]
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": formatted_ms_name(meta.get("name", "")),
            "namespace": meta.get("namespace", ""),
            "ownerReferences": [controller_ref(ms)],
            "labels": dict(selector["matchLabels"]),
        },
        "spec": {
            "selector": dict(selector["matchLabels"]),
            "type": _spec(ms).get("serviceType", ""),
            "ports": svc_ports,
        },
    }


def _pod_condition(condition: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "type": condition.get("type", ""),
        "status": condition.get("status", ""),
        "reason": condition.get("reason", ""),
        "message": condition.get("message", ""),
        "lastTransitionTime": condition.get("lastTransitionTime"),
    }


def construct_model_status(ss: Mapping[str, Any], pod: Mapping[str, Any]) -> dict[str, Any]:
    """Model service status mirrored from its stateful set and first pod."""
    status: dict[str, Any] = {
        "conditions": [],
        "readyReplicas": (ss.get("status") or {}).get("readyReplicas", 0),
        "containerState": {},
        "state": "",
    }
    pod_status = pod.get("status") or {}
    if not any(pod_status.values()):
        log.info("modelService pod status is empty, skip updating conditions and state")
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

    status["conditions"] = [_pod_condition(c) for c in pod_status.get("conditions") or []]
    return status


def related_stateful_set_keys(pod: Any) -> list[tuple[str, str]]:
    """(namespace, name) of the model service stateful set that owns a pod."""
    if not isinstance(pod, Mapping) or pod.get("kind", "Pod") != "Pod":
        return []
    meta = _meta(pod)
    for ref in meta.get("ownerReferences") or []:
        if ref.get("kind") == "StatefulSet" and MS_PREFIX in ref.get("name", ""):
            log.debug("reconcile modelService: %s/%s", meta.get("namespace"), ref.get("name"))
            return [(meta.get("namespace", ""), ref["name"])]
    return []