"""Helpers for wiring cluster monitoring to the management nodes."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from llmosctl.addonconfigs import decode_managed_addon_configs

log = logging.getLogger(__name__)

LLMOS_MONITORING_NAME = "llmos-monitoring"
MONITORING_ETCD_ENDPOINTS_NAME = "llmos-monitoring-kube-etcd"

KUBE_ETCD_NODE_LABEL_KEY = "node-role.kubernetes.io/etcd"
KUBE_MASTER_NODE_LABEL_KEY = "node-role.kubernetes.io/master"
KUBE_CONTROL_PLANE_NODE_LABEL_KEY = "node-role.kubernetes.io/control-plane"
TRUE_STR = "true"

NODE_INTERNAL_IP = "InternalIP"
ETCD_METRICS_PORT_NAME = "http-metrics"
ETCD_METRICS_PORT = 2381


def is_management_node(node: Mapping[str, Any]) -> bool:
    """True if the node carries an etcd, master or control-plane role label."""
    labels = (node.get("metadata") or {}).get("labels") or {}
    return any(
        labels.get(key) == TRUE_STR
        for key in (KUBE_ETCD_NODE_LABEL_KEY, KUBE_MASTER_NODE_LABEL_KEY,
                    KUBE_CONTROL_PLANE_NODE_LABEL_KEY)
    )


def is_monitoring_enabled(configs: str) -> bool:
    """True if the managed addon configs mark the monitoring addon enabled."""
    if not configs:
        return False
    try:
        addon_configs = decode_managed_addon_configs(configs)
    except ValueError as err:
        log.error("failed to decode managed addon configs: %s", err)
        return False

    for addon_config in addon_configs.addon_configs:
        if addon_config.name == LLMOS_MONITORING_NAME:
            return addon_config.enabled
    return False


def construct_etcd_endpoints_subset(nodes: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Endpoint subsets pointing the etcd metrics service at each node's internal IP."""
    subset: dict[str, Any] = {
        "ports": [{"name": ETCD_METRICS_PORT_NAME, "port": ETCD_METRICS_PORT, "protocol": "TCP"}],
    }
    addresses = [
        {
            "ip": address.get("address", ""),
            "targetRef": {
                "kind": "Node",
                "name": (node.get("metadata") or {}).get("name", ""),
                "uid": (node.get("metadata") or {}).get("uid", ""),
            },
        }
        for node in nodes
        for address in (node.get("status") or {}).get("addresses") or []
        if address.get("type") == NODE_INTERNAL_IP
    ]
    if addresses:
        subset["addresses"] = addresses
    return [subset]