"""Handlers for namespace removal and node labelling."""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import Any

from llmosctl.store import ResourceStore

log = logging.getLogger(__name__)

LABEL_AUTH_NAMESPACE_ID_KEY = "auth.management.llmos.ai/namespace-id"
ROLE_TEMPLATE_BINDING_KIND = "RoleTemplateBinding"
KUBE_WORKER_NODE_LABEL_KEY = "node-role.kubernetes.io/worker"


def _meta(obj: Mapping[str, Any]) -> dict[str, Any]:
    return obj.get("metadata") or {}


class NamespaceHandler:
    """Removes the role template bindings of a namespace being deleted."""

    def __init__(self, store: ResourceStore) -> None:
        self.store = store

    def on_remove(self, key: str, ns: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
        """Delete every binding labelled with the namespace; returns the namespace."""
        if ns is None or not _meta(ns).get("deletionTimestamp"):
            return None
        bindings = self.store.list(
            ROLE_TEMPLATE_BINDING_KIND,
            selector={LABEL_AUTH_NAMESPACE_ID_KEY: _meta(ns).get("name", "")},
        )
        for binding in bindings:
            self.store.delete(ROLE_TEMPLATE_BINDING_KIND, _meta(binding)["name"])
        return ns


class NodeHandler:
    """Marks every node as a worker node."""

    def __init__(self, store: ResourceStore) -> None:
        self.store = store

    def on_change(self, key: str, node: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
        """Add the worker role label if missing and store the node."""
        if node is None or _meta(node).get("deletionTimestamp"):
            return node
        labels = _meta(node).get("labels")
        if labels and labels.get(KUBE_WORKER_NODE_LABEL_KEY) == "true":
            return node
        update = copy.deepcopy(dict(node))
        meta = update.setdefault("metadata", {})
        meta["labels"] = dict(meta.get("labels") or {})
        meta["labels"][KUBE_WORKER_NODE_LABEL_KEY] = "true"
        return self.store.update(update)