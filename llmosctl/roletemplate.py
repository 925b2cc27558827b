"""Reconciles role templates into cluster roles."""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from llmosctl.rbac import LABEL_AUTH_ROLE_TEMPLATE_NAME_KEY, construct_role_template_cluster_role
from llmosctl.store import NotFoundError, ResourceStore, set_condition

log = logging.getLogger(__name__)

CLUSTER_ROLE_EXISTS = "ClusterRoleExists"


def _now_rfc3339() -> str:
    stamp = datetime.now().astimezone().isoformat(timespec="seconds")
    return stamp[:-6] + "Z" if stamp.endswith("+00:00") else stamp


def _name(obj: Mapping[str, Any]) -> str:
    return (obj.get("metadata") or {}).get("name", "")


class RoleTemplateHandler:
    """Keeps the cluster role of each role template in sync."""

    def __init__(self, store: ResourceStore) -> None:
        self.store = store

    def on_change(self, key: str, rt: Mapping[str, Any] | None) -> dict[str, Any] | None:
        """Reconcile one role template; returns it or its updated copy."""
        if rt is None or (rt.get("metadata") or {}).get("deletionTimestamp"):
            return None

        if not (rt.get("status") or {}).get("state"):
            to_update = copy.deepcopy(dict(rt))
            set_condition(to_update, CLUSTER_ROLE_EXISTS)
            to_update.setdefault("status", {})["state"] = "InProgress"
            return self.store.update_status(to_update)

        try:
            cr = self.reconcile_cluster_role(rt)
        except Exception as err:  # any API failure is recorded on the status
            log.debug("reconciling cluster role of %s failed: %s", key, err)
            to_update = copy.deepcopy(dict(rt))
            set_condition(to_update, CLUSTER_ROLE_EXISTS, status="False", reason="Error",
                          message=str(err))
            to_update["status"]["state"] = "Error"
            return self.store.update_status(to_update)

        self._update_status(rt, cr)
        return dict(rt)

    def reconcile_cluster_role(self, rt: Mapping[str, Any]) -> dict[str, Any]:
        """Create the cluster role, or update its rules when they drifted."""
        cr = construct_role_template_cluster_role(rt)
        try:
            found = self.store.get("ClusterRole", _name(cr))
        except NotFoundError:
            return self.store.create(cr)

        if found.get("rules") != cr["rules"]:
            to_update = copy.deepcopy(found)
            to_update["rules"] = cr["rules"]
            labels = to_update["metadata"].get("labels") or {}
            labels[LABEL_AUTH_ROLE_TEMPLATE_NAME_KEY] = _name(rt)
            to_update["metadata"]["labels"] = labels
            return self.store.update(to_update)
        return cr

    def _update_status(self, rt: Mapping[str, Any], cr: Mapping[str, Any] | None) -> None:
        if cr is None:
            return
        to_update = copy.deepcopy(dict(rt))
        set_condition(to_update, CLUSTER_ROLE_EXISTS, status="True", reason="Created",
                      message=f"{_name(cr)} created")
        status = to_update["status"]
        status["lastUpdate"] = _now_rfc3339()
        status["observedGeneration"] = (to_update.get("metadata") or {}).get("generation", 0)
        status["state"] = "Complete"
        if status != (rt.get("status") or {}):
            self.store.update_status(to_update)