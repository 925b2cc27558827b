"""Reconciles global roles into cluster roles and per-namespace roles."""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from llmosctl.rbac import (
    DEFAULT_GLOBAL_ROLE_LABEL_KEY,
    construct_global_cluster_role,
    construct_global_namespaced_roles,
)
from llmosctl.store import NotFoundError, ResourceStore, set_condition

log = logging.getLogger(__name__)

CLUSTER_ROLE_EXISTS = "ClusterRoleExists"
NAMESPACED_ROLE_EXISTS = "NamespacedRoleExists"

STATE_IN_PROGRESS = "InProgress"
STATE_COMPLETE = "Complete"
STATE_ERROR = "Error"


def _now_rfc3339() -> str:
    stamp = datetime.now().astimezone().isoformat(timespec="seconds")
    return stamp[:-6] + "Z" if stamp.endswith("+00:00") else stamp


def _set_error(obj: dict[str, Any], cond_type: str, reason: str, error: Exception | None) -> None:
    if error is None:
        set_condition(obj, cond_type, status="True", reason=reason, message="")
    else:
        set_condition(obj, cond_type, status="False", reason=reason or "Error", message=str(error))


def _name(obj: Mapping[str, Any]) -> str:
    return (obj.get("metadata") or {}).get("name", "")


class GlobalRoleHandler:
    """Keeps the cluster role and namespaced roles of each global role in sync."""

    def __init__(self, store: ResourceStore) -> None:
        self.store = store

    def on_change(self, key: str, global_role: Mapping[str, Any] | None) -> dict[str, Any] | None:
        """Reconcile one global role; returns the role or its updated copy."""
        if global_role is None or (global_role.get("metadata") or {}).get("deletionTimestamp"):
            return None

        status = global_role.get("status") or {}
        if not status.get("state"):
            gr_copy = copy.deepcopy(dict(global_role))
            set_condition(gr_copy, CLUSTER_ROLE_EXISTS)
            gr_copy.setdefault("status", {})["state"] = STATE_IN_PROGRESS
            return self.store.update_status(gr_copy)

        try:
            cr = self.reconcile_cluster_role(global_role)
        except Exception as err:  # any API failure is recorded on the status
            log.debug("reconciling cluster role of %s failed: %s", key, err)
            return self._update_error_status(global_role, CLUSTER_ROLE_EXISTS, err)

        try:
            roles = self.reconcile_namespaced_roles(global_role)
        except Exception as err:
            log.debug("reconciling namespaced roles of %s failed: %s", key, err)
            return self._update_error_status(global_role, NAMESPACED_ROLE_EXISTS, err)

        self._update_status(global_role, cr, roles)
        return dict(global_role)

    def reconcile_cluster_role(self, global_role: Mapping[str, Any]) -> dict[str, Any]:
        """Create the cluster role, or update its rules when they drifted."""
        cr = construct_global_cluster_role(global_role)
        try:
            found = self.store.get("ClusterRole", _name(cr))
        except NotFoundError:
            return self.store.create(cr)

        if found.get("rules") != cr["rules"]:
            to_update = copy.deepcopy(found)
            to_update["rules"] = cr["rules"]
            labels = to_update["metadata"].get("labels") or {}
            labels[DEFAULT_GLOBAL_ROLE_LABEL_KEY] = "true"
            to_update["metadata"]["labels"] = labels
            return self.store.update(to_update)
        return cr

    def reconcile_namespaced_roles(self, global_role: Mapping[str, Any]) -> list[dict[str, Any]]:
        """Create or update one role per namespace of the namespaced rules."""
        roles = construct_global_namespaced_roles(global_role)
        for role in roles:
            meta = role["metadata"]
            try:
                found = self.store.get("Role", meta["name"], meta["namespace"])
            except NotFoundError:
                self.store.create(role)
                continue

            if found.get("rules") != role["rules"]:
                to_update = copy.deepcopy(found)
                to_update["rules"] = role["rules"]
                labels = to_update["metadata"].get("labels") or {}
                labels[DEFAULT_GLOBAL_ROLE_LABEL_KEY] = "true"
                to_update["metadata"]["labels"] = labels
                self.store.update(to_update)
        return roles

    def _update_status(self, global_role: Mapping[str, Any], cr: Mapping[str, Any] | None,
                       roles: list[dict[str, Any]]) -> None:
        if cr is None and not roles:
            return

        to_update = copy.deepcopy(dict(global_role))
        role_names = "".join(f"{_name(role)} " for role in roles)

        cr_name = _name(cr) if cr is not None else ""
        set_condition(to_update, CLUSTER_ROLE_EXISTS, status="True", reason="Created",
                      message=f"{cr_name} created")
        if roles:
            set_condition(to_update, NAMESPACED_ROLE_EXISTS, status="True", reason="Created",
                          message=f"{role_names}created")

        status = to_update["status"]
        status["lastUpdate"] = _now_rfc3339()
        status["observedGeneration"] = (to_update.get("metadata") or {}).get("generation", 0)
        status["state"] = STATE_COMPLETE

        if status != (global_role.get("status") or {}):
            self.store.update_status(to_update)

    def _update_error_status(self, global_role: Mapping[str, Any], cond_type: str,
                             error: Exception) -> dict[str, Any]:
        to_update = copy.deepcopy(dict(global_role))
        _set_error(to_update, cond_type, "Error", error)
        to_update["status"]["state"] = STATE_ERROR
        return self.store.update_status(to_update)