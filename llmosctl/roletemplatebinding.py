"""Reconciles role template bindings into roles and role bindings."""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import Any

from llmosctl.rbac import (
    GLOBAL_ROLE_KIND,
    ROLE_TEMPLATE_KIND,
    construct_cluster_role_binding,
    construct_role,
    construct_role_binding,
    generate_cr_name,
)
from llmosctl.store import NotFoundError, ResourceStore

log = logging.getLogger(__name__)


def _name(obj: Mapping[str, Any]) -> str:
    return (obj.get("metadata") or {}).get("name", "")


class RoleTemplateBindingHandler:
    """Creates the bindings that grant a role template binding's subjects access."""

    def __init__(self, store: ResourceStore) -> None:
        self.store = store

    def on_change(self, key: str, rtb: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
        """Reconcile one binding according to the kind of role it refers to."""
        if rtb is None or (rtb.get("metadata") or {}).get("deletionTimestamp"):
            return rtb

        ref = rtb.get("roleTemplateRef") or {}
        ref_kind = ref.get("kind", "")
        ref_name = ref.get("name", "")

        if ref_kind == GLOBAL_ROLE_KIND:
            try:
                gr = self.store.get(GLOBAL_ROLE_KIND, ref_name)
            except NotFoundError as err:
                raise LookupError(f"failed to get global role {ref_name}: {err}") from err
            self.reconcile_cluster_role_binding(rtb)
            self.reconcile_namespaced_roles(rtb, gr)
            return rtb

        if ref_kind == ROLE_TEMPLATE_KIND:
            if not rtb.get("namespaceId"):
                raise ValueError(f"namespaceId is empty for roleTemplateBinding {_name(rtb)}")
            try:
                rt = self.store.get(ROLE_TEMPLATE_KIND, ref_name)
            except NotFoundError as err:
                raise LookupError(f"failed to get role template {ref_name}: {err}") from err
            self.reconcile_role_template_roles(rtb, rt)
            return rtb

        log.error("unsupported roleTemplateRef kind %s", ref_kind)
        return rtb

    def reconcile_cluster_role_binding(self, rtb: Mapping[str, Any]) -> None:
        """Create the cluster role binding to the global role's cluster role."""
        ref_name = (rtb.get("roleTemplateRef") or {}).get("name", "")
        cr = self.store.get("ClusterRole", generate_cr_name(ref_name))
        crb = construct_cluster_role_binding(rtb, cr)
        try:
            found = self.store.get("ClusterRoleBinding", _name(crb))
        except NotFoundError:
            log.debug("creating cluster role binding %s", _name(crb))
            self.store.create(crb)
            return
        log.debug("cluster role binding %s already exists, nothing to change", _name(found))

    def reconcile_namespaced_roles(self, rtb: Mapping[str, Any], gr: Mapping[str, Any]) -> None:
        """Create or update a role and binding for each namespace of the global role."""
        for ns, rules in (gr.get("namespacedRules") or {}).items():
            self._reconcile_role_and_binding(rtb, rules, ns)

    def reconcile_role_template_roles(self, rtb: Mapping[str, Any], rt: Mapping[str, Any]) -> None:
        """Create or update the role and binding in the binding's namespace."""
        self._reconcile_role_and_binding(rtb, rt.get("rules") or [], rtb.get("namespaceId", ""))

    def _reconcile_role_and_binding(self, rtb: Mapping[str, Any], rules: list, ns: str) -> None:
        role = construct_role(rtb, rules, ns)
        found: dict[str, Any] | None
        try:
            found = self.store.get("Role", _name(role), ns)
        except NotFoundError:
            log.debug("creating role %s:%s of roleTemplateBinding %s", _name(role), ns, _name(rtb))
            role = self.store.create(role)
            found = None

        if found is not None and found.get("rules") != role["rules"]:
            log.debug("updating role %s:%s of roleTemplateBinding %s", _name(role), ns, _name(rtb))
            to_update = copy.deepcopy(found)
            to_update["rules"] = role["rules"]
            self.store.update(to_update)

        rb = construct_role_binding(rtb, role, ns)
        try:
            self.store.get("RoleBinding", _name(rb), ns)
        except NotFoundError:
            log.debug("creating roleBinding %s:%s of roleTemplateBinding %s", _name(rb), ns, _name(rtb))
            self.store.create(rb)