"""Construction of cluster roles, roles and bindings for the auth resources."""

from __future__ import annotations

import copy
import hashlib
from collections.abc import Mapping
from typing import Any

from llmosctl.store import controller_ref

RBAC_API_VERSION = "rbac.authorization.k8s.io/v1"
RBAC_GROUP_NAME = "rbac.authorization.k8s.io"

DEFAULT_GLOBAL_ROLE_LABEL_KEY = "auth.management.llmos.ai/default-global-role"
LABEL_AUTH_ROLE_TEMPLATE_NAME_KEY = "auth.management.llmos.ai/role-template-name"
ROLE_TEMPLATE_REF_NAME_LABEL_KEY = "auth.management.llmos.ai/template-ref-name"
ROLE_TEMPLATE_REF_KIND_LABEL_KEY = "auth.management.llmos.ai/template-kind"
RTB_NAME_LABEL_KEY = "auth.management.llmos.ai/role-template-binding-name"

GLOBAL_ROLE_KIND = "GlobalRole"
ROLE_TEMPLATE_KIND = "RoleTemplate"

_MAX_NAME_LENGTH = 63

_NAMESPACE_READ_RULE = {
    "apiGroups": [""],
    "resources": ["namespaces"],
    "verbs": ["get", "list", "watch"],
}


def _name(obj: Mapping[str, Any]) -> str:
    return (obj.get("metadata") or {}).get("name", "")


def safe_concat_name(*args: str) -> str:
    """Join names with '-', shortening with a hash suffix past 63 characters."""
    full = "-".join(args)
    if len(full) <= _MAX_NAME_LENGTH:
        return full
    digest = hashlib.sha256(full.encode()).hexdigest()[:5]
    cut = full[56]
    if cut.isascii() and (cut.islower() or cut.isdigit()):
        return f"{full[:57]}-{digest}"
    return f"{full[:56]}-{digest}"


def generate_cr_name(name: str) -> str:
    return f"llmos-globalrole-{name}"


def generate_role_name(name: str, ns: str) -> str:
    return safe_concat_name(name, ns)


def _object(kind: str, name: str, labels: dict[str, str], owner: Mapping[str, Any],
            namespace: str | None = None, owner_refs: list | None = None) -> dict[str, Any]:
    meta: dict[str, Any] = {"name": name}
    if namespace is not None:
        meta["namespace"] = namespace
    meta["labels"] = labels
    meta["ownerReferences"] = owner_refs if owner_refs is not None else [controller_ref(owner)]
    return {"apiVersion": RBAC_API_VERSION, "kind": kind, "metadata": meta}


def construct_global_cluster_role(role: Mapping[str, Any]) -> dict[str, Any]:
    """The cluster role that carries a global role's cluster-wide rules."""
    cr = _object("ClusterRole", generate_cr_name(_name(role)),
                 {DEFAULT_GLOBAL_ROLE_LABEL_KEY: "true"}, role)
    cr["rules"] = copy.deepcopy(list(role.get("rules") or []))
    return cr


def construct_global_namespaced_roles(role: Mapping[str, Any]) -> list[dict[str, Any]]:
    """One role per namespace listed in a global role's namespaced rules."""
    namespaced = role.get("namespacedRules") or {}
    owner_refs = [controller_ref(role)]
    roles = []
    for ns, rules in namespaced.items():
        obj = _object("Role", generate_role_name(_name(role), ns),
                      {DEFAULT_GLOBAL_ROLE_LABEL_KEY: "true"}, role,
                      namespace=ns, owner_refs=copy.deepcopy(owner_refs))
        obj["rules"] = copy.deepcopy(list(rules))
        roles.append(obj)
    return roles


def generate_role_template_name(name: str) -> str:
    return f"llmos-roletemplate-{name}"


def construct_role_template_cluster_role(rt: Mapping[str, Any]) -> dict[str, Any]:
    """The cluster role backing a role template."""
    cr = _object("ClusterRole", generate_role_template_name(_name(rt)),
                 {LABEL_AUTH_ROLE_TEMPLATE_NAME_KEY: _name(rt)}, rt)
    cr["rules"] = copy.deepcopy(list(rt.get("rules") or []))
    return cr


def generate_crb_name(rtb: Mapping[str, Any]) -> str:
    return f"llmos-globalrole-{_name(rtb)}"


def generate_role_binding_name(rtb: Mapping[str, Any]) -> str:
    return f"llmos-namespacedrole-{_name(rtb)}"


def _binding_labels(rtb: Mapping[str, Any]) -> dict[str, str]:
    ref = rtb.get("roleTemplateRef") or {}
    return {
        ROLE_TEMPLATE_REF_NAME_LABEL_KEY: ref.get("name", ""),
        ROLE_TEMPLATE_REF_KIND_LABEL_KEY: ref.get("kind", ""),
        RTB_NAME_LABEL_KEY: _name(rtb),
    }


def construct_cluster_role_binding(rtb: Mapping[str, Any], cr: Mapping[str, Any]) -> dict[str, Any]:
    """Bind a role template binding's subjects to a cluster role."""
    crb = _object("ClusterRoleBinding", generate_crb_name(rtb), _binding_labels(rtb), rtb)
    crb["roleRef"] = {"apiGroup": RBAC_GROUP_NAME, "kind": "ClusterRole", "name": _name(cr)}
    crb["subjects"] = copy.deepcopy(list(rtb.get("subjects") or []))
    return crb


def construct_role(rtb: Mapping[str, Any], rules: list, ns: str) -> dict[str, Any]:
    """A namespaced role with the given rules plus read access to namespaces."""
    role = _object("Role", generate_role_binding_name(rtb), _binding_labels(rtb), rtb, namespace=ns)
    role["rules"] = copy.deepcopy(list(rules or [])) + [copy.deepcopy(_NAMESPACE_READ_RULE)]
    return role


def construct_role_binding(rtb: Mapping[str, Any], role: Mapping[str, Any], ns: str) -> dict[str, Any]:
    """Bind a role template binding's subjects to a namespaced role."""
    rb = _object("RoleBinding", generate_role_binding_name(rtb), _binding_labels(rtb), rtb, namespace=ns)
    rb["roleRef"] = {"apiGroup": RBAC_GROUP_NAME, "kind": "Role", "name": _name(role)}
    rb["subjects"] = copy.deepcopy(list(rtb.get("subjects") or []))
    return rb