import copy

import pytest

from llmosctl.rbac import (
    construct_global_cluster_role,
    generate_cr_name,
    generate_crb_name,
    generate_role_binding_name,
)
from llmosctl.roletemplatebinding import RoleTemplateBindingHandler
from llmosctl.store import ResourceStore

SUBJECTS = [{"kind": "User", "name": "alice", "apiGroup": "rbac.authorization.k8s.io"}]
NS_RULES = [{"apiGroups": ["ml.llmos.ai"], "resources": ["*"], "verbs": ["get"]}]
RT_RULES = [{"apiGroups": [""], "resources": ["pods"], "verbs": ["list"]}]
NAMESPACE_RULE = {"apiGroups": [""], "resources": ["namespaces"], "verbs": ["get", "list", "watch"]}


def _binding(kind, ref_name, namespace_id=None):
    rtb = {
        "apiVersion": "management.llmos.ai/v1",
        "kind": "RoleTemplateBinding",
        "metadata": {"name": "bind"},
        "roleTemplateRef": {"kind": kind, "name": ref_name},
        "subjects": copy.deepcopy(SUBJECTS),
    }
    if namespace_id is not None:
        rtb["namespaceId"] = namespace_id
    return rtb


@pytest.fixture
def global_store():
    store = ResourceStore()
    gr = store.create({
        "apiVersion": "management.llmos.ai/v1",
        "kind": "GlobalRole",
        "metadata": {"name": "user"},
        "rules": [],
        "namespacedRules": {"team-a": NS_RULES},
    })
    store.create(construct_global_cluster_role(gr))
    return store


def test_global_role_binding_creates_objects(global_store):
    handler = RoleTemplateBindingHandler(global_store)
    rtb = global_store.create(_binding("GlobalRole", "user"))
    assert handler.on_change("bind", rtb) == rtb

    crb = global_store.get("ClusterRoleBinding", generate_crb_name(rtb))
    assert crb["roleRef"]["name"] == generate_cr_name("user")
    assert crb["roleRef"]["kind"] == "ClusterRole"
    assert crb["subjects"] == SUBJECTS

    role = global_store.get("Role", generate_role_binding_name(rtb), "team-a")
    assert role["rules"] == NS_RULES + [NAMESPACE_RULE]
    rb = global_store.get("RoleBinding", generate_role_binding_name(rtb), "team-a")
    assert rb["roleRef"]["name"] == generate_role_binding_name(rtb)
    assert rb["roleRef"]["kind"] == "Role"


def test_missing_global_role_raises():
    handler = RoleTemplateBindingHandler(ResourceStore())
    with pytest.raises(LookupError, match="failed to get global role missing"):
        handler.on_change("bind", _binding("GlobalRole", "missing"))


def test_missing_cluster_role_raises():
    store = ResourceStore()
    store.create({"kind": "GlobalRole", "metadata": {"name": "user"}, "rules": []})
    with pytest.raises(LookupError):
        RoleTemplateBindingHandler(store).on_change("bind", _binding("GlobalRole", "user"))


def test_role_template_without_namespace_raises():
    handler = RoleTemplateBindingHandler(ResourceStore())
    with pytest.raises(ValueError, match="namespaceId is empty for roleTemplateBinding bind"):
        handler.on_change("bind", _binding("RoleTemplate", "viewer"))


def test_role_template_binding_creates_role_and_updates_rules():
    store = ResourceStore()
    store.create({"kind": "RoleTemplate", "metadata": {"name": "viewer"}, "rules": RT_RULES})
    handler = RoleTemplateBindingHandler(store)
    rtb = _binding("RoleTemplate", "viewer", "team-b")
    handler.on_change("bind", rtb)

    name = generate_role_binding_name(rtb)
    assert store.get("Role", name, "team-b")["rules"] == RT_RULES + [NAMESPACE_RULE]
    assert store.get("RoleBinding", name, "team-b")["subjects"] == SUBJECTS

    rt = store.get("RoleTemplate", "viewer")
    rt["rules"] = NS_RULES
    store.update(rt)
    handler.on_change("bind", rtb)
    assert store.get("Role", name, "team-b")["rules"] == NS_RULES + [NAMESPACE_RULE]


def test_unsupported_kind_creates_nothing():
    store = ResourceStore()
    rtb = _binding("Other", "x")
    assert RoleTemplateBindingHandler(store).on_change("bind", rtb) == rtb
    assert store.list("Role") == []
    assert store.list("ClusterRoleBinding") == []


def test_deleting_binding_is_returned_untouched():
    store = ResourceStore()
    rtb = _binding("RoleTemplate", "viewer")
    rtb["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    assert RoleTemplateBindingHandler(store).on_change("bind", rtb) is rtb
    assert RoleTemplateBindingHandler(store).on_change("bind", None) is None


def test_existing_cluster_role_binding_is_kept(global_store):
    handler = RoleTemplateBindingHandler(global_store)
    rtb = _binding("GlobalRole", "user")
    handler.reconcile_cluster_role_binding(rtb)
    first = global_store.get("ClusterRoleBinding", generate_crb_name(rtb))
    handler.reconcile_cluster_role_binding(rtb)
    second = global_store.get("ClusterRoleBinding", generate_crb_name(rtb))
    assert first["metadata"]["resourceVersion"] == second["metadata"]["resourceVersion"]