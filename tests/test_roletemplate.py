import copy

import pytest

from llmosctl.rbac import LABEL_AUTH_ROLE_TEMPLATE_NAME_KEY, generate_role_template_name
from llmosctl.roletemplate import RoleTemplateHandler
from llmosctl.store import ResourceStore, get_condition

RULES = [{"apiGroups": ["ml.llmos.ai"], "resources": ["notebooks"], "verbs": ["get", "list"]}]

TEMPLATE = {
    "apiVersion": "management.llmos.ai/v1",
    "kind": "RoleTemplate",
    "metadata": {"name": "viewer"},
    "rules": RULES,
}


@pytest.fixture
def stored():
    store = ResourceStore()
    return store, store.create(copy.deepcopy(TEMPLATE))


def test_ignores_none_and_deleting():
    handler = RoleTemplateHandler(ResourceStore())
    assert handler.on_change("x", None) is None
    deleting = copy.deepcopy(TEMPLATE)
    deleting["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    assert handler.on_change("viewer", deleting) is None


def test_first_pass_initialises_status(stored):
    store, rt = stored
    result = RoleTemplateHandler(store).on_change("viewer", rt)
    assert result["status"]["state"] == "InProgress"
    assert get_condition(result, "ClusterRoleExists")["status"] == "Unknown"


def test_second_pass_creates_cluster_role(stored):
    store, rt = stored
    handler = RoleTemplateHandler(store)
    initialised = handler.on_change("viewer", rt)
    handler.on_change("viewer", initialised)

    cr = store.get("ClusterRole", generate_role_template_name("viewer"))
    assert cr["rules"] == RULES
    assert cr["metadata"]["labels"][LABEL_AUTH_ROLE_TEMPLATE_NAME_KEY] == "viewer"
    assert cr["metadata"]["ownerReferences"][0]["uid"] == rt["metadata"]["uid"]

    status = store.get("RoleTemplate", "viewer")["status"]
    assert status["state"] == "Complete"
    cond = get_condition({"status": status}, "ClusterRoleExists")
    assert cond["status"] == "True"
    assert cond["message"] == f"{generate_role_template_name('viewer')} created"


def test_changed_rules_update_cluster_role(stored):
    store, rt = stored
    handler = RoleTemplateHandler(store)
    handler.reconcile_cluster_role(rt)

    changed = copy.deepcopy(rt)
    changed["rules"] = RULES + [{"apiGroups": [""], "resources": ["pods"], "verbs": ["get"]}]
    updated = handler.reconcile_cluster_role(changed)
    assert updated["rules"] == changed["rules"]
    assert store.get("ClusterRole", generate_role_template_name("viewer"))["rules"] == changed["rules"]


def test_unchanged_rules_leave_cluster_role_alone(stored):
    store, rt = stored
    handler = RoleTemplateHandler(store)
    created = handler.reconcile_cluster_role(rt)
    again = handler.reconcile_cluster_role(rt)
    current = store.get("ClusterRole", generate_role_template_name("viewer"))
    assert current["metadata"]["resourceVersion"] == created["metadata"]["resourceVersion"]
    assert again["rules"] == RULES