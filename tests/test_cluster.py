import pytest

from llmosctl.cluster import NamespaceHandler, NodeHandler
from llmosctl.store import NotFoundError, ResourceStore

NS_LABEL = "auth.management.llmos.ai/namespace-id"
WORKER_LABEL = "node-role.kubernetes.io/worker"


def _rtb(name, ns):
    return {"kind": "RoleTemplateBinding", "metadata": {"name": name, "labels": {NS_LABEL: ns}}}


@pytest.fixture
def store():
    s = ResourceStore()
    s.create(_rtb("rtb-a", "team-a"))
    s.create(_rtb("rtb-b", "team-a"))
    s.create(_rtb("rtb-c", "team-b"))
    return s


def test_namespace_removal_deletes_its_bindings(store):
    ns = {"kind": "Namespace", "metadata": {"name": "team-a", "deletionTimestamp": "now"}}
    result = NamespaceHandler(store).on_remove("team-a", ns)
    assert result == ns
    names = [b["metadata"]["name"] for b in store.list("RoleTemplateBinding")]
    assert names == ["rtb-c"]


def test_namespace_not_deleting_is_ignored(store):
    ns = {"kind": "Namespace", "metadata": {"name": "team-a"}}
    assert NamespaceHandler(store).on_remove("team-a", ns) is None
    assert len(store.list("RoleTemplateBinding")) == 3
    assert NamespaceHandler(store).on_remove("x", None) is None


def test_node_gets_worker_label():
    store = ResourceStore()
    store.create({"kind": "Node", "metadata": {"name": "node1", "labels": {"a": "b"}}})
    node = store.get("Node", "node1")
    updated = NodeHandler(store).on_change("node1", node)
    assert updated["metadata"]["labels"][WORKER_LABEL] == "true"
    assert updated["metadata"]["labels"]["a"] == "b"
    assert store.get("Node", "node1")["metadata"]["labels"][WORKER_LABEL] == "true"


def test_node_without_labels_gets_worker_label():
    store = ResourceStore()
    store.create({"kind": "Node", "metadata": {"name": "node2"}})
    updated = NodeHandler(store).on_change("node2", store.get("Node", "node2"))
    assert updated["metadata"]["labels"] == {WORKER_LABEL: "true"}


def test_labelled_node_is_returned_unchanged():
    store = ResourceStore()
    node = {"kind": "Node", "metadata": {"name": "node3", "labels": {WORKER_LABEL: "true"}}}
    # not in the store: an update would fail, so returning proves no update happened
    assert NodeHandler(store).on_change("node3", node) is node


def test_unknown_node_update_raises():
    store = ResourceStore()
    node = {"kind": "Node", "metadata": {"name": "ghost"}}
    with pytest.raises(NotFoundError):
        NodeHandler(store).on_change("ghost", node)


def test_deleting_node_is_returned_as_is():
    store = ResourceStore()
    node = {"kind": "Node", "metadata": {"name": "n", "deletionTimestamp": "now"}}
    assert NodeHandler(store).on_change("n", node) is node
    assert NodeHandler(store).on_change("n", None) is None