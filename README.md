# llmosctl

Reconciliation logic for the resources of an LLMOS cluster, written against an
in-memory object store so that it can be driven and tested without a live
cluster.

Objects are plain dictionaries shaped like Kubernetes manifests
(`apiVersion`, `kind`, `metadata`, `spec`, `status`, ...). The handlers take a
`ResourceStore` and reconcile dependent objects into it; the builder functions
return new manifests and store nothing.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Modules

- `llmosctl.store`
  - `ResourceStore`: objects keyed by kind, namespace and name, with `get`,
    `create`, `update`, `update_status`, `delete` and `list`. Every object
    returned is a deep copy. `create` fills in `uid`, `generation` and
    `resourceVersion`; `update` keeps the stored status and raises the
    generation when anything outside `metadata` and `status` changed;
    `update_status` replaces only the status. `list` filters by namespace and
    by an equality label selector given as a dict.
  - `NotFoundError` (a `LookupError`) is raised for missing objects.
  - `controller_ref(owner)` builds a controlling owner reference.
  - `set_condition(obj, cond_type, status, reason, message)` and
    `get_condition(obj, cond_type)` work on `status.conditions`.
  - `register_all(registrars, store, options)` calls each registrar in order;
    an exception stops the rest.
- `llmosctl.rbac` builds ClusterRoles, Roles, ClusterRoleBindings and
  RoleBindings for global roles, role templates and role template bindings,
  and names them (`generate_cr_name`, `generate_role_name`,
  `safe_concat_name`, ...). `construct_role` always adds read access to
  namespaces.
- `llmosctl.globalrole.GlobalRoleHandler` keeps a global role's ClusterRole
  and per-namespace Roles in step and records `ClusterRoleExists` /
  `NamespacedRoleExists` conditions and a `state` of `InProgress`, `Complete`
  or `Error`.
- `llmosctl.roletemplate.RoleTemplateHandler` does the same for a role
  template's ClusterRole.
- `llmosctl.roletemplatebinding.RoleTemplateBindingHandler` creates the
  bindings for a role template binding: a ClusterRoleBinding plus a Role and
  RoleBinding per namespace for a `GlobalRole` reference, or a Role and
  RoleBinding in `namespaceId` for a `RoleTemplate` reference.
- `llmosctl.addonvalues`: `validate_chart_values`, `merge_yaml` (mappings merge
  deeply, anything else is replaced), `merge_default_values_content` and
  `modify_image_registry`, which sets `global.imageRegistry`. Bad YAML raises
  `InvalidValuesError`.
- `llmosctl.managedaddon.ManagedAddonHandler` creates, updates and deletes the
  HelmChart behind each managed add-on, disables the add-on when its chart is
  removed (`on_helm_chart_remove`) and copies the state of the chart's install
  job onto the add-on (`on_job_change`). States are in `AddonState`. Optional
  callbacks `enqueue_after` and `on_synced_addon_change` let the caller retry
  later or react to changes of the monitoring and GPU stack add-ons.
- `llmosctl.modelservice` builds the StatefulSet, Service and status of a model
  service, including the vLLM arguments (`build_args`), the model download
  init container and the vGPU count.
- `llmosctl.notebook` builds the StatefulSet, Service and status of a notebook.
  The pod gets `fsGroup: 100` unless the `ADD_FSGROUP` environment variable is
  set to something other than `true`.
- `llmosctl.monitoring`: `is_management_node`, `is_monitoring_enabled` (reads a
  managed add-on configs value) and `construct_etcd_endpoints_subset`.
- `llmosctl.addonconfigs`: `AddonConfig`, `ManagedAddonConfigs` (with
  `to_json` and `from_addons`) and `decode_managed_addon_configs`.
- `llmosctl.cluster`: `NamespaceHandler` deletes the role template bindings of
  a namespace being removed; `NodeHandler` labels nodes as workers.

## Example

```python
from llmosctl.store import ResourceStore
from llmosctl.globalrole import GlobalRoleHandler

store = ResourceStore()
role = store.create({
    "apiVersion": "management.llmos.ai/v1",
    "kind": "GlobalRole",
    "metadata": {"name": "admin"},
    "rules": [{"apiGroups": ["*"], "resources": ["*"], "verbs": ["*"]}],
})

handler = GlobalRoleHandler(store)
handler.on_change("admin", role)                        # initialises the status
handler.on_change("admin", store.get("GlobalRole", "admin"))

cluster_role = store.get("ClusterRole", "llmos-globalrole-admin")
print(cluster_role["rules"])
```

Merging add-on values:

```python
from llmosctl.addonvalues import merge_default_values_content, modify_image_registry

merged = merge_default_values_content("replicas: 3\nimage:\n  tag: v1\n", "image:\n  tag: v2\n")
print(modify_image_registry(merged, "registry.example.com"))
```

## What it does not do

- It does not talk to a Kubernetes API server. All reads and writes go to the
  in-memory `ResourceStore`, and nothing is persisted.
- There is no watch loop, work queue or leader election: the caller invokes
  the handlers itself, and `register_all` only runs the functions it is given.
- There are no command-line entry points.
- The model service and notebook modules only build manifests and statuses;
  there is no handler that writes those StatefulSets and Services to the store.
  Likewise the monitoring module builds etcd endpoint subsets but does not
  update any Endpoints object.
- Settings, model registries, datasets, models, tokens, users and upgrades are
  not handled.