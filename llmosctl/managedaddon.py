"""Reconciles managed addons into helm charts and tracks their install jobs."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from llmosctl.addonvalues import InvalidValuesError, merge_default_values_content, validate_chart_values
from llmosctl.store import NotFoundError, ResourceStore, get_condition, set_condition

log = logging.getLogger(__name__)

MANAGED_ADDON_KIND = "ManagedAddon"
HELM_CHART_KIND = "HelmChart"
HELM_API_VERSION = "helm.cattle.io/v1"
MANAGED_ADDON_LABEL = "llmos.ai/managed-addon"
STR_TRUE = "true"
DEFAULT_WAIT_TIME = 5.0

SETTING_SYNCED_ADDONS = ("llmos-monitoring", "llmos-gpu-stack")

COND_CHART_DEPLOYED = "ChartDeployed"
COND_IN_PROGRESS = "InProgress"
COND_READY = "Ready"

REASON_COMPLETE = "Complete"
REASON_ERROR = "Error"
REASON_PROCESSING = "Processing"


class AddonState(str, Enum):
    ENABLED = "Enabled"
    DEPLOYED = "Deployed"
    DISABLED = "Disabled"
    IN_PROGRESS = "InProgress"
    COMPLETE = "Complete"
    ERROR = "Error"
    FAILED = "Failed"


def _meta(obj: Mapping[str, Any]) -> dict[str, Any]:
    return obj.get("metadata") or {}


def _is_deleting(obj: Mapping[str, Any]) -> bool:
    return bool(_meta(obj).get("deletionTimestamp"))


def _set_error(obj: dict[str, Any], cond_type: str, reason: str, error: Exception | None) -> None:
    if error is None:
        set_condition(obj, cond_type, status="True", reason=reason, message="")
    else:
        set_condition(obj, cond_type, status="False", reason=reason or "Error", message=str(error))


def _set_bool(obj: dict[str, Any], cond_type: str, value: bool) -> None:
    set_condition(obj, cond_type, status="True" if value else "False")


def chart_full_name(addon: Mapping[str, Any]) -> str:
    meta = _meta(addon)
    return f"{meta.get('namespace', '')}-{meta.get('name', '')}"


def is_job_completed(job: Mapping[str, Any]) -> bool:
    status = job.get("status") or {}
    return status.get("succeeded") == 1 and status.get("completionTime") is not None


class ManagedAddonHandler:
    """Drives each managed addon through enable, deploy, progress and readiness."""

    def __init__(
        self,
        store: ResourceStore,
        *,
        enqueue_after: Callable[[str, str, float], None] | None = None,
        on_synced_addon_change: Callable[[], None] | None = None,
    ) -> None:
        self.store = store
        self.enqueue_after = enqueue_after
        self.on_synced_addon_change = on_synced_addon_change

    def on_change(self, key: str, addon: Mapping[str, Any] | None) -> dict[str, Any] | None:
        """Reconcile one addon according to whether it is enabled."""
        if addon is None or _is_deleting(addon):
            return addon  # type: ignore[return-value]

        if _meta(addon).get("name") in SETTING_SYNCED_ADDONS and self.on_synced_addon_change:
            self.on_synced_addon_change()

        if (addon.get("spec") or {}).get("enabled"):
            return self._enable(addon)
        return self._disable(addon)

    def _enable(self, addon: Mapping[str, Any]) -> dict[str, Any] | None:
        deployed = get_condition(addon, COND_CHART_DEPLOYED)
        if deployed is None or deployed.get("status") != "True":
            try:
                validate_chart_values((addon.get("spec") or {}).get("valuesContent", ""))
            except InvalidValuesError as err:
                log.debug("failed to validate chart values for addon %s: %s", _meta(addon).get("name"), err)
                return self.set_addon_cond_status(addon, AddonState.DEPLOYED, "", err)
            return self.set_addon_cond_status(addon, AddonState.ENABLED, "", None)

        addon_cpy = copy.deepcopy(dict(addon))
        state = (addon_cpy.get("status") or {}).get("state")
        if state in (AddonState.ENABLED.value, AddonState.DEPLOYED.value):
            return self._enable_addon_chart(addon_cpy)
        if state == AddonState.DISABLED.value:
            return addon_cpy
        return self._reconcile_addon_chart(addon_cpy)

    def _disable(self, addon: Mapping[str, Any]) -> dict[str, Any]:
        chart, owned = self._get_helm_chart(addon)
        if chart is not None and owned:
            self.store.delete(HELM_CHART_KIND, _meta(chart)["name"], _meta(chart).get("namespace"))
        return self.set_addon_cond_status(addon, AddonState.DISABLED, "", None)

    def _get_helm_chart(self, addon: Mapping[str, Any]) -> tuple[dict[str, Any] | None, bool]:
        meta = _meta(addon)
        try:
            chart = self.store.get(HELM_CHART_KIND, meta.get("name", ""), meta.get("namespace"))
        except NotFoundError:
            log.debug("helm chart %s/%s not found", meta.get("namespace"), meta.get("name"))
            return None, False
        owned = any(
            ref.get("kind") == addon.get("kind")
            and ref.get("apiVersion") == addon.get("apiVersion")
            and ref.get("uid") == meta.get("uid")
            for ref in _meta(chart).get("ownerReferences") or []
        )
        return chart, owned

    def _enable_addon_chart(self, addon: dict[str, Any]) -> dict[str, Any]:
        chart, owned = self._get_helm_chart(addon)
        full_name = chart_full_name(addon)
        meta = _meta(addon)

        if chart is not None and _is_deleting(chart):
            log.warning("chart %s is being removed, will enqueue after %ss", full_name, DEFAULT_WAIT_TIME)
            if self.enqueue_after:
                self.enqueue_after(meta.get("namespace", ""), meta.get("name", ""), DEFAULT_WAIT_TIME)
            return addon

        if chart is not None and not owned:
            err = ValueError(f"chart {full_name} exists but not owned by this addon")
            return self.set_addon_cond_status(addon, AddonState.DEPLOYED, "", err)

        if chart is None:
            try:
                self._deploy_helm_chart(addon)
            except Exception as exc:
                err = RuntimeError(
                    f"failed to create helm chart {full_name} for addon {meta.get('name')}: {exc}")
                return self.set_addon_cond_status(addon, AddonState.DEPLOYED, "", err)
            log.debug("helm chart %s created by addon %s", full_name, meta.get("name"))

        return self.set_addon_cond_status(addon, AddonState.IN_PROGRESS, "", None)

    def _deploy_helm_chart(self, addon: Mapping[str, Any]) -> dict[str, Any]:
        meta = _meta(addon)
        spec = addon.get("spec") or {}
        labels = dict(meta.get("labels") or {})
        labels[MANAGED_ADDON_LABEL] = STR_TRUE
        values = merge_default_values_content(
            spec.get("defaultValuesContent", ""), spec.get("valuesContent", ""))
        chart = {
            "apiVersion": HELM_API_VERSION,
            "kind": HELM_CHART_KIND,
            "metadata": {
                "name": meta.get("name"),
                "namespace": meta.get("namespace"),
                "ownerReferences": [{
                    "apiVersion": addon.get("apiVersion", ""),
                    "kind": addon.get("kind", ""),
                    "name": meta.get("name", ""),
                    "uid": meta.get("uid", ""),
                }],
                "labels": labels,
            },
            "spec": {
                "targetNamespace": meta.get("namespace", ""),
                "chart": spec.get("chart", ""),
                "repo": spec.get("repo", ""),
                "version": spec.get("version", ""),
                "valuesContent": values,
                "failurePolicy": spec.get("failurePolicy", ""),
            },
        }
        return self.store.create(chart)

    def _reconcile_addon_chart(self, addon: dict[str, Any]) -> dict[str, Any] | None:
        chart, _ = self._get_helm_chart(addon)
        full_name = chart_full_name(addon)
        if chart is None:
            return self.set_addon_cond_status(
                addon, AddonState.ERROR, "Error", LookupError(f"helm chart {full_name} not found"))

        spec = addon.get("spec") or {}
        chart_cpy = copy.deepcopy(chart)
        chart_spec = chart_cpy.setdefault("spec", {})
        chart_spec["valuesContent"] = spec.get("valuesContent", "")
        chart_spec["version"] = spec.get("version", "")
        chart_spec["repo"] = spec.get("repo", "")
        chart_spec["chart"] = spec.get("chart", "")

        if spec.get("defaultValuesContent"):
            try:
                chart_spec["valuesContent"] = merge_default_values_content(
                    spec["defaultValuesContent"], spec.get("valuesContent", ""))
            except InvalidValuesError as err:
                return self.set_addon_cond_status(addon, AddonState.ERROR, "", err)

        if chart_spec != (chart.get("spec") or {}):
            log.debug("updating helm chart %s spec for addon %s", full_name, _meta(addon).get("name"))
            try:
                self.store.update(chart_cpy)
            except Exception:
                err = RuntimeError(f"failed to update helm chart {full_name}")
                return self.set_addon_cond_status(addon, AddonState.ERROR, "", err)
        return None

    def set_addon_cond_status(self, addon: Mapping[str, Any], state: AddonState | str,
                              reason: str = "", error: Exception | None = None) -> dict[str, Any]:
        """Set the addon state and its conditions; store the status if it changed."""
        state = AddonState(state)
        cpy = copy.deepcopy(dict(addon))
        cpy.setdefault("status", {})["state"] = state.value

        if state in (AddonState.ENABLED, AddonState.DEPLOYED):
            _set_error(cpy, COND_CHART_DEPLOYED, reason, error)
        elif state is AddonState.DISABLED:
            cpy["status"] = {"state": state.value}
            _set_bool(cpy, COND_CHART_DEPLOYED, False)
        elif state is AddonState.IN_PROGRESS:
            _set_error(cpy, COND_IN_PROGRESS, reason, error)
            _set_bool(cpy, COND_READY, False)
        else:
            _set_error(cpy, COND_READY, reason, error)
            _set_bool(cpy, COND_IN_PROGRESS, error is not None)

        if (addon.get("status") or {}) != cpy["status"]:
            return self.store.update_status(cpy)
        return cpy

    def on_helm_chart_remove(self, key: str, chart: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
        """Disable the owning addon when its helm chart is removed."""
        if chart is None or not _is_deleting(chart):
            return None

        meta = _meta(chart)
        labels = meta.get("labels")
        owner_refs = meta.get("ownerReferences") or []
        if not labels or not owner_refs or labels.get(MANAGED_ADDON_LABEL) != STR_TRUE:
            return None

        owner_name = owner_refs[0].get("name", "")
        try:
            addon = self.store.get(MANAGED_ADDON_KIND, owner_name, meta.get("namespace"))
        except NotFoundError:
            log.warning("empty addon %s of helm chart %s, skip disabling", owner_name, meta.get("name"))
            return chart

        if (addon.get("spec") or {}).get("enabled"):
            addon["spec"]["enabled"] = False
            self.store.update(addon)

        self.set_addon_cond_status(addon, AddonState.DISABLED, "", None)
        return chart

    def on_job_change(self, key: str, job: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
        """Mirror the status of a helm chart job onto its addon."""
        if job is None or _is_deleting(job):
            return None
        for ref in _meta(job).get("ownerReferences") or []:
            if ref.get("kind") == HELM_CHART_KIND and ref.get("apiVersion") == HELM_API_VERSION:
                self._sync_job_status_to_addon(job, ref.get("name", ""))
                return job
        return job

    def _sync_job_status_to_addon(self, job: Mapping[str, Any], name: str) -> None:
        meta = _meta(job)
        try:
            addon = self.store.get(MANAGED_ADDON_KIND, name, meta.get("namespace"))
        except NotFoundError:
            log.debug("empty addon %s of job %s, skip syncing status", name, meta.get("name"))
            return

        job_status = job.get("status") or {}
        status = addon.setdefault("status", {})
        status["ready"] = job_status.get("ready")
        status["succeeded"] = job_status.get("succeeded", 0)
        status["jobName"] = meta.get("name", "")

        if is_job_completed(job):
            status["completionTime"] = job_status.get("completionTime")
            self.set_addon_cond_status(addon, AddonState.COMPLETE, REASON_COMPLETE, None)
        elif (job_status.get("failed") or 0) > 0:
            status["completionTime"] = None
            self.set_addon_cond_status(addon, AddonState.FAILED, REASON_ERROR,
                                       RuntimeError(f"helm chart job {meta.get('name')} failed"))
        else:
            status["completionTime"] = None
            self.set_addon_cond_status(addon, AddonState.IN_PROGRESS, REASON_PROCESSING, None)