"""The managed addon configs setting value and its JSON form."""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

CLUSTER_TOOLS_LABEL = "llmos.ai/cluster-tools"
_LIST_KEY = "AddonConfigs"


@dataclass
class AddonConfig:
    """Whether one cluster-tools addon is enabled and what state it is in."""

    name: str = ""
    enabled: bool = False
    status: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "enabled": self.enabled, "status": self.status}

    @classmethod
    def from_dict(cls, data: Any) -> AddonConfig:
        if not isinstance(data, Mapping):
            raise ValueError(f"addon config must be an object, got {type(data).__name__}")
        lowered = {str(k).lower(): v for k, v in data.items()}
        name = lowered.get("name", "")
        enabled = lowered.get("enabled", False)
        status = lowered.get("status", "")
        name = "" if name is None else name
        enabled = False if enabled is None else enabled
        status = "" if status is None else status
        if not isinstance(name, str) or not isinstance(status, str):
            raise ValueError("addon config name and status must be strings")
        if not isinstance(enabled, bool):
            raise ValueError("addon config enabled must be a boolean")
        return cls(name=name, enabled=enabled, status=status)


@dataclass
class ManagedAddonConfigs:
    """The list of addon configs kept in the managed addon configs setting."""

    addon_configs: list[AddonConfig] = field(default_factory=list)

    def to_json(self) -> str:
        """Compact JSON; an empty list is written as null."""
        items = [config.to_dict() for config in self.addon_configs] or None
        return json.dumps({_LIST_KEY: items}, separators=(",", ":"))

    @classmethod
    def from_addons(cls, addons: Iterable[Mapping[str, Any]]) -> ManagedAddonConfigs:
        """Build configs from managed addon objects."""
        return cls([
            AddonConfig(
                name=(addon.get("metadata") or {}).get("name", ""),
                enabled=bool((addon.get("spec") or {}).get("enabled", False)),
                status=str((addon.get("status") or {}).get("state", "") or ""),
            )
            for addon in addons
        ])


def decode_managed_addon_configs(value: str) -> ManagedAddonConfigs:
    """Parse the setting value; raises ValueError on malformed input."""
    data = json.loads(value)
    if data is None:
        return ManagedAddonConfigs()
    if not isinstance(data, Mapping):
        raise ValueError(f"managed addon configs must be an object, got {type(data).__name__}")
    items = next((v for k, v in data.items() if str(k).lower() == _LIST_KEY.lower()), None)
    if items is None:
        return ManagedAddonConfigs()
    if not isinstance(items, list):
        raise ValueError("managed addon configs list must be an array")
    return ManagedAddonConfigs([AddonConfig.from_dict(item) for item in items])