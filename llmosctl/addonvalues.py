"""Validation and merging of managed addon chart values."""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import Any

import yaml

log = logging.getLogger(__name__)

GLOBAL_KEY = "global"
IMAGE_REGISTRY_KEY = "imageRegistry"


class InvalidValuesError(ValueError):
    """Raised when chart values are not a valid YAML mapping."""


def _load_mapping(content: str, what: str) -> dict[str, Any] | None:
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise InvalidValuesError(f"{what}: {err}") from err
    if data is not None and not isinstance(data, dict):
        raise InvalidValuesError(f"{what}: expected a mapping, got {type(data).__name__}")
    return data


def validate_chart_values(values_content: str) -> None:
    """Raise InvalidValuesError unless the content is empty or a YAML mapping."""
    if not values_content:
        return
    values = _load_mapping(values_content, "invalid chart valuesContent")
    if values is None:
        raise InvalidValuesError("invalid chart valuesContent: empty document")
    log.debug("chart values: %r", values)


def _deep_merge(base: Any, override: Any) -> Any:
    if isinstance(base, Mapping) and isinstance(override, Mapping):
        merged = copy.deepcopy(dict(base))
        for key, value in override.items():
            merged[key] = _deep_merge(merged[key], value) if key in merged else copy.deepcopy(value)
        return merged
    return copy.deepcopy(override)


def merge_yaml(base: str, override: str) -> str:
    """Merge two YAML documents; mappings merge deeply, everything else is replaced."""
    base_data = _load_mapping(base, "invalid default values") or {}
    override_data = _load_mapping(override, "invalid values") or {}
    merged = _deep_merge(base_data, override_data)
    return yaml.safe_dump(merged, sort_keys=False, default_flow_style=False)


def merge_default_values_content(default_values_content: str, values_content: str) -> str:
    """Combine an addon's default values with its user values."""
    if not values_content and default_values_content:
        return default_values_content
    if not default_values_content:
        return values_content
    return merge_yaml(default_values_content, values_content)


def modify_image_registry(yaml_string: str, registry: str) -> str:
    """Set ``global.imageRegistry`` in a values document and return the new YAML."""
    config = _load_mapping(yaml_string, "error parsing managed addon values")
    if config is None:
        config = {}

    global_section = config.get(GLOBAL_KEY)
    if isinstance(global_section, dict):
        global_section[IMAGE_REGISTRY_KEY] = registry
    else:
        config[GLOBAL_KEY] = {IMAGE_REGISTRY_KEY: registry}

    return yaml.safe_dump(config, sort_keys=True, default_flow_style=False)