"""Reconciliation handlers and manifest builders for LLMOS cluster resources, over an in-memory store."""

__version__ = "0.1.0"

__all__ = [
    "addonconfigs",
    "addonvalues",
    "cluster",
    "globalrole",
    "managedaddon",
    "modelservice",
    "monitoring",
    "notebook",
    "rbac",
    "roletemplate",
    "roletemplatebinding",
    "store",
]