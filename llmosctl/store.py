"""In-memory resource store and helpers shared by the controllers."""

from __future__ import annotations

import copy
import itertools
import uuid
from collections.abc import Callable, Iterable, Mapping
from typing import Any

Resource = dict[str, Any]


class NotFoundError(LookupError):
    """Raised when a requested resource does not exist."""

    def __init__(self, kind: str, name: str, namespace: str = "") -> None:
        where = f"{namespace}/{name}" if namespace else name
        super().__init__(f"{kind} {where} not found")
        self.kind = kind
        self.name = name
        self.namespace = namespace


def _metadata(obj: Mapping[str, Any]) -> dict[str, Any]:
    return obj.get("metadata") or {}


def _matches(labels: Mapping[str, str], selector: Mapping[str, str] | None) -> bool:
    if not selector:
        return True
    return all(labels.get(key) == value for key, value in selector.items())


class ResourceStore:
    """A small object store keyed by kind, namespace and name.

    Every object handed out is a deep copy, so callers never share state with
    the store.
    """

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str, str], Resource] = {}
        self._versions = itertools.count(1)

    @staticmethod
    def _key(kind: str, name: str, namespace: str | None) -> tuple[str, str, str]:
        return kind, namespace or "", name

    def _key_of(self, obj: Mapping[str, Any]) -> tuple[str, str, str]:
        meta = _metadata(obj)
        kind = obj.get("kind")
        name = meta.get("name")
        if not kind or not name:
            raise ValueError("object needs a kind and metadata.name")
        return self._key(kind, name, meta.get("namespace"))

    def get(self, kind: str, name: str, namespace: str | None = None) -> Resource:
        """Return a copy of the stored object or raise NotFoundError."""
        try:
            return copy.deepcopy(self._objects[self._key(kind, name, namespace)])
        except KeyError:
            raise NotFoundError(kind, name, namespace or "") from None

    def create(self, obj: Mapping[str, Any]) -> Resource:
        """Store a new object, filling in uid, generation and resourceVersion."""
        key = self._key_of(obj)
        if key in self._objects:
            kind, namespace, name = key
            where = f"{namespace}/{name}" if namespace else name
            raise ValueError(f"{kind} {where} already exists")
        stored = copy.deepcopy(dict(obj))
        meta = stored.setdefault("metadata", {})
        meta.setdefault("uid", str(uuid.uuid4()))
        meta.setdefault("generation", 1)
        meta["resourceVersion"] = str(next(self._versions))
        self._objects[key] = stored
        return copy.deepcopy(stored)

    def update(self, obj: Mapping[str, Any]) -> Resource:
        """Replace an object; its status is kept as stored."""
        key = self._key_of(obj)
        if key not in self._objects:
            kind, namespace, name = key
            raise NotFoundError(kind, name, namespace)
        current = self._objects[key]
        stored = copy.deepcopy(dict(obj))
        if "status" in current:
            stored["status"] = copy.deepcopy(current["status"])
        else:
            stored.pop("status", None)
        meta = stored.setdefault("metadata", {})
        current_meta = current["metadata"]
        meta["uid"] = current_meta.get("uid")
        generation = current_meta.get("generation", 1)
        if self._body(stored) != self._body(current):
            generation += 1
        meta["generation"] = generation
        meta["resourceVersion"] = str(next(self._versions))
        self._objects[key] = stored
        return copy.deepcopy(stored)

    def update_status(self, obj: Mapping[str, Any]) -> Resource:
        """Replace only the status of a stored object."""
        key = self._key_of(obj)
        if key not in self._objects:
            kind, namespace, name = key
            raise NotFoundError(kind, name, namespace)
        stored = self._objects[key]
        stored["status"] = copy.deepcopy(obj.get("status") or {})
        stored["metadata"]["resourceVersion"] = str(next(self._versions))
        return copy.deepcopy(stored)

    def delete(self, kind: str, name: str, namespace: str | None = None) -> None:
        """Remove an object or raise NotFoundError."""
        try:
            del self._objects[self._key(kind, name, namespace)]
        except KeyError:
            raise NotFoundError(kind, name, namespace or "") from None

    def list(
        self,
        kind: str,
        namespace: str | None = None,
        selector: Mapping[str, str] | None = None,
    ) -> list[Resource]:
        """List objects of a kind, optionally by namespace and label selector."""
        found = [
            copy.deepcopy(obj)
            for (obj_kind, obj_ns, _), obj in sorted(self._objects.items())
            if obj_kind == kind
            and (not namespace or obj_ns == namespace)
            and _matches(_metadata(obj).get("labels") or {}, selector)
        ]
        return found

    @staticmethod
    def _body(obj: Mapping[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in obj.items() if k not in ("metadata", "status")}


def controller_ref(owner: Mapping[str, Any]) -> dict[str, Any]:
    """Build a controlling owner reference pointing at ``owner``."""
    meta = _metadata(owner)
    return {
        "apiVersion": owner.get("apiVersion", ""),
        "kind": owner.get("kind", ""),
        "name": meta.get("name", ""),
        "uid": meta.get("uid", ""),
        "controller": True,
        "blockOwnerDeletion": True,
    }


def get_condition(obj: Mapping[str, Any], cond_type: str) -> dict[str, Any] | None:
    """Return the condition of the given type, or None."""
    for condition in (obj.get("status") or {}).get("conditions") or []:
        if condition.get("type") == cond_type:
            return condition
    return None


def set_condition(
    obj: dict[str, Any],
    cond_type: str,
    status: str | None = None,
    reason: str | None = None,
    message: str | None = None,
) -> dict[str, Any]:
    """Create or update a condition in place; None leaves a field unchanged."""
    conditions = obj.setdefault("status", {}).setdefault("conditions", [])
    condition = get_condition(obj, cond_type)
    if condition is None:
        condition = {"type": cond_type, "status": "Unknown", "reason": "", "message": ""}
        conditions.append(condition)
    if status is not None:
        condition["status"] = status
    if reason is not None:
        condition["reason"] = reason
    if message is not None:
        condition["message"] = message
    return condition


Registrar = Callable[[ResourceStore, Any], Any]


def register_all(registrars: Iterable[Registrar], store: ResourceStore, options: Any) -> None:
    """Run every registrar in order; the first failure stops the rest."""
    for registrar in registrars:
        registrar(store, options)