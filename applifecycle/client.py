"""An in-memory object store with API-server semantics, and an event recorder.

Objects are either :class:`~applifecycle.api.Application` instances or plain
dictionaries in the JSON form of built-in kinds such as Deployment, Service
and Ingress.
"""

from __future__ import annotations

import copy
import itertools
import random
import time
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Callable, TypeVar, Union

from applifecycle.api import Application

Resource = Union[Application, "dict[str, Any]"]

T = TypeVar("T")

EVENT_TYPE_NORMAL = "Normal"
EVENT_TYPE_WARNING = "Warning"

PROPAGATION_FOREGROUND = "Foreground"
PROPAGATION_BACKGROUND = "Background"
PROPAGATION_ORPHAN = "Orphan"

DEFAULT_RETRY_STEPS = 5
DEFAULT_RETRY_DELAY = 0.01
DEFAULT_RETRY_JITTER = 0.1


class ApiError(Exception):
    """An error reported by the object store."""

    def __init__(self, message: str, reason: str = "InternalError", code: int = 500):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.code = code


class NotFoundError(ApiError):
    """The requested object does not exist."""

    def __init__(self, kind: str, name: str):
        super().__init__(f'{kind} "{name}" not found', reason="NotFound", code=404)
        self.kind = kind
        self.name = name


class ConflictError(ApiError):
    """The object was modified since the caller read it."""

    def __init__(self, kind: str, name: str):
        super().__init__(
            f'Operation cannot be fulfilled on {kind} "{name}": the object has been '
            "modified; please apply your changes to the latest version and try again",
            reason="Conflict",
            code=409,
        )
        self.kind = kind
        self.name = name


def _caused_by(exc: BaseException | None, error_type: type[BaseException]) -> bool:
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        if isinstance(exc, error_type):
            return True
        seen.add(id(exc))
        exc = exc.__cause__
    return False


def retry_on_conflict(func: Callable[[], T], attempts: int = DEFAULT_RETRY_STEPS) -> T:
    """Call ``func`` until it stops failing with a conflict.

    Errors that are not conflicts (directly or through ``__cause__``) are
    raised at once; after ``attempts`` conflicts the last one is raised.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    for attempt in range(attempts):
        try:
            return func()
        except Exception as exc:
            if not _caused_by(exc, ConflictError) or attempt == attempts - 1:
                raise
        time.sleep(DEFAULT_RETRY_DELAY * (1 + random.random() * DEFAULT_RETRY_JITTER))
    raise AssertionError("unreachable")


def _identity(obj: Resource) -> tuple[str, str, str]:
    if isinstance(obj, Application):
        return obj.kind, obj.namespace, obj.name
    meta = obj.get("metadata") or {}
    return obj.get("kind", ""), meta.get("namespace", ""), meta.get("name", "")


@dataclass(frozen=True)
class Event:
    """An event recorded against an object."""

    kind: str
    namespace: str
    name: str
    type: str
    reason: str
    message: str


@dataclass
class EventRecorder:
    """Collects events emitted by a controller."""

    component: str = "application-controller"
    events: list[Event] = field(default_factory=list)

    def eventf(
        self, obj: Resource, event_type: str, reason: str, message_format: str, *args: Any
    ) -> Event:
        """Record an event whose message is ``message_format % args``."""
        if event_type not in (EVENT_TYPE_NORMAL, EVENT_TYPE_WARNING):
            raise ValueError(f"unsupported event type: {event_type!r}")
        kind, namespace, name = _identity(obj)
        message = message_format % args if args else message_format
        event = Event(kind, namespace, name, event_type, reason, message)
        self.events.append(event)
        return event


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def _timestamp() -> str:
    return _now().strftime("%Y-%m-%dT%H:%M:%SZ")


def _meta(obj: dict[str, Any]) -> dict[str, Any]:
    meta = obj.get("metadata")
    if meta is None:
        meta = obj["metadata"] = {}
    return meta


def _resource_version(obj: Resource) -> str:
    if isinstance(obj, Application):
        return obj.resource_version
    return _meta(obj).get("resourceVersion", "")


def _set_resource_version(obj: Resource, version: str) -> None:
    if isinstance(obj, Application):
        obj.resource_version = version
    else:
        _meta(obj)["resourceVersion"] = version


def _uid(obj: Resource) -> str:
    if isinstance(obj, Application):
        return obj.uid
    return _meta(obj).get("uid", "")


def _finalizers(obj: Resource) -> list[str]:
    if isinstance(obj, Application):
        return list(obj.finalizers)
    return list(_meta(obj).get("finalizers") or [])


def _is_deleting(obj: Resource) -> bool:
    if isinstance(obj, Application):
        return obj.deletion_timestamp is not None
    return bool(_meta(obj).get("deletionTimestamp"))


def _mark_deleting(obj: Resource) -> None:
    if isinstance(obj, Application):
        obj.deletion_timestamp = _now()
    else:
        _meta(obj)["deletionTimestamp"] = _timestamp()


def _spec(obj: Resource) -> Any:
    if isinstance(obj, Application):
        return obj.spec
    return obj.get("spec")


def _generation(obj: Resource) -> int:
    if isinstance(obj, Application):
        return obj.generation
    return int(_meta(obj).get("generation", 0) or 0)


def _set_generation(obj: Resource, generation: int) -> None:
    if isinstance(obj, Application):
        obj.generation = generation
    else:
        _meta(obj)["generation"] = generation


def _owner_uids(obj: Resource) -> set[str]:
    if isinstance(obj, Application):
        return set()
    refs = _meta(obj).get("ownerReferences") or []
    return {ref.get("uid", "") for ref in refs}


def _initialise(obj: Resource, uid: str, version: str) -> None:
    """Set the server-assigned fields of a newly created object."""
    if isinstance(obj, Application):
        obj.uid = uid
        obj.creation_timestamp = _now()
        obj.deletion_timestamp = None
        obj.generation = 1
        obj.resource_version = version
        obj.status = type(obj.status)()
    else:
        meta = _meta(obj)
        meta["uid"] = uid
        meta["creationTimestamp"] = _timestamp()
        meta.pop("deletionTimestamp", None)
        meta["generation"] = 1
        meta["resourceVersion"] = version
        obj.pop("status", None)


def _keep_server_fields(new: Resource, stored: Resource, *, keep_status: bool) -> None:
    """Copy the fields a client may not change from ``stored`` onto ``new``."""
    if isinstance(new, Application) and isinstance(stored, Application):
        new.uid = stored.uid
        new.creation_timestamp = stored.creation_timestamp
        new.deletion_timestamp = stored.deletion_timestamp
        if keep_status:
            new.status = copy.deepcopy(stored.status)
        return
    new_meta = _meta(new)
    stored_meta = _meta(stored)
    for key in ("uid", "creationTimestamp", "deletionTimestamp"):
        if key in stored_meta:
            new_meta[key] = stored_meta[key]
        else:
            new_meta.pop(key, None)
    if keep_status:
        if "status" in stored:
            new["status"] = copy.deepcopy(stored["status"])
        else:
            new.pop("status", None)


def _sync(target: Resource, source: Resource) -> None:
    """Make ``target`` hold the state of ``source``, as a decoded response would."""
    if isinstance(target, Application) and isinstance(source, Application):
        for item in fields(Application):
            setattr(target, item.name, copy.deepcopy(getattr(source, item.name)))
    else:
        target.clear()
        target.update(copy.deepcopy(source))


class InMemoryClient:
    """A namespaced object store with optimistic concurrency, finalizers and
    garbage collection through owner references.

    ``failures`` maps ``(verb, kind)`` to an exception that the matching call
    raises instead of doing its work; verbs are ``get``, ``create``,
    ``update``, ``update_status`` and ``delete``.
    """

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str, str], Resource] = {}
        self._versions = itertools.count(1)
        self.failures: dict[tuple[str, str], Exception] = {}

    def _check_failure(self, verb: str, kind: str) -> None:
        failure = self.failures.get((verb, kind))
        if failure is not None:
            raise failure

    def _next_version(self) -> str:
        return str(next(self._versions))

    def _stored(self, kind: str, namespace: str, name: str) -> Resource:
        try:
            return self._objects[(kind, namespace, name)]
        except KeyError:
            raise NotFoundError(kind, name) from None

    def _check_version(self, obj: Resource, stored: Resource) -> None:
        version = _resource_version(obj)
        if version and version != _resource_version(stored):
            kind, _, name = _identity(obj)
            raise ConflictError(kind, name)

    def get(self, kind: str, namespace: str, name: str) -> Resource:
        """Return a copy of the stored object."""
        self._check_failure("get", kind)
        return copy.deepcopy(self._stored(kind, namespace, name))

    def create(self, obj: Resource) -> Resource:
        """Store a new object and fill in its server-assigned fields."""
        kind, namespace, name = _identity(obj)
        self._check_failure("create", kind)
        if not kind or not name:
            raise ApiError("kind and metadata.name are required", reason="Invalid", code=422)
        key = (kind, namespace, name)
        if key in self._objects:
            raise ApiError(
                f'{kind} "{name}" already exists', reason="AlreadyExists", code=409
            )
        stored = copy.deepcopy(obj)
        _initialise(stored, str(uuid.uuid4()), self._next_version())
        self._objects[key] = stored
        _sync(obj, stored)
        return obj

    def update(self, obj: Resource) -> Resource:
        """Replace everything but the status of an existing object."""
        kind, namespace, name = _identity(obj)
        self._check_failure("update", kind)
        stored = self._stored(kind, namespace, name)
        self._check_version(obj, stored)
        new = copy.deepcopy(obj)
        _keep_server_fields(new, stored, keep_status=True)
        generation = _generation(stored)
        if _spec(new) != _spec(stored):
            generation += 1
        _set_generation(new, generation)
        _set_resource_version(new, self._next_version())
        key = (kind, namespace, name)
        if _is_deleting(new) and not _finalizers(new):
            self._remove(key, PROPAGATION_BACKGROUND)
        else:
            self._objects[key] = new
        _sync(obj, new)
        return obj

    def update_status(self, obj: Resource) -> Resource:
        """Replace only the status of an existing object."""
        kind, namespace, name = _identity(obj)
        self._check_failure("update_status", kind)
        stored = self._stored(kind, namespace, name)
        self._check_version(obj, stored)
        new = copy.deepcopy(stored)
        if isinstance(new, Application) and isinstance(obj, Application):
            new.status = copy.deepcopy(obj.status)
        elif "status" in obj:
            new["status"] = copy.deepcopy(obj["status"])
        else:
            new.pop("status", None)
        _set_resource_version(new, self._next_version())
        self._objects[(kind, namespace, name)] = new
        _sync(obj, new)
        return obj

    def delete(
        self,
        kind: str,
        namespace: str,
        name: str,
        propagation_policy: str | None = None,
    ) -> None:
        """Delete an object, or mark it for deletion while finalizers remain."""
        self._check_failure("delete", kind)
        if propagation_policy not in (
            None,
            PROPAGATION_FOREGROUND,
            PROPAGATION_BACKGROUND,
            PROPAGATION_ORPHAN,
        ):
            raise ApiError(
                f"unknown propagation policy {propagation_policy!r}",
                reason="BadRequest",
                code=400,
            )
        self._stored(kind, namespace, name)
        self._delete_key((kind, namespace, name), propagation_policy or PROPAGATION_BACKGROUND)

    def _delete_key(self, key: tuple[str, str, str], policy: str) -> None:
        stored = self._objects[key]
        if _finalizers(stored):
            if not _is_deleting(stored):
                _mark_deleting(stored)
                _set_resource_version(stored, self._next_version())
            return
        self._remove(key, policy)

    def _remove(self, key: tuple[str, str, str], policy: str) -> None:
        stored = self._objects.pop(key)
        if policy == PROPAGATION_ORPHAN:
            return
        uid = _uid(stored)
        if not uid:
            return
        dependents = [
            other_key
            for other_key, other in self._objects.items()
            if uid in _owner_uids(other)
        ]
        for other_key in dependents:
            if other_key in self._objects:
                self._delete_key(other_key, policy)