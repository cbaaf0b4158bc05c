"""Create, update and delete the Deployment, Service and Ingress of an Application."""

from __future__ import annotations

import copy
import logging
from typing import Any, Callable

from applifecycle.api import Application
from applifecycle.client import (
    EVENT_TYPE_NORMAL,
    EVENT_TYPE_WARNING,
    PROPAGATION_FOREGROUND,
    ApiError,
    EventRecorder,
    InMemoryClient,
    NotFoundError,
    retry_on_conflict,
)
from applifecycle.conditions import (
    REASON_DEPLOYMENT_CREATED,
    REASON_DEPLOYMENT_FAILED,
    REASON_DEPLOYMENT_UPDATED,
    REASON_INGRESS_CREATED,
    REASON_INGRESS_DELETED,
    REASON_INGRESS_ERROR,
    REASON_INGRESS_UPDATED,
    REASON_SERVICE_CREATED,
    REASON_SERVICE_ERROR,
    REASON_SERVICE_UPDATED,
)
from applifecycle.resources import (
    INGRESS_SUFFIX,
    SERVICE_TYPE_CLUSTER_IP,
    desired_deployment,
    desired_ingress,
    desired_service,
)

logger = logging.getLogger(__name__)

Merge = Callable[[dict[str, Any], dict[str, Any]], bool]


def _wrap(message: str, err: ApiError) -> ApiError:
    """An error with ``message`` prefixed, keeping the reason and code of ``err``."""
    return ApiError(f"{message}: {err}", reason=err.reason, code=err.code)


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("metadata") or {}


def _labels(obj: dict[str, Any]) -> dict[str, str]:
    return _metadata(obj).get("labels") or {}


def _annotations(obj: dict[str, Any]) -> dict[str, str]:
    return _metadata(obj).get("annotations") or {}


def _spec(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("spec") or {}


_FIELDS: dict[str, Callable[[dict[str, Any]], Any]] = {
    "spec": _spec,
    "labels": _labels,
    "annotations": _annotations,
}


def _merge_labels(current: dict[str, Any], desired: dict[str, Any]) -> bool:
    if _labels(current) == _labels(desired):
        return False
    current.setdefault("metadata", {})["labels"] = copy.deepcopy(_labels(desired))
    return True


def _merge_deployment(current: dict[str, Any], desired: dict[str, Any]) -> bool:
    changed = False
    spec = current.setdefault("spec", {})
    want = desired["spec"]
    if spec.get("replicas") != want.get("replicas"):
        spec["replicas"] = want.get("replicas")
        changed = True

    template = spec.get("template") or {}
    want_template = want["template"]
    if template.get("spec") != want_template["spec"]:
        template["spec"] = copy.deepcopy(want_template["spec"])
        spec["template"] = template
        changed = True
    template_labels = (template.get("metadata") or {}).get("labels") or {}
    want_template_labels = want_template["metadata"]["labels"]
    if template_labels != want_template_labels:
        template.setdefault("metadata", {})["labels"] = copy.deepcopy(want_template_labels)
        spec["template"] = template
        changed = True

    if _merge_labels(current, desired):
        changed = True

    annotations = dict(_annotations(current))
    for key, value in _annotations(desired).items():
        if annotations.get(key) != value:
            annotations[key] = value
            changed = True
    if annotations != _annotations(current):
        current.setdefault("metadata", {})["annotations"] = annotations
    return changed


def _merge_service(current: dict[str, Any], desired: dict[str, Any]) -> bool:
    changed = False
    spec = current.setdefault("spec", {})
    want = desired["spec"]
    if spec.get("type") != SERVICE_TYPE_CLUSTER_IP:
        spec["type"] = SERVICE_TYPE_CLUSTER_IP
        changed = True
    if spec.get("ports") != want["ports"]:
        spec["ports"] = copy.deepcopy(want["ports"])
        changed = True
    if spec.get("selector") != want["selector"]:
        spec["selector"] = copy.deepcopy(want["selector"])
        changed = True
    if _merge_labels(current, desired):
        changed = True
    # The allocated cluster IP is left untouched so the update keeps it.
    return changed


def _merge_ingress(current: dict[str, Any], desired: dict[str, Any]) -> bool:
    changed = False
    if _spec(current) != desired["spec"]:
        current["spec"] = copy.deepcopy(desired["spec"])
        changed = True
    if _merge_labels(current, desired):
        changed = True
    if _annotations(current) != _annotations(desired):
        meta = current.setdefault("metadata", {})
        if _annotations(desired):
            meta["annotations"] = dict(_annotations(desired))
        else:
            meta.pop("annotations", None)
        changed = True
    return changed


def _create_or_update(
    client: InMemoryClient,
    recorder: EventRecorder,
    app: Application,
    desired: dict[str, Any],
    *,
    failed_reason: str,
    created_reason: str,
    updated_reason: str,
    merge: Merge,
    compared: tuple[str, ...],
    refetch_message: str,
) -> dict[str, Any]:
    kind = desired["kind"]
    namespace = desired["metadata"]["namespace"]
    name = desired["metadata"]["name"]

    try:
        found = client.get(kind, namespace, name)
    except NotFoundError:
        logger.info("Creating a new %s %s/%s", kind, namespace, name)
        try:
            client.create(desired)
        except ApiError as err:
            recorder.eventf(
                app, EVENT_TYPE_WARNING, failed_reason,
                f"Failed to create {kind} %s: %s", name, err,
            )
            raise _wrap(f"failed to create {kind}", err) from err
        recorder.eventf(
            app, EVENT_TYPE_NORMAL, created_reason,
            f"Created {kind} %s/%s", namespace, name,
        )
        return desired
    except ApiError as err:
        raise _wrap(f"failed to get {kind}", err) from err

    def attempt() -> dict[str, Any]:
        try:
            current = client.get(kind, namespace, name)
        except ApiError as err:
            raise _wrap(refetch_message, err) from err
        if not merge(current, desired):
            logger.debug("%s %s is already in desired state", kind, name)
            return current
        logger.info("Attempting to update existing %s %s", kind, name)
        client.update(current)
        return current

    try:
        updated = retry_on_conflict(attempt)
    except ApiError as err:
        recorder.eventf(
            app, EVENT_TYPE_WARNING, failed_reason,
            f"Failed to update {kind} %s after retries: %s", name, err,
        )
        raise _wrap(f"failed to update {kind} '{name}' after retries", err) from err

    if any(_FIELDS[item](found) != _FIELDS[item](updated) for item in compared):
        meta = _metadata(updated)
        recorder.eventf(
            app, EVENT_TYPE_NORMAL, updated_reason,
            f"Updated {kind} %s/%s", meta.get("namespace", ""), meta.get("name", ""),
        )
    else:
        logger.debug("%s %s/%s confirmed up-to-date", kind, namespace, name)
    return updated


def reconcile_deployment(
    client: InMemoryClient, recorder: EventRecorder, app: Application
) -> dict[str, Any]:
    """Create the application's Deployment or bring it to the desired state."""
    desired = desired_deployment(app)
    return _create_or_update(
        client, recorder, app, desired,
        failed_reason=REASON_DEPLOYMENT_FAILED,
        created_reason=REASON_DEPLOYMENT_CREATED,
        updated_reason=REASON_DEPLOYMENT_UPDATED,
        merge=_merge_deployment,
        compared=("spec", "labels", "annotations"),
        refetch_message="failed to re-fetch Deployment during update retry",
    )


def reconcile_service(
    client: InMemoryClient, recorder: EventRecorder, app: Application
) -> dict[str, Any]:
    """Create the application's ClusterIP Service or bring it to the desired state."""
    desired = desired_service(app)
    name = desired["metadata"]["name"]
    return _create_or_update(
        client, recorder, app, desired,
        failed_reason=REASON_SERVICE_ERROR,
        created_reason=REASON_SERVICE_CREATED,
        updated_reason=REASON_SERVICE_UPDATED,
        merge=_merge_service,
        compared=("spec", "labels"),
        refetch_message=f"failed to re-fetch Service '{name}' during update retry",
    )


def reconcile_ingress(
    client: InMemoryClient, recorder: EventRecorder, app: Application, service_name: str
) -> dict[str, Any]:
    """Create the application's Ingress or bring it to the desired state."""
    desired = desired_ingress(app, service_name)
    name = desired["metadata"]["name"]
    return _create_or_update(
        client, recorder, app, desired,
        failed_reason=REASON_INGRESS_ERROR,
        created_reason=REASON_INGRESS_CREATED,
        updated_reason=REASON_INGRESS_UPDATED,
        merge=_merge_ingress,
        compared=("spec", "labels", "annotations"),
        refetch_message=f"failed to re-fetch Ingress '{name}' during update retry",
    )


def ensure_ingress_deleted(
    client: InMemoryClient, recorder: EventRecorder, app: Application
) -> None:
    """Delete the application's Ingress; an Ingress that is already gone is fine."""
    name = app.name + INGRESS_SUFFIX
    try:
        client.delete("Ingress", app.namespace, name, PROPAGATION_FOREGROUND)
    except NotFoundError:
        logger.info("Ingress %s was not found (already deleted or never created)", name)
        return
    except ApiError as err:
        recorder.eventf(
            app, EVENT_TYPE_WARNING, REASON_INGRESS_ERROR,
            "Failed to delete Ingress %s: %s", name, err,
        )
        raise _wrap(f"failed to delete Ingress {name}", err) from err
    logger.info("Ingress %s deleted successfully", name)
    recorder.eventf(
        app, EVENT_TYPE_NORMAL, REASON_INGRESS_DELETED,
        "Ingress %s/%s deleted as spec.ingress is nil", app.namespace, name,
    )