"""Status conditions of an Application and how they are derived."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from applifecycle.api import ApplicationStatus, Condition

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"
CONDITION_UNKNOWN = "Unknown"

CONDITION_TYPE_READY = "Ready"
CONDITION_AVAILABLE = "Available"
CONDITION_PROGRESSING = "Progressing"
CONDITION_DEGRADED = "Degraded"

REASON_COMPONENTS_READY = "ComponentsReady"
REASON_COMPONENTS_NOT_READY = "ComponentsNotReady"
REASON_DEPLOYMENT_CREATED = "DeploymentCreated"
REASON_DEPLOYMENT_UPDATED = "DeploymentUpdated"
REASON_DEPLOYMENT_PROGRESSING = "DeploymentProgressing"
REASON_DEPLOYMENT_ROLLED_OUT = "DeploymentRolledOut"
REASON_DEPLOYMENT_FAILED = "DeploymentFailed"
REASON_SERVICE_CREATED = "ServiceCreated"
REASON_SERVICE_UPDATED = "ServiceUpdated"
REASON_SERVICE_ERROR = "ServiceError"
REASON_INGRESS_CREATED = "IngressCreated"
REASON_INGRESS_UPDATED = "IngressUpdated"
REASON_INGRESS_DELETED = "IngressDeleted"
REASON_INGRESS_ERROR = "IngressError"

REASON_MINIMUM_REPLICAS_AVAILABLE = "MinimumReplicasAvailable"
DEPLOYMENT_PROGRESSING = "Progressing"
NEW_REPLICA_SET_AVAILABLE = "NewReplicaSetAvailable"

NOT_READY_MESSAGE = "Application is not yet ready; see other conditions for details."


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(microsecond=0)


def set_application_condition(
    status: ApplicationStatus,
    condition_type: str,
    condition_status: str,
    reason: str,
    message: str,
    observed_generation: int,
) -> bool:
    """Set a condition on ``status``; return whether anything changed.

    An existing condition of the same type is replaced in place unless its
    status, reason, message and observed generation already match.
    """
    new_condition = Condition(
        type=condition_type,
        status=condition_status,
        reason=reason,
        message=message,
        last_transition_time=_now(),
        observed_generation=observed_generation,
    )
    if status.conditions is None:
        status.conditions = []
    for index, existing in enumerate(status.conditions):
        if existing.type != condition_type:
            continue
        if (
            existing.status == condition_status
            and existing.reason == reason
            and existing.message == message
            and existing.observed_generation == observed_generation
        ):
            return False
        status.conditions[index] = new_condition
        return True
    status.conditions.append(new_condition)
    return True


def update_conditions_from_deployment(
    deployment: dict[str, Any], status: ApplicationStatus, observed_generation: int
) -> bool:
    """Derive the Available and Progressing conditions from a Deployment.

    ``deployment`` is the Deployment object in its JSON form.
    """
    spec = deployment.get("spec") or {}
    dep_status = deployment.get("status") or {}
    desired = spec.get("replicas")
    desired = 0 if desired is None else int(desired)
    available = int(dep_status.get("availableReplicas", 0) or 0)
    updated = int(dep_status.get("updatedReplicas", 0) or 0)
    total = int(dep_status.get("replicas", 0) or 0)

    changed = False

    available_status = CONDITION_FALSE
    available_reason = REASON_COMPONENTS_NOT_READY
    available_message = f"Deployment has {available}/{desired} available replicas."
    if available >= desired:
        available_status = CONDITION_TRUE
        available_reason = REASON_MINIMUM_REPLICAS_AVAILABLE
    if set_application_condition(
        status,
        CONDITION_AVAILABLE,
        available_status,
        available_reason,
        available_message,
        observed_generation,
    ):
        changed = True

    progressing = next(
        (
            cond
            for cond in dep_status.get("conditions") or []
            if cond.get("type") == DEPLOYMENT_PROGRESSING
        ),
        None,
    )
    progressing_status = CONDITION_FALSE
    if progressing is not None:
        if (
            progressing.get("status") == CONDITION_TRUE
            and progressing.get("reason") == NEW_REPLICA_SET_AVAILABLE
        ):
            progressing_status = CONDITION_TRUE
            progressing_message = (
                "Deployment rollout completed and new replica set is available."
            )
        else:
            progressing_message = (
                f"Deployment progressing: {progressing.get('message', '')}"
            )
    elif updated < desired or total > updated:
        progressing_message = (
            f"Deployment rollout in progress: updated {updated}/{desired}, total {total}"
        )
    elif available < desired:
        progressing_message = (
            f"Deployment rollout appears complete but waiting for {desired} "
            f"available replicas (currently {available})."
        )
    else:
        progressing_status = CONDITION_TRUE
        progressing_message = (
            "Deployment rollout appears complete and all replicas available."
        )
    if set_application_condition(
        status,
        CONDITION_PROGRESSING,
        progressing_status,
        REASON_DEPLOYMENT_PROGRESSING,
        progressing_message,
        observed_generation,
    ):
        changed = True
    return changed


def _has(status: ApplicationStatus, condition_type: str, condition_status: str) -> bool:
    return any(
        cond.type == condition_type and cond.status == condition_status
        for cond in status.conditions or []
    )


def is_app_ready(status: ApplicationStatus) -> bool:
    """True when Available and Progressing are True and Degraded is not."""
    return (
        _has(status, CONDITION_AVAILABLE, CONDITION_TRUE)
        and _has(status, CONDITION_PROGRESSING, CONDITION_TRUE)
        and not _has(status, CONDITION_DEGRADED, CONDITION_TRUE)
    )


def not_ready_reason(status: ApplicationStatus) -> tuple[str, str]:
    """Return the reason and message for a Ready condition that is False.

    A True Degraded condition is preferred, then a False Progressing, then a
    False Available; otherwise a generic reason is returned.
    """
    checks = (
        (CONDITION_DEGRADED, CONDITION_TRUE, "Degraded"),
        (CONDITION_PROGRESSING, CONDITION_FALSE, "Progressing"),
        (CONDITION_AVAILABLE, CONDITION_FALSE, "Not Available"),
    )
    conditions = status.conditions or []
    for condition_type, condition_status, label in checks:
        for cond in conditions:
            if cond.type == condition_type and cond.status == condition_status:
                return cond.reason, f"Application is not ready: {label} - {cond.message}"
    return REASON_COMPONENTS_NOT_READY, NOT_READY_MESSAGE