"""The reconcile loop that drives an Application towards its desired state."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from applifecycle.api import Application, ApplicationStatus
from applifecycle.client import (
    ApiError,
    EventRecorder,
    InMemoryClient,
    NotFoundError,
    retry_on_conflict,
)
from applifecycle.components import (
    ensure_ingress_deleted,
    reconcile_deployment,
    reconcile_ingress,
    reconcile_service,
)
from applifecycle.conditions import (
    CONDITION_AVAILABLE,
    CONDITION_DEGRADED,
    CONDITION_FALSE,
    CONDITION_PROGRESSING,
    CONDITION_TRUE,
    CONDITION_TYPE_READY,
    REASON_COMPONENTS_READY,
    REASON_DEPLOYMENT_FAILED,
    REASON_INGRESS_ERROR,
    REASON_SERVICE_ERROR,
    is_app_ready,
    not_ready_reason,
    set_application_condition,
    update_conditions_from_deployment,
)
from applifecycle.resources import apply_spec_defaults, ingress_url

logger = logging.getLogger(__name__)

APPLICATION_FINALIZER = "apps.example.com/finalizer"
PROGRESSING_REQUEUE_DELAY = timedelta(seconds=15)
NOT_READY_REQUEUE_DELAY = timedelta(seconds=30)

_ReconcileError = (ApiError, ValueError)


@dataclass(frozen=True)
class Result:
    """What the reconcile loop asks of the work queue after one pass."""

    requeue: bool = False
    requeue_after: timedelta = timedelta(0)


class ApplicationReconciler:
    """Reconciles Application resources held in ``client``."""

    def __init__(self, client: InMemoryClient, recorder: EventRecorder | None = None):
        self.client = client
        self.recorder = recorder if recorder is not None else EventRecorder()

    def update_full_status(
        self, app: Application, desired_status: ApplicationStatus
    ) -> bool:
        """Write ``desired_status`` to the stored resource, retrying on conflict.

        Returns ``False`` when the status is unchanged and nothing was written.
        """
        desired_status.observed_generation = app.generation
        if app.status == desired_status:
            logger.debug("Status of application %s is unchanged, skipping update", app.name)
            return False

        def attempt() -> None:
            latest = self.client.get(Application.KIND, app.namespace, app.name)
            latest.status = copy.deepcopy(desired_status)
            self.client.update_status(latest)

        try:
            retry_on_conflict(attempt)
        except ApiError:
            logger.error("Failed to update status of application %s after retries", app.name)
            raise
        logger.info("Successfully updated status of application %s", app.name)
        return True

    def _handle_finalizer(self, app: Application) -> Result | None:
        """Add or remove the finalizer; return a result when the pass ends here."""
        if app.deletion_timestamp is None:
            if APPLICATION_FINALIZER in app.finalizers:
                return None
            logger.info("Adding finalizer to application %s", app.name)
            app.finalizers.append(APPLICATION_FINALIZER)
            self.client.update(app)
            return Result(requeue=True)
        if APPLICATION_FINALIZER in app.finalizers:
            logger.info("Application %s is being deleted, performing cleanup", app.name)
            app.finalizers = [f for f in app.finalizers if f != APPLICATION_FINALIZER]
            self.client.update(app)
            logger.info("Finalizer removed from application %s", app.name)
        return Result()

    def reconcile(self, namespace: str, name: str) -> Result:
        """Run one reconcile pass for the named Application.

        Errors from the managed components are raised after the status has
        been written.
        """
        logger.info("Reconciling application %s/%s", namespace, name)
        try:
            app = self.client.get(Application.KIND, namespace, name)
        except NotFoundError:
            logger.info("Application %s/%s not found; it must have been deleted", namespace, name)
            return Result()

        status = copy.deepcopy(app.status)
        needs_update = False
        if status.conditions is None:
            status.conditions = []
            needs_update = True

        apply_spec_defaults(app)

        finished = self._handle_finalizer(app)
        if finished is not None:
            return finished

        generation = app.generation
        if status.observed_generation != generation:
            status.observed_generation = generation
            needs_update = True

        def condition(condition_type: str, condition_status: str, reason: str, message: str) -> None:
            nonlocal needs_update
            if set_application_condition(
                status, condition_type, condition_status, reason, message, generation
            ):
                needs_update = True

        def assign(attr: str, value: Any) -> None:
            nonlocal needs_update
            if getattr(status, attr) != value:
                setattr(status, attr, value)
                needs_update = True

        deployment: dict[str, Any] | None = None
        deployment_err: Exception | None = None
        try:
            deployment = reconcile_deployment(self.client, self.recorder, app)
        except _ReconcileError as err:
            deployment_err = err
            logger.error("Failed to reconcile Deployment: %s", err)
            message = f"Deployment reconciliation failed: {err}"
            condition(CONDITION_DEGRADED, CONDITION_TRUE, REASON_DEPLOYMENT_FAILED, message)
            condition(CONDITION_AVAILABLE, CONDITION_FALSE, REASON_DEPLOYMENT_FAILED, message)
            condition(CONDITION_PROGRESSING, CONDITION_FALSE, REASON_DEPLOYMENT_FAILED, message)
            assign("deployment_name", "")
            assign("available_replicas", 0)
        else:
            dep_status = deployment.get("status") or {}
            assign("deployment_name", deployment["metadata"]["name"])
            assign("available_replicas", int(dep_status.get("availableReplicas", 0) or 0))
            if update_conditions_from_deployment(deployment, status, generation):
                needs_update = True

        service: dict[str, Any] | None = None
        service_err: Exception | None = None
        try:
            service = reconcile_service(self.client, self.recorder, app)
        except _ReconcileError as err:
            service_err = err
            logger.error("Failed to reconcile Service: %s", err)
            condition(
                CONDITION_DEGRADED, CONDITION_TRUE, REASON_SERVICE_ERROR,
                f"Service reconciliation failed: {err}",
            )
            assign("service_name", "")
        else:
            assign("service_name", service["metadata"]["name"])

        ingress_err: Exception | None = None
        if app.spec.ingress is not None:
            if service_err is not None or service is None:
                ingress_err = ApiError(
                    f"service reconciliation failed, cannot proceed with Ingress: {service_err}"
                )
                ingress_err.__cause__ = service_err
                logger.error("Prerequisite for Ingress not met: %s", ingress_err)
                condition(CONDITION_DEGRADED, CONDITION_TRUE, REASON_INGRESS_ERROR, str(ingress_err))
            else:
                try:
                    ingress = reconcile_ingress(
                        self.client, self.recorder, app, service["metadata"]["name"]
                    )
                except _ReconcileError as err:
                    ingress_err = err
                    logger.error("Failed to reconcile Ingress: %s", err)
                    condition(
                        CONDITION_DEGRADED, CONDITION_TRUE, REASON_INGRESS_ERROR,
                        f"Ingress reconciliation failed: {err}",
                    )
                    assign("ingress_name", "")
                    assign("ingress_url", "")
                else:
                    assign("ingress_name", ingress["metadata"]["name"])
                    assign("ingress_url", ingress_url(ingress))
        else:
            try:
                ensure_ingress_deleted(self.client, self.recorder, app)
            except _ReconcileError as err:
                ingress_err = err
                logger.error("Failed to ensure Ingress is deleted: %s", err)
                condition(
                    CONDITION_DEGRADED, CONDITION_TRUE, REASON_INGRESS_ERROR,
                    f"Failed to delete old ingress: {err}",
                )
            assign("ingress_name", "")
            assign("ingress_url", "")

        if is_app_ready(status):
            condition(
                CONDITION_TYPE_READY, CONDITION_TRUE, REASON_COMPONENTS_READY,
                "Application is fully provisioned and ready.",
            )
            condition(
                CONDITION_AVAILABLE, CONDITION_TRUE, REASON_COMPONENTS_READY,
                "Application components are available.",
            )
            condition(
                CONDITION_PROGRESSING, CONDITION_TRUE, REASON_COMPONENTS_READY,
                "Application deployment is stable and complete.",
            )
            condition(
                CONDITION_DEGRADED, CONDITION_FALSE, REASON_COMPONENTS_READY,
                "Application is not degraded.",
            )
        else:
            reason, message = not_ready_reason(status)
            condition(CONDITION_TYPE_READY, CONDITION_FALSE, reason, message)

        if needs_update:
            self.update_full_status(app, status)
        else:
            logger.debug("No status changes required for application %s", app.name)

        for err in (deployment_err, service_err, ingress_err):
            if err is not None:
                raise err

        if is_app_ready(status):
            return Result()

        still_progressing = any(
            cond.type == CONDITION_PROGRESSING and cond.status == CONDITION_FALSE
            for cond in status.conditions or []
        )
        desired_replicas = app.spec.replicas or 0
        available = (
            int((deployment.get("status") or {}).get("availableReplicas", 0) or 0)
            if deployment is not None
            else None
        )
        if (available is not None and available < desired_replicas) or still_progressing:
            delay = PROGRESSING_REQUEUE_DELAY
            logger.info(
                "Application %s not fully ready (desired %d, available %d, progressing %s); "
                "requeuing after %s",
                app.name, desired_replicas, status.available_replicas, still_progressing, delay,
            )
        else:
            delay = NOT_READY_REQUEUE_DELAY
            logger.info("Application %s not fully ready; requeuing after %s", app.name, delay)
        return Result(requeue_after=delay)