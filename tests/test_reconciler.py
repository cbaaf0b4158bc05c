from datetime import timedelta

import pytest

from applifecycle.api import (
    Application,
    ApplicationIngressSpec,
    ApplicationSpec,
    ApplicationStatus,
)
from applifecycle.client import ApiError, ConflictError, InMemoryClient, NotFoundError
from applifecycle.reconciler import APPLICATION_FINALIZER, ApplicationReconciler, Result

NS = "default"
NAME = "demo"


@pytest.fixture
def client():
    return InMemoryClient()


@pytest.fixture
def reconciler(client):
    return ApplicationReconciler(client)


def _create(client, **spec_kwargs):
    app = Application(
        name=NAME, namespace=NS, spec=ApplicationSpec(image="nginx:1.27", **spec_kwargs)
    )
    client.create(app)
    return app


def _stored(client):
    return client.get("Application", NS, NAME)


def _condition(app, condition_type):
    return next(c for c in app.status.conditions if c.type == condition_type)


def _mark_deployment_available(client, replicas=1):
    dep = client.get("Deployment", NS, f"{NAME}-deployment")
    dep["status"] = {
        "availableReplicas": replicas,
        "updatedReplicas": replicas,
        "replicas": replicas,
    }
    client.update_status(dep)


def test_reconcile_minimal_resource_succeeds(client, reconciler):
    client.create(Application(name="test-resource", namespace=NS))
    result = reconciler.reconcile(NS, "test-resource")
    assert result == Result(requeue=True)
    stored = client.get("Application", NS, "test-resource")
    assert stored.finalizers == [APPLICATION_FINALIZER]


def test_missing_application_is_ignored(reconciler):
    assert reconciler.reconcile(NS, "absent") == Result()


def test_first_pass_persists_defaults(client, reconciler):
    _create(client)
    reconciler.reconcile(NS, NAME)
    stored = _stored(client)
    assert stored.spec.replicas == 1
    assert stored.spec.container_port == 80


def test_second_pass_creates_components_and_requeues(client, reconciler):
    _create(client)
    reconciler.reconcile(NS, NAME)
    result = reconciler.reconcile(NS, NAME)
    assert result == Result(requeue_after=timedelta(seconds=15))

    stored = _stored(client)
    assert stored.status.deployment_name == "demo-deployment"
    assert stored.status.service_name == "demo-service"
    assert stored.status.available_replicas == 0
    assert stored.status.observed_generation == stored.generation

    ready = _condition(stored, "Ready")
    assert ready.status == "False"
    assert ready.reason == "DeploymentProgressing"
    assert ready.message == (
        "Application is not ready: Progressing - "
        "Deployment rollout in progress: updated 0/1, total 0"
    )
    reasons = [event.reason for event in reconciler.recorder.events]
    assert reasons == ["DeploymentCreated", "ServiceCreated"]


def test_ready_once_deployment_is_available(client, reconciler):
    _create(client)
    reconciler.reconcile(NS, NAME)
    reconciler.reconcile(NS, NAME)
    _mark_deployment_available(client)

    assert reconciler.reconcile(NS, NAME) == Result()
    stored = _stored(client)
    assert stored.status.available_replicas == 1
    assert _condition(stored, "Ready").status == "True"
    assert _condition(stored, "Ready").reason == "ComponentsReady"
    assert _condition(stored, "Degraded").status == "False"
    assert _condition(stored, "Available").message == "Application components are available."


def test_zero_replicas_is_ready_immediately(client, reconciler):
    _create(client, replicas=0)
    reconciler.reconcile(NS, NAME)
    assert reconciler.reconcile(NS, NAME) == Result()
    assert _condition(_stored(client), "Ready").status == "True"


def test_ingress_url_recorded(client, reconciler):
    _create(client, ingress=ApplicationIngressSpec(host="app.example.com"))
    reconciler.reconcile(NS, NAME)
    reconciler.reconcile(NS, NAME)
    stored = _stored(client)
    assert stored.status.ingress_name == "demo-ingress"
    assert stored.status.ingress_url == "http://app.example.com/"
    ingress = client.get("Ingress", NS, "demo-ingress")
    assert ingress["spec"]["rules"][0]["host"] == "app.example.com"


def test_ingress_url_uses_https_with_tls(client, reconciler):
    _create(
        client,
        ingress=ApplicationIngressSpec(
            host="app.example.com", path="/api", tls=[{"hosts": ["app.example.com"]}]
        ),
    )
    reconciler.reconcile(NS, NAME)
    reconciler.reconcile(NS, NAME)
    assert _stored(client).status.ingress_url == "https://app.example.com/api"


def test_removing_ingress_spec_deletes_ingress(client, reconciler):
    _create(client, ingress=ApplicationIngressSpec(host="app.example.com"))
    reconciler.reconcile(NS, NAME)
    reconciler.reconcile(NS, NAME)

    app = _stored(client)
    app.spec.ingress = None
    client.update(app)
    reconciler.reconcile(NS, NAME)

    with pytest.raises(NotFoundError):
        client.get("Ingress", NS, "demo-ingress")
    stored = _stored(client)
    assert stored.status.ingress_name == ""
    assert stored.status.ingress_url == ""
    assert reconciler.recorder.events[-1].reason == "IngressDeleted"


def test_deployment_failure_raises_and_marks_degraded(client, reconciler):
    _create(client)
    reconciler.reconcile(NS, NAME)
    client.failures[("create", "Deployment")] = ApiError("boom")

    with pytest.raises(ApiError, match="failed to create Deployment: boom"):
        reconciler.reconcile(NS, NAME)

    stored = _stored(client)
    degraded = _condition(stored, "Degraded")
    assert degraded.status == "True"
    assert degraded.reason == "DeploymentFailed"
    assert degraded.message == "Deployment reconciliation failed: failed to create Deployment: boom"
    assert _condition(stored, "Ready").reason == "DeploymentFailed"
    assert stored.status.deployment_name == ""
    assert stored.status.service_name == "demo-service"


def test_service_failure_blocks_ingress(client, reconciler):
    _create(client, ingress=ApplicationIngressSpec(host="app.example.com"))
    reconciler.reconcile(NS, NAME)
    client.failures[("create", "Service")] = ApiError("boom")

    with pytest.raises(ApiError, match="failed to create Service: boom"):
        reconciler.reconcile(NS, NAME)

    degraded = _condition(_stored(client), "Degraded")
    assert degraded.reason == "IngressError"
    assert degraded.message == (
        "service reconciliation failed, cannot proceed with Ingress: "
        "failed to create Service: boom"
    )
    with pytest.raises(NotFoundError):
        client.get("Ingress", NS, "demo-ingress")


def test_ingress_delete_failure_raises(client, reconciler):
    _create(client)
    reconciler.reconcile(NS, NAME)
    client.failures[("delete", "Ingress")] = ApiError("boom")

    with pytest.raises(ApiError, match="failed to delete Ingress demo-ingress: boom"):
        reconciler.reconcile(NS, NAME)
    degraded = _condition(_stored(client), "Degraded")
    assert degraded.message == "Failed to delete old ingress: failed to delete Ingress demo-ingress: boom"


def test_deletion_removes_finalizer_and_dependents(client, reconciler):
    _create(client)
    reconciler.reconcile(NS, NAME)
    reconciler.reconcile(NS, NAME)
    client.delete("Application", NS, NAME)
    assert _stored(client).deletion_timestamp is not None

    assert reconciler.reconcile(NS, NAME) == Result()
    with pytest.raises(NotFoundError):
        _stored(client)
    with pytest.raises(NotFoundError):
        client.get("Deployment", NS, "demo-deployment")


def test_update_full_status_writes_status(client, reconciler):
    _create(client)
    app = _stored(client)
    desired = ApplicationStatus(deployment_name="demo-deployment")
    assert reconciler.update_full_status(app, desired) is True
    stored = _stored(client)
    assert stored.status.deployment_name == "demo-deployment"
    assert stored.status.observed_generation == app.generation


def test_update_full_status_skips_unchanged(client, reconciler):
    _create(client)
    app = _stored(client)
    app.status = ApplicationStatus(observed_generation=app.generation, service_name="x")
    desired = ApplicationStatus(service_name="x")
    assert reconciler.update_full_status(app, desired) is False
    assert _stored(client).status.service_name == ""


def test_update_full_status_gives_up_after_conflicts(client, reconciler):
    _create(client)
    app = _stored(client)
    client.failures[("update_status", "Application")] = ConflictError("Application", NAME)
    with pytest.raises(ConflictError):
        reconciler.update_full_status(app, ApplicationStatus(service_name="x"))