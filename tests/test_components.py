import pytest

from applifecycle.api import (
    Application,
    ApplicationIngressSpec,
    ApplicationServiceSpec,
    ApplicationSpec,
)
from applifecycle.client import (
    EVENT_TYPE_NORMAL,
    EVENT_TYPE_WARNING,
    ApiError,
    ConflictError,
    EventRecorder,
    InMemoryClient,
    NotFoundError,
)
from applifecycle.components import (
    ensure_ingress_deleted,
    reconcile_deployment,
    reconcile_ingress,
    reconcile_service,
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
    REASON_SERVICE_UPDATED,
)
from applifecycle.resources import (
    DEPLOYMENT_SUFFIX,
    INGRESS_SUFFIX,
    SERVICE_SUFFIX,
    SERVICE_TYPE_CLUSTER_IP,
    apply_spec_defaults,
    ingress_url,
)


@pytest.fixture
def client():
    return InMemoryClient()


@pytest.fixture
def recorder():
    return EventRecorder()


def make_app(client, **spec_kwargs):
    app = Application(
        name="web",
        namespace="default",
        spec=ApplicationSpec(image="nginx:1.25", **spec_kwargs),
    )
    client.create(app)
    apply_spec_defaults(app)
    return app


def stored(client, kind, name):
    return client.get(kind, "default", name)


def test_deployment_is_created(client, recorder):
    app = make_app(client)
    result = reconcile_deployment(client, recorder, app)
    name = app.name + DEPLOYMENT_SUFFIX
    found = stored(client, "Deployment", name)
    assert result["metadata"]["name"] == name
    assert found["spec"]["template"]["spec"]["containers"][0]["image"] == "nginx:1.25"
    assert found["metadata"]["ownerReferences"][0]["uid"] == app.uid
    assert [e.reason for e in recorder.events] == [REASON_DEPLOYMENT_CREATED]
    assert recorder.events[0].type == EVENT_TYPE_NORMAL
    assert recorder.events[0].message == "Created Deployment default/web-deployment"


def test_deployment_up_to_date_emits_no_event(client, recorder):
    app = make_app(client)
    reconcile_deployment(client, recorder, app)
    before = stored(client, "Deployment", app.name + DEPLOYMENT_SUFFIX)
    result = reconcile_deployment(client, recorder, app)
    assert len(recorder.events) == 1
    assert result["metadata"]["resourceVersion"] == before["metadata"]["resourceVersion"]


def test_deployment_is_updated_on_image_change(client, recorder):
    app = make_app(client)
    reconcile_deployment(client, recorder, app)
    name = app.name + DEPLOYMENT_SUFFIX
    before = stored(client, "Deployment", name)
    app.spec.image = "nginx:1.26"
    result = reconcile_deployment(client, recorder, app)
    after = stored(client, "Deployment", name)
    assert after["spec"]["template"]["spec"]["containers"][0]["image"] == "nginx:1.26"
    assert after["metadata"]["generation"] > before["metadata"]["generation"]
    assert result["spec"] == after["spec"]
    assert recorder.events[-1].reason == REASON_DEPLOYMENT_UPDATED


def test_deployment_replica_drift_is_corrected(client, recorder):
    app = make_app(client)
    reconcile_deployment(client, recorder, app)
    name = app.name + DEPLOYMENT_SUFFIX
    drifted = stored(client, "Deployment", name)
    drifted["spec"]["replicas"] = app.spec.replicas + 4
    client.update(drifted)
    reconcile_deployment(client, recorder, app)
    assert stored(client, "Deployment", name)["spec"]["replicas"] == app.spec.replicas
    assert recorder.events[-1].reason == REASON_DEPLOYMENT_UPDATED


def test_deployment_create_failure(client, recorder):
    app = make_app(client)
    client.failures[("create", "Deployment")] = ApiError("boom")
    with pytest.raises(ApiError) as info:
        reconcile_deployment(client, recorder, app)
    assert str(info.value).startswith("failed to create Deployment")
    assert recorder.events[-1].type == EVENT_TYPE_WARNING
    assert recorder.events[-1].reason == REASON_DEPLOYMENT_FAILED
    with pytest.raises(NotFoundError):
        stored(client, "Deployment", app.name + DEPLOYMENT_SUFFIX)


def test_deployment_get_failure(client, recorder):
    app = make_app(client)
    client.failures[("get", "Deployment")] = ApiError("unavailable")
    with pytest.raises(ApiError) as info:
        reconcile_deployment(client, recorder, app)
    assert str(info.value).startswith("failed to get Deployment")
    assert recorder.events == []


def test_deployment_update_conflict_gives_up(client, recorder):
    app = make_app(client)
    reconcile_deployment(client, recorder, app)
    app.spec.image = "nginx:1.26"
    client.failures[("update", "Deployment")] = ConflictError(
        "Deployment", app.name + DEPLOYMENT_SUFFIX
    )
    with pytest.raises(ApiError) as info:
        reconcile_deployment(client, recorder, app)
    assert "after retries" in str(info.value)
    assert isinstance(info.value.__cause__, ConflictError)
    assert info.value.reason == "Conflict"
    assert recorder.events[-1].reason == REASON_DEPLOYMENT_FAILED


def test_service_is_created(client, recorder):
    app = make_app(client)
    result = reconcile_service(client, recorder, app)
    found = stored(client, "Service", app.name + SERVICE_SUFFIX)
    port = found["spec"]["ports"][0]
    assert port["port"] == app.spec.container_port
    assert port["targetPort"] == app.spec.container_port
    assert found["spec"]["type"] == SERVICE_TYPE_CLUSTER_IP
    assert result["metadata"]["name"] == app.name + SERVICE_SUFFIX
    assert [e.reason for e in recorder.events] == [REASON_SERVICE_CREATED]


def test_service_port_change_keeps_cluster_ip(client, recorder):
    app = make_app(client)
    reconcile_service(client, recorder, app)
    name = app.name + SERVICE_SUFFIX
    with_ip = stored(client, "Service", name)
    with_ip["spec"]["clusterIP"] = "10.0.0.1"
    client.update(with_ip)
    app.spec.service = ApplicationServiceSpec(port=8080)
    apply_spec_defaults(app)
    reconcile_service(client, recorder, app)
    found = stored(client, "Service", name)
    assert found["spec"]["ports"][0]["port"] == 8080
    assert found["spec"]["ports"][0]["targetPort"] == app.spec.container_port
    assert found["spec"]["clusterIP"] == "10.0.0.1"
    assert recorder.events[-1].reason == REASON_SERVICE_UPDATED


def test_service_type_drift_is_reset(client, recorder):
    app = make_app(client)
    reconcile_service(client, recorder, app)
    name = app.name + SERVICE_SUFFIX
    drifted = stored(client, "Service", name)
    drifted["spec"]["type"] = "NodePort"
    client.update(drifted)
    reconcile_service(client, recorder, app)
    assert stored(client, "Service", name)["spec"]["type"] == SERVICE_TYPE_CLUSTER_IP


def test_ingress_is_created(client, recorder):
    app = make_app(client, ingress=ApplicationIngressSpec(host="app.example.com"))
    apply_spec_defaults(app)
    service_name = app.name + SERVICE_SUFFIX
    result = reconcile_ingress(client, recorder, app, service_name)
    found = stored(client, "Ingress", app.name + INGRESS_SUFFIX)
    backend = found["spec"]["rules"][0]["http"]["paths"][0]["backend"]["service"]
    assert backend["name"] == service_name
    assert ingress_url(result) == "http://app.example.com/"
    assert [e.reason for e in recorder.events] == [REASON_INGRESS_CREATED]


def test_ingress_annotation_change_updates(client, recorder):
    app = make_app(client, ingress=ApplicationIngressSpec(host="app.example.com"))
    service_name = app.name + SERVICE_SUFFIX
    reconcile_ingress(client, recorder, app, service_name)
    reconcile_ingress(client, recorder, app, service_name)
    assert len(recorder.events) == 1
    app.spec.ingress.annotations = {"team": "web"}
    reconcile_ingress(client, recorder, app, service_name)
    found = stored(client, "Ingress", app.name + INGRESS_SUFFIX)
    assert found["metadata"]["annotations"] == {"team": "web"}
    assert recorder.events[-1].reason == REASON_INGRESS_UPDATED


def test_ensure_ingress_deleted_when_absent(client, recorder):
    app = make_app(client)
    assert ensure_ingress_deleted(client, recorder, app) is None
    assert recorder.events == []


def test_ensure_ingress_deleted_removes_ingress(client, recorder):
    app = make_app(client, ingress=ApplicationIngressSpec(host="app.example.com"))
    reconcile_ingress(client, recorder, app, app.name + SERVICE_SUFFIX)
    ensure_ingress_deleted(client, recorder, app)
    with pytest.raises(NotFoundError):
        stored(client, "Ingress", app.name + INGRESS_SUFFIX)
    assert recorder.events[-1].reason == REASON_INGRESS_DELETED
    assert (
        recorder.events[-1].message
        == "Ingress default/web-ingress deleted as spec.ingress is nil"
    )


def test_ensure_ingress_deleted_failure(client, recorder):
    app = make_app(client)
    client.failures[("delete", "Ingress")] = ApiError("forbidden", reason="Forbidden", code=403)
    with pytest.raises(ApiError) as info:
        ensure_ingress_deleted(client, recorder, app)
    assert str(info.value).startswith("failed to delete Ingress web-ingress")
    assert info.value.code == 403
    assert recorder.events[-1].type == EVENT_TYPE_WARNING
    assert recorder.events[-1].reason == REASON_INGRESS_ERROR