# applifecycle

`applifecycle` turns a high-level **Application** resource into the objects
needed to run it: a Deployment, a ClusterIP Service and, optionally, an
Ingress. Each reconcile pass creates or updates those objects in an object
store, keeps the Application's status up to date with `Ready`, `Available`,
`Progressing` and `Degraded` conditions, and says when to run again.

It has no dependencies outside the standard library.

## Installation

```
pip install applifecycle
```

With the test requirements:

```
pip install "applifecycle[test]"
```

## The Application resource

`applifecycle.api.Application` (API version `apps.example.com/v1alpha1`)
holds metadata, an `ApplicationSpec` and an `ApplicationStatus`. It converts
to and from its JSON form with `from_dict` / `to_dict`; `ApplicationList`
does the same for a list. The spec fields are:

- `image` – the container image
- `replicas` – desired pod count, defaulted to `1`
- `container_port` (`containerPort`) – defaulted to `80`
- `service` – `port` (defaults to the container port) and `type`; any type
  other than `ClusterIP` is logged as a warning and replaced by `ClusterIP`
- `ingress` – `host`, `path` (default `/`), `path_type` (default `Prefix`),
  `ingress_class_name`, `annotations` and `tls`; when it is absent, an
  existing Ingress is deleted
- `env_vars`, `resources`, `liveness_probe`, `readiness_probe` – copied into
  the pod's container

Defaults are applied in memory by `applifecycle.resources.apply_spec_defaults`
at the start of each pass.

The managed objects are named `<app>-deployment`, `<app>-service` and
`<app>-ingress`, carry the Application's own labels plus the
`app.kubernetes.io/name`, `instance`, `component` and
`managed-by=application-lifecycle-manager` labels, and have the Application
as their controlling owner reference.

## Usage

```python
from applifecycle.api import Application
from applifecycle.client import EventRecorder, InMemoryClient
from applifecycle.reconciler import ApplicationReconciler

client = InMemoryClient()
client.create(Application.from_dict({
    "apiVersion": "apps.example.com/v1alpha1",
    "kind": "Application",
    "metadata": {"name": "web", "namespace": "default"},
    "spec": {
        "image": "nginx:1.27",
        "replicas": 2,
        "ingress": {"host": "web.example.com"},
    },
}))

recorder = EventRecorder()
reconciler = ApplicationReconciler(client, recorder)

# The first pass adds the finalizer and asks to be run again.
result = reconciler.reconcile("default", "web")   # Result(requeue=True)

# The second pass creates the Deployment, Service and Ingress.
result = reconciler.reconcile("default", "web")

app = client.get("Application", "default", "web")
print(app.status.deployment_name)   # web-deployment
print(app.status.ingress_url)       # http://web.example.com/
print(result.requeue_after)         # 0:00:15, replicas are not yet available
print([e.reason for e in recorder.events])
# ['DeploymentCreated', 'ServiceCreated', 'IngressCreated']
```

`Result` has `requeue` and `requeue_after`. When the Application is not
ready, the pass asks to be run again after 15 seconds while the Deployment
has fewer available replicas than desired or its Progressing condition is
False, and after 30 seconds otherwise. When it is being deleted, the pass
only removes the finalizer. A missing Application yields an empty `Result`.

Errors from reconciling the Deployment, Service or Ingress are recorded as a
`Degraded` condition, written to the status, and then raised.

## Modules

- `applifecycle.api` – the resource schema: `Application`, `ApplicationList`,
  `ApplicationSpec`, `ApplicationServiceSpec`, `ApplicationIngressSpec`,
  `ApplicationStatus`, `Condition` and `GroupVersion`.
- `applifecycle.conditions` – `set_application_condition`,
  `update_conditions_from_deployment`, `is_app_ready` and `not_ready_reason`,
  plus the condition types and reasons.
- `applifecycle.client` – `InMemoryClient`, an object store with resource
  versions, conflict detection, finalizers and owner-reference garbage
  collection (`get`, `create`, `update`, `update_status`, `delete`); its
  `failures` mapping makes chosen calls raise a given error. Also
  `ApiError`, `NotFoundError`, `ConflictError`, `EventRecorder`, `Event` and
  `retry_on_conflict`.
- `applifecycle.resources` – `desired_deployment`, `desired_service`,
  `desired_ingress`, `ingress_url`, `get_app_labels`, `get_selector_labels`,
  `safe_resource_requirements` and `set_controller_reference`.
- `applifecycle.components` – `reconcile_deployment`, `reconcile_service`,
  `reconcile_ingress` and `ensure_ingress_deleted`, which create or update
  each object, retry on conflicts and record events.
- `applifecycle.reconciler` – `ApplicationReconciler` with `reconcile` and
  `update_full_status`, and `Result`.

Progress is reported through the standard `logging` module.

## What it does not do

The package works against `InMemoryClient` only: it does not talk to a
Kubernetes API server, watch for changes or run a work queue. There is no
command-line program, no metrics or health-probe server and no leader
election; callers invoke `reconcile` themselves and act on the `Result`.