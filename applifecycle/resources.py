"""Desired Deployment, Service and Ingress objects for an Application."""

from __future__ import annotations

import copy
import logging
from typing import Any

from applifecycle.api import Application

logger = logging.getLogger(__name__)

DEFAULT_REPLICAS = 1
DEFAULT_CONTAINER_PORT = 80
DEFAULT_INGRESS_PATH = "/"

SERVICE_TYPE_CLUSTER_IP = "ClusterIP"
PATH_TYPE_PREFIX = "Prefix"
PROTOCOL_TCP = "TCP"
PORT_NAME = "http"

LABEL_NAME = "app.kubernetes.io/name"
LABEL_INSTANCE = "app.kubernetes.io/instance"
LABEL_MANAGED_BY = "app.kubernetes.io/managed-by"
LABEL_COMPONENT = "app.kubernetes.io/component"
MANAGER_NAME = "application-lifecycle-manager"

DEPLOYMENT_SUFFIX = "-deployment"
SERVICE_SUFFIX = "-service"
INGRESS_SUFFIX = "-ingress"


def apply_spec_defaults(app: Application) -> bool:
    """Fill in defaults on ``app.spec`` in place; return whether anything changed."""
    spec = app.spec
    changed = False
    if spec.replicas is None:
        spec.replicas = DEFAULT_REPLICAS
        changed = True
    if spec.container_port is None:
        spec.container_port = DEFAULT_CONTAINER_PORT
        changed = True

    if spec.service is not None:
        if spec.service.port is None:
            spec.service.port = spec.container_port
            changed = True
        if spec.service.type is None:
            spec.service.type = SERVICE_TYPE_CLUSTER_IP
            changed = True
        elif spec.service.type != SERVICE_TYPE_CLUSTER_IP:
            logger.warning(
                "Service type %r of application %s is not supported; using ClusterIP",
                spec.service.type,
                app.name,
            )
            spec.service.type = SERVICE_TYPE_CLUSTER_IP
            changed = True

    if spec.ingress is not None:
        if not spec.ingress.path:
            spec.ingress.path = DEFAULT_INGRESS_PATH
            changed = True
        if spec.ingress.path_type is None:
            spec.ingress.path_type = PATH_TYPE_PREFIX
            changed = True

    if changed:
        logger.debug("Applied defaults to in-memory spec of application %s", app.name)
    return changed


def get_app_labels(app: Application, component_name: str) -> dict[str, str]:
    """Labels for a managed object: the application's own plus the standard ones."""
    return {
        **app.labels,
        LABEL_NAME: app.name,
        LABEL_INSTANCE: app.name,
        LABEL_MANAGED_BY: MANAGER_NAME,
        LABEL_COMPONENT: component_name,
    }


def get_selector_labels(app: Application) -> dict[str, str]:
    """Labels that select the application's pods."""
    return {LABEL_NAME: app.name, LABEL_INSTANCE: app.name}


def safe_resource_requirements(requirements: dict[str, Any] | None) -> dict[str, Any]:
    """Return a copy of ``requirements``, or an empty requirement set for ``None``."""
    if requirements is None:
        return {}
    return copy.deepcopy(requirements)


def _group(api_version: str) -> str:
    group, _, _ = api_version.rpartition("/")
    return group


def set_controller_reference(owner: Application, obj: dict[str, Any]) -> dict[str, Any]:
    """Make ``owner`` the controlling owner of ``obj`` and return ``obj``.

    Raises ``ValueError`` for a cross-namespace reference or when ``obj`` is
    already controlled by a different owner.
    """
    meta = obj.setdefault("metadata", {})
    namespace = meta.get("namespace", "")
    if owner.namespace and owner.namespace != namespace:
        raise ValueError(
            "cross-namespace owner references are disallowed, owner's namespace "
            f"{owner.namespace}, obj's namespace {namespace}"
        )
    reference = {
        "apiVersion": owner.api_version,
        "kind": owner.kind,
        "name": owner.name,
        "uid": owner.uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }
    owner_group = _group(owner.api_version)

    def same_owner(ref: dict[str, Any]) -> bool:
        return (
            _group(ref.get("apiVersion", "")) == owner_group
            and ref.get("kind") == owner.kind
            and ref.get("name") == owner.name
        )

    refs = [dict(ref) for ref in meta.get("ownerReferences") or []]
    for ref in refs:
        if ref.get("controller") and not same_owner(ref):
            raise ValueError(
                f"Object {namespace}/{meta.get('name', '')} is already owned by "
                f"another {ref.get('kind', '')} controller {ref.get('name', '')}"
            )
    for index, ref in enumerate(refs):
        if same_owner(ref):
            refs[index] = reference
            break
    else:
        refs.append(reference)
    meta["ownerReferences"] = refs
    return obj


def _container_port(app: Application) -> int:
    if app.spec.container_port is None:
        raise ValueError(f"application {app.name} has no container port; apply defaults first")
    return app.spec.container_port


def _service_port(app: Application) -> int:
    port = _container_port(app)
    if app.spec.service is not None and app.spec.service.port is not None:
        port = app.spec.service.port
    return port


def desired_deployment(app: Application) -> dict[str, Any]:
    """The Deployment that runs the application's pods."""
    container: dict[str, Any] = {
        "name": app.name,
        "image": app.spec.image,
        "ports": [{"name": PORT_NAME, "containerPort": _container_port(app)}],
        "resources": safe_resource_requirements(app.spec.resources),
    }
    if app.spec.env_vars:
        container["env"] = copy.deepcopy(app.spec.env_vars)
    if app.spec.liveness_probe is not None:
        container["livenessProbe"] = copy.deepcopy(app.spec.liveness_probe)
    if app.spec.readiness_probe is not None:
        container["readinessProbe"] = copy.deepcopy(app.spec.readiness_probe)

    spec: dict[str, Any] = {}
    if app.spec.replicas is not None:
        spec["replicas"] = app.spec.replicas
    spec["selector"] = {"matchLabels": get_selector_labels(app)}
    spec["template"] = {
        "metadata": {"labels": get_selector_labels(app)},
        "spec": {"containers": [container]},
    }
    deployment = {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": app.name + DEPLOYMENT_SUFFIX,
            "namespace": app.namespace,
            "labels": get_app_labels(app, "deployment"),
        },
        "spec": spec,
    }
    return set_controller_reference(app, deployment)


def desired_service(app: Application) -> dict[str, Any]:
    """The ClusterIP Service in front of the application's pods."""
    service = {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": app.name + SERVICE_SUFFIX,
            "namespace": app.namespace,
            "labels": get_app_labels(app, "service"),
        },
        "spec": {
            "ports": [
                {
                    "name": PORT_NAME,
                    "port": _service_port(app),
                    "targetPort": _container_port(app),
                    "protocol": PROTOCOL_TCP,
                }
            ],
            "selector": get_selector_labels(app),
            "type": SERVICE_TYPE_CLUSTER_IP,
        },
    }
    return set_controller_reference(app, service)


def desired_ingress(app: Application, service_name: str) -> dict[str, Any]:
    """The Ingress routing the configured host and path to ``service_name``."""
    ingress_spec = app.spec.ingress
    if ingress_spec is None:
        raise ValueError(f"application {app.name} has no ingress spec")
    path: dict[str, Any] = {"path": ingress_spec.path}
    if ingress_spec.path_type is not None:
        path["pathType"] = ingress_spec.path_type
    path["backend"] = {
        "service": {"name": service_name, "port": {"number": _service_port(app)}}
    }
    spec: dict[str, Any] = {}
    if ingress_spec.ingress_class_name is not None:
        spec["ingressClassName"] = ingress_spec.ingress_class_name
    if ingress_spec.tls:
        spec["tls"] = copy.deepcopy(ingress_spec.tls)
    spec["rules"] = [{"host": ingress_spec.host, "http": {"paths": [path]}}]
    metadata: dict[str, Any] = {
        "name": app.name + INGRESS_SUFFIX,
        "namespace": app.namespace,
        "labels": get_app_labels(app, "ingress"),
    }
    if ingress_spec.annotations:
        metadata["annotations"] = dict(ingress_spec.annotations)
    ingress = {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "Ingress",
        "metadata": metadata,
        "spec": spec,
    }
    return set_controller_reference(app, ingress)


def ingress_url(ingress: dict[str, Any]) -> str:
    """The URL of the first rule of an Ingress, or ``""`` if it has no host."""
    spec = ingress.get("spec") or {}
    rules = spec.get("rules") or []
    if not rules or not rules[0].get("host"):
        return ""
    rule = rules[0]
    scheme = "https" if spec.get("tls") else "http"
    paths = (rule.get("http") or {}).get("paths") or []
    path = paths[0].get("path", "") if paths else "/"
    return f"{scheme}://{rule['host']}{path}"