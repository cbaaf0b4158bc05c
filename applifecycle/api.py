"""Schema of the Application custom resource in the apps.example.com/v1alpha1 group."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar


@dataclass(frozen=True)
class GroupVersion:
    """An API group together with its version."""

    group: str
    version: str

    def api_version(self) -> str:
        """Return the ``apiVersion`` string, e.g. ``group/version``."""
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"


GROUP_VERSION = GroupVersion(group="apps.example.com", version="v1alpha1")


def _format_time(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class Condition:
    """One observation of an object's state, as kept in ``status.conditions``."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    last_transition_time: datetime | None = None
    observed_generation: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Condition:
        return cls(
            type=data.get("type", ""),
            status=data.get("status", ""),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            last_transition_time=_parse_time(data.get("lastTransitionTime")),
            observed_generation=int(data.get("observedGeneration", 0) or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type, "status": self.status}
        if self.observed_generation:
            result["observedGeneration"] = self.observed_generation
        result["lastTransitionTime"] = _format_time(self.last_transition_time)
        result["reason"] = self.reason
        result["message"] = self.message
        return result


@dataclass
class ApplicationServiceSpec:
    """Parameters of the Service created for an Application."""

    port: int | None = None
    type: str | None = None


@dataclass
class ApplicationIngressSpec:
    """Parameters of the Ingress created for an Application."""

    host: str
    path: str = ""
    path_type: str | None = None
    ingress_class_name: str | None = None
    annotations: dict[str, str] = field(default_factory=dict)
    tls: list[dict[str, Any]] = field(default_factory=list)


def _service_from_dict(data: dict[str, Any] | None) -> ApplicationServiceSpec | None:
    if data is None:
        return None
    return ApplicationServiceSpec(port=data.get("port"), type=data.get("type"))


def _service_to_dict(spec: ApplicationServiceSpec) -> dict[str, Any]:
    result: dict[str, Any] = {}
    if spec.port is not None:
        result["port"] = spec.port
    if spec.type is not None:
        result["type"] = spec.type
    return result


def _ingress_from_dict(data: dict[str, Any] | None) -> ApplicationIngressSpec | None:
    if data is None:
        return None
    return ApplicationIngressSpec(
        host=data.get("host", ""),
        path=data.get("path", ""),
        path_type=data.get("pathType"),
        ingress_class_name=data.get("ingressClassName"),
        annotations=dict(data.get("annotations") or {}),
        tls=copy.deepcopy(list(data.get("tls") or [])),
    )


def _ingress_to_dict(spec: ApplicationIngressSpec) -> dict[str, Any]:
    result: dict[str, Any] = {"host": spec.host}
    if spec.path:
        result["path"] = spec.path
    if spec.path_type is not None:
        result["pathType"] = spec.path_type
    if spec.ingress_class_name is not None:
        result["ingressClassName"] = spec.ingress_class_name
    if spec.annotations:
        result["annotations"] = dict(spec.annotations)
    if spec.tls:
        result["tls"] = copy.deepcopy(spec.tls)
    return result


@dataclass
class ApplicationSpec:
    """Desired state of an Application."""

    image: str = ""
    replicas: int | None = None
    container_port: int | None = None
    service: ApplicationServiceSpec | None = None
    ingress: ApplicationIngressSpec | None = None
    env_vars: list[dict[str, Any]] = field(default_factory=list)
    resources: dict[str, Any] | None = None
    liveness_probe: dict[str, Any] | None = None
    readiness_probe: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ApplicationSpec:
        data = data or {}
        return cls(
            image=data.get("image", ""),
            replicas=data.get("replicas"),
            container_port=data.get("containerPort"),
            service=_service_from_dict(data.get("service")),
            ingress=_ingress_from_dict(data.get("ingress")),
            env_vars=copy.deepcopy(list(data.get("envVars") or [])),
            resources=copy.deepcopy(data.get("resources")),
            liveness_probe=copy.deepcopy(data.get("livenessProbe")),
            readiness_probe=copy.deepcopy(data.get("readinessProbe")),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.replicas is not None:
            result["replicas"] = self.replicas
        result["image"] = self.image
        if self.container_port is not None:
            result["containerPort"] = self.container_port
        if self.service is not None:
            result["service"] = _service_to_dict(self.service)
        if self.ingress is not None:
            result["ingress"] = _ingress_to_dict(self.ingress)
        if self.env_vars:
            result["envVars"] = copy.deepcopy(self.env_vars)
        if self.resources is not None:
            result["resources"] = copy.deepcopy(self.resources)
        if self.liveness_probe is not None:
            result["livenessProbe"] = copy.deepcopy(self.liveness_probe)
        if self.readiness_probe is not None:
            result["readinessProbe"] = copy.deepcopy(self.readiness_probe)
        return result


@dataclass
class ApplicationStatus:
    """Observed state of an Application.

    ``conditions`` is ``None`` until the controller has recorded any, which is
    distinct from an empty list.
    """

    observed_generation: int = 0
    deployment_name: str = ""
    service_name: str = ""
    ingress_name: str = ""
    ingress_url: str = ""
    available_replicas: int = 0
    conditions: list[Condition] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ApplicationStatus:
        data = data or {}
        raw_conditions = data.get("conditions")
        conditions = (
            None
            if raw_conditions is None
            else [Condition.from_dict(item) for item in raw_conditions]
        )
        return cls(
            observed_generation=int(data.get("observedGeneration", 0) or 0),
            deployment_name=data.get("deploymentName", ""),
            service_name=data.get("serviceName", ""),
            ingress_name=data.get("ingressName", ""),
            ingress_url=data.get("ingressURL", ""),
            available_replicas=int(data.get("availableReplicas", 0) or 0),
            conditions=conditions,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.observed_generation:
            result["observedGeneration"] = self.observed_generation
        if self.deployment_name:
            result["deploymentName"] = self.deployment_name
        if self.service_name:
            result["serviceName"] = self.service_name
        if self.ingress_name:
            result["ingressName"] = self.ingress_name
        if self.ingress_url:
            result["ingressURL"] = self.ingress_url
        if self.available_replicas:
            result["availableReplicas"] = self.available_replicas
        if self.conditions:
            result["conditions"] = [c.to_dict() for c in self.conditions]
        return result


@dataclass
class Application:
    """The Application custom resource: metadata, spec and status."""

    KIND: ClassVar[str] = "Application"

    name: str
    namespace: str = ""
    spec: ApplicationSpec = field(default_factory=ApplicationSpec)
    status: ApplicationStatus = field(default_factory=ApplicationStatus)
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    generation: int = 0
    uid: str = ""
    resource_version: str = ""
    finalizers: list[str] = field(default_factory=list)
    deletion_timestamp: datetime | None = None
    creation_timestamp: datetime | None = None

    @property
    def kind(self) -> str:
        return self.KIND

    @property
    def api_version(self) -> str:
        return GROUP_VERSION.api_version()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Application:
        metadata = data.get("metadata") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            spec=ApplicationSpec.from_dict(data.get("spec")),
            status=ApplicationStatus.from_dict(data.get("status")),
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            generation=int(metadata.get("generation", 0) or 0),
            uid=metadata.get("uid", ""),
            resource_version=metadata.get("resourceVersion", ""),
            finalizers=list(metadata.get("finalizers") or []),
            deletion_timestamp=_parse_time(metadata.get("deletionTimestamp")),
            creation_timestamp=_parse_time(metadata.get("creationTimestamp")),
        )

    def to_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {}
        if self.name:
            metadata["name"] = self.name
        if self.namespace:
            metadata["namespace"] = self.namespace
        if self.uid:
            metadata["uid"] = self.uid
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        if self.generation:
            metadata["generation"] = self.generation
        if self.creation_timestamp is not None:
            metadata["creationTimestamp"] = _format_time(self.creation_timestamp)
        if self.deletion_timestamp is not None:
            metadata["deletionTimestamp"] = _format_time(self.deletion_timestamp)
        if self.labels:
            metadata["labels"] = dict(self.labels)
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        if self.finalizers:
            metadata["finalizers"] = list(self.finalizers)
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "metadata": metadata,
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    def deep_copy(self) -> Application:
        """Return an independent copy of the whole resource."""
        return copy.deepcopy(self)


@dataclass
class ApplicationList:
    """A list of Application resources."""

    KIND: ClassVar[str] = "ApplicationList"

    items: list[Application] = field(default_factory=list)
    resource_version: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ApplicationList:
        metadata = data.get("metadata") or {}
        return cls(
            items=[Application.from_dict(item) for item in data.get("items") or []],
            resource_version=metadata.get("resourceVersion", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {}
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        return {
            "apiVersion": GROUP_VERSION.api_version(),
            "kind": self.KIND,
            "metadata": metadata,
            "items": [item.to_dict() for item in self.items],
        }