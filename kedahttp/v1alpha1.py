"""Types of the http.keda.sh/v1alpha1 API group."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


@dataclass(frozen=True)
class GroupResource:
    """A resource qualified by its API group."""

    group: str
    resource: str

    def __str__(self) -> str:
        if not self.group:
            return self.resource
        return f"{self.resource}.{self.group}"


@dataclass(frozen=True)
class GroupVersion:
    """An API group together with one of its versions."""

    group: str
    version: str

    def with_resource(self, resource: str) -> GroupResource:
        """Qualify an unqualified resource name with this group."""
        return GroupResource(group=self.group, resource=resource)

    def __str__(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"


SCHEME_GROUP_VERSION = GroupVersion(group="http.keda.sh", version="v1alpha1")
KIND = "HTTPScaledObject"


def resource(resource: str) -> GroupResource:
    """Return the group-qualified resource for an unqualified resource name."""
    return SCHEME_GROUP_VERSION.with_resource(resource)


class CreationStatus(str, Enum):
    """Creation status of the resources belonging to an HTTPScaledObject."""

    CREATED = "Created"
    TERMINATED = "Terminated"
    ERROR = "Error"
    PENDING = "Pending"
    TERMINATING = "Terminating"
    UNKNOWN = "Unknown"
    READY = "Ready"


class ConditionReason(str, Enum):
    """Why a condition made its last transition."""

    ERROR_CREATING_APP_SCALED_OBJECT = "ErrorCreatingAppScaledObject"
    APP_SCALED_OBJECT_CREATED = "AppScaledObjectCreated"
    TERMINATING_RESOURCES = "TerminatingResources"
    APP_SCALED_OBJECT_TERMINATED = "AppScaledObjectTerminated"
    APP_SCALED_OBJECT_TERMINATION_ERROR = "AppScaledObjectTerminationError"
    PENDING_CREATION = "PendingCreation"
    HTTP_SCALED_OBJECT_IS_READY = "HTTPScaledObjectIsReady"


class ConditionStatus(str, Enum):
    """Status of a condition."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


@dataclass
class ScaleTargetRef:
    """The application to scale and route to."""

    deployment: str = ""
    service: str = ""
    port: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"deployment": self.deployment, "service": self.service, "port": self.port}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScaleTargetRef:
        return cls(
            deployment=data.get("deployment", ""),
            service=data.get("service", ""),
            port=int(data.get("port", 0)),
        )


@dataclass
class ReplicaStruct:
    """Minimum and maximum replica counts of the deployment."""

    min: Optional[int] = None
    max: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.min is not None:
            out["min"] = self.min
        if self.max is not None:
            out["max"] = self.max
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReplicaStruct:
        return cls(min=data.get("min"), max=data.get("max"))


@dataclass
class HTTPScaledObjectSpec:
    """Desired state of an HTTPScaledObject."""

    scale_target_ref: ScaleTargetRef = field(default_factory=ScaleTargetRef)
    host: Optional[str] = None
    hosts: Optional[list[str]] = None
    path_prefixes: Optional[list[str]] = None
    replicas: Optional[ReplicaStruct] = None
    target_pending_requests: Optional[int] = None
    cooldown_period: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        if self.host is not None:
            out["host"] = self.host
        if self.hosts:
            out["hosts"] = list(self.hosts)
        if self.path_prefixes:
            out["pathPrefixes"] = list(self.path_prefixes)
        out["scaleTargetRef"] = self.scale_target_ref.to_dict()
        if self.replicas is not None:
            out["replicas"] = self.replicas.to_dict()
        if self.target_pending_requests is not None:
            out["targetPendingRequests"] = self.target_pending_requests
        if self.cooldown_period is not None:
            out["scaledownPeriod"] = self.cooldown_period
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HTTPScaledObjectSpec:
        replicas = data.get("replicas")
        hosts = data.get("hosts")
        prefixes = data.get("pathPrefixes")
        return cls(
            scale_target_ref=ScaleTargetRef.from_dict(data.get("scaleTargetRef", {})),
            host=data.get("host"),
            hosts=list(hosts) if hosts is not None else None,
            path_prefixes=list(prefixes) if prefixes is not None else None,
            replicas=ReplicaStruct.from_dict(replicas) if replicas is not None else None,
            target_pending_requests=data.get("targetPendingRequests"),
            cooldown_period=data.get("scaledownPeriod"),
        )


@dataclass
class HTTPScaledObjectCondition:
    """One recorded condition of an HTTPScaledObject."""

    type: CreationStatus
    status: ConditionStatus
    timestamp: str = ""
    reason: Optional[ConditionReason] = None
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "timestamp": self.timestamp,
            "type": self.type.value,
            "status": self.status.value,
        }
        if self.reason is not None:
            out["reason"] = self.reason.value
        if self.message:
            out["message"] = self.message
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HTTPScaledObjectCondition:
        reason = data.get("reason")
        return cls(
            type=CreationStatus(data["type"]),
            status=ConditionStatus(data["status"]),
            timestamp=data.get("timestamp", ""),
            reason=ConditionReason(reason) if reason else None,
            message=data.get("message", ""),
        )


@dataclass
class HTTPScaledObjectStatus:
    """Observed state of an HTTPScaledObject."""

    conditions: list[HTTPScaledObjectCondition] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        if not self.conditions:
            return {}
        return {"conditions": [c.to_dict() for c in self.conditions]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HTTPScaledObjectStatus:
        return cls(
            conditions=[
                HTTPScaledObjectCondition.from_dict(c) for c in data.get("conditions", [])
            ]
        )


@dataclass
class HTTPScaledObject:
    """An HTTPScaledObject resource with the object metadata it carries."""

    name: str = ""
    namespace: str = ""
    spec: HTTPScaledObjectSpec = field(default_factory=HTTPScaledObjectSpec)
    status: HTTPScaledObjectStatus = field(default_factory=HTTPScaledObjectStatus)
    finalizers: list[str] = field(default_factory=list)
    resource_version: str = ""
    deletion_timestamp: Optional[str] = None

    def namespaced_name(self) -> str:
        """Return the "namespace/name" key of this object."""
        return f"{self.namespace}/{self.name}"

    def to_dict(self) -> dict[str, Any]:
        """Serialise to the resource's JSON form."""
        metadata: dict[str, Any] = {}
        if self.name:
            metadata["name"] = self.name
        if self.namespace:
            metadata["namespace"] = self.namespace
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        if self.deletion_timestamp is not None:
            metadata["deletionTimestamp"] = self.deletion_timestamp
        if self.finalizers:
            metadata["finalizers"] = list(self.finalizers)
        return {
            "apiVersion": str(SCHEME_GROUP_VERSION),
            "kind": KIND,
            "metadata": metadata,
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HTTPScaledObject:
        """Build an object from the resource's JSON form."""
        metadata = data.get("metadata", {})
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            spec=HTTPScaledObjectSpec.from_dict(data.get("spec", {})),
            status=HTTPScaledObjectStatus.from_dict(data.get("status", {})),
            finalizers=list(metadata.get("finalizers", [])),
            resource_version=metadata.get("resourceVersion", ""),
            deletion_timestamp=metadata.get("deletionTimestamp"),
        )