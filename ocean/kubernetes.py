from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

import ocean.poll
from ocean.errors import ResourceNotFoundError
from ocean.ids import DropletTypeId, KubernetesId, NodePoolId, RegionId, VpcId
from ocean.models import MaintenanceSchedule, valid_text
from ocean.resource import Builder, ManagedSnapshot, ResourceAdapter, changed
from ocean.transport import (
    get_bool,
    get_dict,
    get_enum,
    get_int,
    get_list,
    get_str,
    parse_time,
)

# The server tags every cluster and node pool with `k8s` and `k8s:<...>`.
AUTO_TAG = "k8s"


def user_tags(tags: FrozenSet[str]) -> FrozenSet[str]:
    """Return `tags` without the ones the server added on its own."""
    return frozenset(
        _ for _ in tags if _ != AUTO_TAG and not _.startswith(f"{AUTO_TAG}:")
    )


def valid_cluster_tags(tags: FrozenSet[str]) -> FrozenSet[str]:
    for tag in tags:
        valid_text(tag)
        if tag not in user_tags(frozenset({tag})):
            raise ValueError(f"<{tag}> is reserved for the server")
    return tags


class KubernetesState(str, Enum):
    PROVISIONING = "provisioning"
    RUNNING = "running"
    DEGRADED = "degraded"
    ERROR = "error"
    DELETED = "deleted"
    UPGRADING = "upgrading"
    DELETING = "deleting"


class NodeState(str, Enum):
    PROVISIONING = "provisioning"
    RUNNING = "running"
    DRAINING = "draining"
    DELETING = "deleting"


class TaintEffect(str, Enum):
    NO_SCHEDULE = "NoSchedule"
    PREFER_NO_SCHEDULE = "PreferNoSchedule"
    NO_EXECUTE = "NoExecute"


class NodeTaint(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    key: str
    value: str = ""
    effect: TaintEffect

    def to_server(self) -> dict:
        return {"key": self.key, "value": self.value, "effect": self.effect.value}


class Node(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    name: str
    state: NodeState
    message: str = ""
    droplet_id: str = ""
    created_at: datetime
    updated_at: datetime


# ----------------------------------------------------------------------
# Node pools.
# ----------------------------------------------------------------------
def _taint_key(taint: NodeTaint):
    return (taint.key, taint.value, taint.effect.value)


class NodePoolBuilder(BaseModel):
    """Desired state of a node pool.

    Builders are immutable because clusters keep them in sets. The setters
    return a modified copy.
    """

    model_config = ConfigDict(
        frozen=True, extra="forbid", arbitrary_types_allowed=True
    )

    name: str
    droplet_type: DropletTypeId
    count: int = Field(ge=1)
    tags: FrozenSet[str] = frozenset()
    labels: Dict[str, str] = {}
    taints: FrozenSet[NodeTaint] = frozenset()
    auto_scale: bool = False
    min_nodes: int = Field(default=0, ge=0)
    max_nodes: int = Field(default=0, ge=0)

    @field_validator("name")
    @classmethod
    def valid_name(cls, v: str) -> str:
        return valid_text(v)

    @field_validator("tags")
    @classmethod
    def valid_tags(cls, v: FrozenSet[str]) -> FrozenSet[str]:
        return valid_cluster_tags(v)

    @field_validator("labels")
    @classmethod
    def valid_labels(cls, v: Dict[str, str]) -> Dict[str, str]:
        for key in v:
            valid_text(key)
        return v

    @model_validator(mode="after")
    def valid_scaling(self):
        if self.auto_scale and self.min_nodes > self.max_nodes:
            raise ValueError("min_nodes must not exceed max_nodes")
        return self

    def __hash__(self):
        labels = tuple(sorted(self.labels.items()))
        return hash(
            (self.name, self.droplet_type, self.count, self.tags, labels, self.taints)
            + (self.auto_scale, self.min_nodes, self.max_nodes)
        )

    def replace(self, **changes) -> "NodePoolBuilder":
        """Return a validated copy with `changes` applied."""
        return NodePoolBuilder(**(dict(self) | changes))

    def set_count(self, count: int) -> "NodePoolBuilder":
        return self.replace(count=count)

    def set_tags(self, tags) -> "NodePoolBuilder":
        return self.replace(tags=frozenset(tags))

    def set_labels(self, labels: Dict[str, str]) -> "NodePoolBuilder":
        return self.replace(labels=dict(labels))

    def set_taints(self, taints) -> "NodePoolBuilder":
        return self.replace(taints=frozenset(taints))

    def set_auto_scale(self, min_nodes: int, max_nodes: int) -> "NodePoolBuilder":
        if not 0 <= min_nodes <= max_nodes:
            raise ValueError(
                f"need 0 <= min_nodes <= max_nodes ({min_nodes=}, {max_nodes=})"
            )
        return self.replace(auto_scale=True, min_nodes=min_nodes, max_nodes=max_nodes)

    def to_server(self) -> dict:
        ret = {
            "name": self.name,
            "size": str(self.droplet_type),
            "count": self.count,
            "tags": sorted(self.tags),
            "labels": self.labels,
            "taints": [_.to_server() for _ in sorted(self.taints, key=_taint_key)],
            "auto_scale": self.auto_scale,
        }
        if self.auto_scale:
            ret |= {"min_nodes": self.min_nodes, "max_nodes": self.max_nodes}
        return ret


class NodePool(BaseModel):
    """Node pool of a live cluster. Two pools are equal if their IDs are."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    id: NodePoolId
    name: str
    droplet_type: DropletTypeId
    count: int
    tags: FrozenSet[str] = frozenset()
    labels: Dict[str, str] = {}
    taints: FrozenSet[NodeTaint] = frozenset()
    auto_scale: bool = False
    min_nodes: int = 0
    max_nodes: int = 0
    nodes: FrozenSet[Node] = frozenset()

    def __eq__(self, other):
        return isinstance(other, NodePool) and other.id == self.id

    def __hash__(self):
        return hash(self.id)

    def for_builder(self) -> NodePoolBuilder:
        """Return the builder that describes this pool."""
        return NodePoolBuilder(
            name=self.name,
            droplet_type=self.droplet_type,
            count=self.count,
            tags=user_tags(self.tags),
            labels=self.labels,
            taints=self.taints,
            auto_scale=self.auto_scale,
            min_nodes=self.min_nodes if self.auto_scale else 0,
            max_nodes=self.max_nodes if self.auto_scale else 0,
        )


# ----------------------------------------------------------------------
# Clusters.
# ----------------------------------------------------------------------
class Kubernetes(ManagedSnapshot):
    id: KubernetesId
    name: str
    region: RegionId
    version: str
    cluster_subnet: str = ""
    service_subnet: str = ""
    vpc: VpcId | None = None
    ipv4: str = ""
    endpoint: str = ""
    tags: FrozenSet[str] = frozenset()
    node_pools: FrozenSet[NodePool] = frozenset()
    maintenance_schedule: MaintenanceSchedule | None = None
    auto_upgrade: bool = False
    state: KubernetesState
    status_message: str = ""
    surge_upgrade: bool = False
    ha: bool = False
    registry_enabled: bool = False
    created_at: datetime
    updated_at: datetime

    def wait_for(
        self, state: KubernetesState, timeout: float | timedelta
    ) -> "Kubernetes":
        return ocean.poll.wait_for(self._adapter, self, state, timeout)

    def get_kubeconfig(self, expiry: timedelta = timedelta(days=7)) -> str:
        """Return the kubeconfig (YAML) with credentials valid for `expiry`."""
        return self._adapter.get_kubeconfig(self.id, expiry)

    def destroy_recursively(self):
        """Delete the cluster along with its load balancers and volumes."""
        self._adapter.destroy_recursively(self)


class KubernetesBuilder(Builder):
    name: str
    region: RegionId
    version: str
    node_pools: FrozenSet[NodePoolBuilder]

    # `None` lets the server choose.
    cluster_subnet: str | None = None
    service_subnet: str | None = None
    vpc: VpcId | None = None
    maintenance_schedule: MaintenanceSchedule | None = None

    tags: FrozenSet[str] = frozenset()
    auto_upgrade: bool = False
    surge_upgrade: bool = False
    ha: bool = False

    @field_validator("name", "version")
    @classmethod
    def valid_name(cls, v: str) -> str:
        return valid_text(v)

    @field_validator("cluster_subnet", "service_subnet")
    @classmethod
    def valid_subnet(cls, v: str | None) -> str | None:
        return v if v is None else valid_text(v)

    @field_validator("tags")
    @classmethod
    def valid_tags(cls, v: FrozenSet[str]) -> FrozenSet[str]:
        return valid_cluster_tags(v)

    @field_validator("node_pools")
    @classmethod
    def valid_node_pools(cls, v: FrozenSet[NodePoolBuilder]):
        if len(v) == 0:
            raise ValueError("must contain at least one node pool")
        return v

    # ----------------------------------------------------------------------
    # Fluent setters.
    # ----------------------------------------------------------------------
    def set_name(self, name: str) -> "KubernetesBuilder":
        self.name = name
        return self

    def set_node_pools(self, pools) -> "KubernetesBuilder":
        self.node_pools = frozenset(pools)
        return self

    def add_node_pool(self, pool: NodePoolBuilder) -> "KubernetesBuilder":
        self.node_pools = self.node_pools | {pool}
        return self

    def set_subnets(self, cluster: str, service: str) -> "KubernetesBuilder":
        self.cluster_subnet = cluster
        self.service_subnet = service
        return self

    def set_vpc(self, vpc: VpcId) -> "KubernetesBuilder":
        self.vpc = vpc
        return self

    def set_tags(self, tags) -> "KubernetesBuilder":
        self.tags = frozenset(tags)
        return self

    def add_tag(self, tag: str) -> "KubernetesBuilder":
        self.tags = self.tags | {tag}
        return self

    def set_maintenance_schedule(
        self, schedule: MaintenanceSchedule
    ) -> "KubernetesBuilder":
        self.maintenance_schedule = schedule
        return self

    def set_auto_upgrade(self, value: bool) -> "KubernetesBuilder":
        self.auto_upgrade = value
        return self

    def set_surge_upgrade(self, value: bool) -> "KubernetesBuilder":
        self.surge_upgrade = value
        return self

    def set_high_availability(self, value: bool) -> "KubernetesBuilder":
        self.ha = value
        return self

    def copy_unchangeable_properties_from(
        self, live: Kubernetes
    ) -> "KubernetesBuilder":
        self.region = live.region
        self.version = live.version
        self.cluster_subnet = live.cluster_subnet
        self.service_subnet = live.service_subnet
        self.vpc = live.vpc
        self.node_pools = frozenset(_.for_builder() for _ in live.node_pools)
        return self

    def to_server(self) -> dict:
        pools = sorted(self.node_pools, key=lambda _: _.name)
        ret = {
            "name": self.name,
            "region": str(self.region),
            "version": self.version,
            "node_pools": [_.to_server() for _ in pools],
            "tags": sorted(self.tags),
            "auto_upgrade": self.auto_upgrade,
            "surge_upgrade": self.surge_upgrade,
            "ha": self.ha,
        }
        if self.cluster_subnet is not None:
            ret["cluster_subnet"] = self.cluster_subnet
        if self.service_subnet is not None:
            ret["service_subnet"] = self.service_subnet
        if self.vpc is not None:
            ret["vpc_uuid"] = str(self.vpc)
        if self.maintenance_schedule is not None:
            ret["maintenance_policy"] = self.maintenance_schedule.to_server()
        return ret


class KubernetesAdapter(ResourceAdapter):
    label = "kubernetes cluster"
    collection_path = "/v2/kubernetes/clusters"
    collection_key = "kubernetes_clusters"
    item_key = "kubernetes_cluster"
    update_statuses = (200, 202)
    conflict_phrases = ("a cluster with this name already exists",)
    destroyed_state = KubernetesState.DELETED

    def parse_node_pool(self, data: dict) -> NodePool:
        taints = [
            NodeTaint(
                key=get_str(_, "key"),
                value=get_str(_, "value", ""),
                effect=get_enum(_, "effect", TaintEffect),
            )
            for _ in get_list(data, "taints")
        ]
        nodes = [
            Node(
                id=get_str(_, "id"),
                name=get_str(_, "name"),
                state=get_enum(get_dict(_, "status"), "state", NodeState),
                message=get_str(get_dict(_, "status"), "message", ""),
                droplet_id=get_str(_, "droplet_id", ""),
                created_at=parse_time(get_str(_, "created_at")),
                updated_at=parse_time(get_str(_, "updated_at")),
            )
            for _ in get_list(data, "nodes")
        ]
        return NodePool(
            id=NodePoolId(get_str(data, "id")),
            name=get_str(data, "name"),
            droplet_type=DropletTypeId(get_str(data, "size")),
            count=get_int(data, "count"),
            tags=frozenset(get_list(data, "tags")),
            labels=get_dict(data, "labels", {}),
            taints=frozenset(taints),
            auto_scale=get_bool(data, "auto_scale", False),
            min_nodes=get_int(data, "min_nodes", 0),
            max_nodes=get_int(data, "max_nodes", 0),
            nodes=frozenset(nodes),
        )

    def parse(self, data: dict) -> Kubernetes:
        status = get_dict(data, "status")
        policy = get_dict(data, "maintenance_policy", None)
        vpc = get_str(data, "vpc_uuid", None)
        pools = map(self.parse_node_pool, get_list(data, "node_pools"))
        schedule = MaintenanceSchedule.from_server(policy) if policy else None

        cluster = Kubernetes(
            id=KubernetesId(get_str(data, "id")),
            name=get_str(data, "name"),
            region=RegionId(get_str(data, "region")),
            version=get_str(data, "version"),
            cluster_subnet=get_str(data, "cluster_subnet", ""),
            service_subnet=get_str(data, "service_subnet", ""),
            vpc=VpcId(vpc) if vpc else None,
            ipv4=get_str(data, "ipv4", ""),
            endpoint=get_str(data, "endpoint", ""),
            tags=frozenset(get_list(data, "tags")),
            node_pools=frozenset(pools),
            maintenance_schedule=schedule,
            auto_upgrade=get_bool(data, "auto_upgrade", False),
            state=get_enum(status, "state", KubernetesState),
            status_message=get_str(status, "message", ""),
            surge_upgrade=get_bool(data, "surge_upgrade", False),
            ha=get_bool(data, "ha", False),
            registry_enabled=get_bool(data, "registry_enabled", False),
            created_at=parse_time(get_str(data, "created_at")),
            updated_at=parse_time(get_str(data, "updated_at")),
        )
        return self.bind(cluster)

    def builder(
        self, name: str, region: RegionId, version: str, node_pools
    ) -> KubernetesBuilder:
        ret = KubernetesBuilder(
            name=name, region=region, version=version, node_pools=frozenset(node_pools)
        )
        ret._adapter = self
        return ret

    def state_of(self, snapshot: Kubernetes) -> KubernetesState:
        return snapshot.state

    def get_kubeconfig(self, cluster_id: KubernetesId, expiry: timedelta) -> str:
        path = f"{self.resource_path(cluster_id)}/kubeconfig"
        params = {"expiry_seconds": int(expiry.total_seconds())}
        response = self.transport.request("GET", path, params=params)
        if response.status_code == 404:
            raise ResourceNotFoundError(cluster_id)
        self.transport.check(response, (200,))
        return response.text

    def destroy_recursively(self, cluster: Kubernetes):
        path = self.resource_path(cluster.id)
        self.transport.destroy_resource(
            f"{path}/destroy_with_associated_resources/dangerous"
        )

    # ----------------------------------------------------------------------
    # Reconciliation.
    # ----------------------------------------------------------------------
    def unchangeable(self, live: Kubernetes, target: KubernetesBuilder) -> dict:
        pools = frozenset(_.for_builder() for _ in live.node_pools)
        return {
            "region": (live.region, target.region),
            "version": (live.version, target.version),
            "cluster_subnet": (live.cluster_subnet, target.cluster_subnet),
            "service_subnet": (live.service_subnet, target.service_subnet),
            "vpc": (live.vpc, target.vpc),
            "node_pools": (pools, target.node_pools),
        }

    def matches(self, live: Kubernetes, target: KubernetesBuilder) -> bool:
        pools = frozenset(_.for_builder() for _ in live.node_pools)
        return (
            live.name == target.name
            and live.region == target.region
            and live.version == target.version
            and not changed(live.cluster_subnet, target.cluster_subnet)
            and not changed(live.service_subnet, target.service_subnet)
            and not changed(live.vpc, target.vpc)
            and pools == target.node_pools
            and user_tags(live.tags) == target.tags
            and not changed(live.maintenance_schedule, target.maintenance_schedule)
            and live.auto_upgrade == target.auto_upgrade
            and live.surge_upgrade == target.surge_upgrade
            and live.ha == target.ha
        )

    def build_patch(self, live: Kubernetes, target: KubernetesBuilder) -> dict:
        patch = {}
        if live.name != target.name:
            patch["name"] = target.name
        if user_tags(live.tags) != target.tags:
            patch["tags"] = sorted(target.tags)
        if changed(live.maintenance_schedule, target.maintenance_schedule):
            assert target.maintenance_schedule is not None
            patch["maintenance_policy"] = target.maintenance_schedule.to_server()
        if live.auto_upgrade != target.auto_upgrade:
            patch["auto_upgrade"] = target.auto_upgrade
        if live.surge_upgrade != target.surge_upgrade:
            patch["surge_upgrade"] = target.surge_upgrade
        if live.ha != target.ha:
            patch["ha"] = target.ha
        return patch
