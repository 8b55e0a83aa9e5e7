import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import FrozenSet, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

import ocean.poll
import ocean.tags
from ocean.errors import OceanError, ResourceNotFoundError, UnexpectedResponseError
from ocean.ids import DatabaseId, DropletTypeId, ProjectId, RegionId, VpcId
from ocean.models import DatabaseMaintenanceSchedule, valid_tag, valid_text
from ocean.reconcile import Created, CreateResult
from ocean.resource import Builder, ManagedSnapshot, ResourceAdapter, changed
from ocean.transport import (
    get_bool,
    get_dict,
    get_enum,
    get_int,
    get_list,
    get_str,
    get_time,
    parse_time,
)

# Convenience.
logit = logging.getLogger("ocean")

MAX_STANDBY_NODES = 2


class DatabaseEngine(str, Enum):
    POSTGRESQL = "pg"
    MYSQL = "mysql"
    REDIS = "redis"
    VALKEY = "valkey"
    MONGODB = "mongodb"
    KAFKA = "kafka"
    OPENSEARCH = "opensearch"


class DatabaseStatus(str, Enum):
    CREATING = "creating"
    ONLINE = "online"
    RESIZING = "resizing"
    MIGRATING = "migrating"
    FORKING = "forking"


class FirewallRuleType(str, Enum):
    DROPLET = "droplet"
    KUBERNETES = "k8s"
    IP_ADDRESS = "ip_addr"
    TAG = "tag"
    APP = "app"


class FirewallRule(BaseModel):
    """Source that may connect to a database, eg all droplets tagged `web`."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: FirewallRuleType
    value: str

    @field_validator("value")
    @classmethod
    def valid_value(cls, v: str) -> str:
        return valid_text(v)

    def to_server(self) -> dict:
        return {"type": self.type.value, "value": self.value}


class DatabaseFirewallRule(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    uuid: str
    cluster_uuid: str
    type: FirewallRuleType
    value: str
    created_at: datetime

    @property
    def rule(self) -> FirewallRule:
        return FirewallRule(type=self.type, value=self.value)


class DatabaseUser(BaseModel):
    """Database user. Two users are equal if their names are."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    role: str = ""
    password: str = Field(default="", repr=False)

    def __eq__(self, other):
        return isinstance(other, DatabaseUser) and other.name == self.name

    def __hash__(self):
        return hash(self.name)


class Connection(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    uri: str = Field(default="", repr=False)
    database: str = ""
    host: str
    port: int
    user: str = ""
    password: str = Field(default="", repr=False)
    ssl: bool = False


class Endpoint(BaseModel):
    """Host and port of a service, eg a metrics exporter."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    host: str
    port: int


class RestoreSource(BaseModel):
    """Create a database from the backup of another one."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    database_name: str

    # Use the latest backup if `None`.
    backup_created_at: datetime | None = None

    def to_server(self) -> dict:
        ret: dict = {"database_name": self.database_name}
        if self.backup_created_at is not None:
            ret["backup_created_at"] = self.backup_created_at.isoformat()
        return ret


class Database(ManagedSnapshot):
    id: DatabaseId
    name: str
    engine: DatabaseEngine
    version: str
    semantic_version: str = ""
    standby_nodes: int
    size: DropletTypeId
    region: RegionId
    status: DatabaseStatus
    vpc: VpcId | None = None
    tags: FrozenSet[str] = frozenset()
    db_names: FrozenSet[str] = frozenset()
    connection: Connection | None = None
    private_connection: Connection | None = None
    standby_connection: Connection | None = None
    standby_private_connection: Connection | None = None
    users: FrozenSet[DatabaseUser] = frozenset()
    maintenance_schedule: DatabaseMaintenanceSchedule | None = None
    maintenance_pending: bool = False
    maintenance_description: Tuple[str, ...] = ()
    project_id: ProjectId | None = None
    firewall_rules: FrozenSet[DatabaseFirewallRule] = frozenset()
    storage_size_mib: int = 0
    metrics_endpoints: FrozenSet[Endpoint] = frozenset()

    # When the server stops supporting, respectively offering, `version`.
    version_end_of_life: datetime | None = None
    version_end_of_availability: datetime | None = None
    created_at: datetime

    def wait_for(
        self, status: DatabaseStatus, timeout: float | timedelta
    ) -> "Database":
        return ocean.poll.wait_for(self._adapter, self, status, timeout)

    def set_maintenance_schedule(
        self, schedule: DatabaseMaintenanceSchedule
    ) -> "Database":
        """Move the maintenance window and return the updated snapshot."""
        self._adapter.write_maintenance(self.id, schedule)
        return self.reload()


class DatabaseBuilder(Builder):
    name: str
    engine: DatabaseEngine
    standby_nodes: int = Field(ge=0, le=MAX_STANDBY_NODES)
    size: DropletTypeId
    region: RegionId

    # `None` lets the server choose.
    version: str | None = None
    vpc: VpcId | None = None
    project_id: ProjectId | None = None
    storage_size_mib: int | None = Field(default=None, ge=0)
    maintenance_schedule: DatabaseMaintenanceSchedule | None = None

    tags: FrozenSet[str] = frozenset()
    firewall_rules: FrozenSet[FirewallRule] = frozenset()
    restore_from: RestoreSource | None = None

    @field_validator("name")
    @classmethod
    def valid_name(cls, v: str) -> str:
        return valid_text(v)

    @field_validator("version")
    @classmethod
    def valid_version(cls, v: str | None) -> str | None:
        return v if v is None else valid_text(v)

    @field_validator("tags")
    @classmethod
    def valid_tags(cls, v: FrozenSet[str]) -> FrozenSet[str]:
        for tag in v:
            valid_tag(tag)
        return v

    # ----------------------------------------------------------------------
    # Fluent setters.
    # ----------------------------------------------------------------------
    def set_version(self, version: str) -> "DatabaseBuilder":
        self.version = version
        return self

    def set_standby_nodes(self, count: int) -> "DatabaseBuilder":
        self.standby_nodes = count
        return self

    def set_size(self, size: DropletTypeId) -> "DatabaseBuilder":
        self.size = size
        return self

    def set_vpc(self, vpc: VpcId) -> "DatabaseBuilder":
        self.vpc = vpc
        return self

    def set_project(self, project_id: ProjectId) -> "DatabaseBuilder":
        self.project_id = project_id
        return self

    def set_storage_size_mib(self, size: int) -> "DatabaseBuilder":
        self.storage_size_mib = size
        return self

    def set_tags(self, tags) -> "DatabaseBuilder":
        self.tags = frozenset(tags)
        return self

    def add_tag(self, tag: str) -> "DatabaseBuilder":
        self.tags = self.tags | {tag}
        return self

    def set_firewall_rules(self, rules) -> "DatabaseBuilder":
        self.firewall_rules = frozenset(rules)
        return self

    def add_firewall_rule(self, rule: FirewallRule) -> "DatabaseBuilder":
        self.firewall_rules = self.firewall_rules | {rule}
        return self

    def set_maintenance_schedule(
        self, schedule: DatabaseMaintenanceSchedule
    ) -> "DatabaseBuilder":
        self.maintenance_schedule = schedule
        return self

    def set_restore_from(self, source: RestoreSource) -> "DatabaseBuilder":
        self.restore_from = source
        return self

    def copy_unchangeable_properties_from(self, live: Database) -> "DatabaseBuilder":
        self.name = live.name
        self.engine = live.engine
        self.region = live.region
        self.version = live.version
        self.vpc = live.vpc
        self.project_id = live.project_id
        return self

    def create(self) -> CreateResult:
        """Create the database and then move its maintenance window.

        The database exists once the server accepted it. A failure to move
        the window is logged and the caller receives the snapshot with the
        default window, which a subsequent `update` will correct.
        """
        result = super().create()

        # The API only accepts maintenance windows for existing databases.
        if not isinstance(result, Created) or self.maintenance_schedule is None:
            return result
        try:
            live = result.resource.set_maintenance_schedule(self.maintenance_schedule)
        except (OceanError, UnexpectedResponseError) as err:
            logit.error(
                f"could not set maintenance window of database {result.resource.id}",
                {"error": str(err), "schedule": self.maintenance_schedule.to_server()},
            )
            return result
        return Created(resource=live)

    def to_server(self) -> dict:
        ret = {
            "name": self.name,
            "engine": self.engine.value,
            "num_nodes": self.standby_nodes + 1,
            "size": str(self.size),
            "region": str(self.region),
            "tags": sorted(self.tags),
            "rules": [_.to_server() for _ in sorted(self.firewall_rules, key=str)],
        }
        if self.version is not None:
            ret["version"] = self.version
        if self.vpc is not None:
            ret["private_network_uuid"] = str(self.vpc)
        if self.project_id is not None:
            ret["project_id"] = str(self.project_id)
        if self.storage_size_mib is not None:
            ret["storage_size_mib"] = self.storage_size_mib
        if self.restore_from is not None:
            ret["backup_restore"] = self.restore_from.to_server()
        return ret


class DatabaseAdapter(ResourceAdapter):
    label = "database"
    collection_path = "/v2/databases"
    collection_key = "databases"
    item_key = "database"
    conflict_phrases = ("cluster name is not available",)

    def parse_connection(self, data: dict | None) -> Connection | None:
        if not data:
            return None
        return Connection(
            uri=get_str(data, "uri", ""),
            database=get_str(data, "database", ""),
            host=get_str(data, "host"),
            port=get_int(data, "port"),
            user=get_str(data, "user", ""),
            password=get_str(data, "password", ""),
            ssl=get_bool(data, "ssl", False),
        )

    def parse(self, data: dict) -> Database:
        window = get_dict(data, "maintenance_window", None)
        vpc = get_str(data, "private_network_uuid", None)
        project = get_str(data, "project_id", None)
        users = [
            DatabaseUser(
                name=get_str(_, "name"),
                role=get_str(_, "role", ""),
                password=get_str(_, "password", ""),
            )
            for _ in get_list(data, "users")
        ]
        rules = [
            DatabaseFirewallRule(
                uuid=get_str(_, "uuid"),
                cluster_uuid=get_str(_, "cluster_uuid"),
                type=get_enum(_, "type", FirewallRuleType),
                value=get_str(_, "value"),
                created_at=parse_time(get_str(_, "created_at")),
            )
            for _ in get_list(data, "rules")
        ]

        endpoints = [
            Endpoint(host=get_str(_, "host"), port=get_int(_, "port"))
            for _ in get_list(data, "metrics_endpoints")
        ]

        database = Database(
            id=DatabaseId(get_str(data, "id")),
            name=get_str(data, "name"),
            engine=get_enum(data, "engine", DatabaseEngine),
            version=get_str(data, "version"),
            semantic_version=get_str(data, "semantic_version", ""),
            standby_nodes=get_int(data, "num_nodes") - 1,
            size=DropletTypeId(get_str(data, "size")),
            region=RegionId(get_str(data, "region")),
            status=get_enum(data, "status", DatabaseStatus),
            vpc=VpcId(vpc) if vpc else None,
            tags=frozenset(get_list(data, "tags")),
            db_names=frozenset(get_list(data, "db_names")),
            connection=self.parse_connection(get_dict(data, "connection", None)),
            private_connection=self.parse_connection(
                get_dict(data, "private_connection", None)
            ),
            standby_connection=self.parse_connection(
                get_dict(data, "standby_connection", None)
            ),
            standby_private_connection=self.parse_connection(
                get_dict(data, "standby_private_connection", None)
            ),
            users=frozenset(users),
            maintenance_schedule=(
                DatabaseMaintenanceSchedule.from_server(window) if window else None
            ),
            maintenance_pending=get_bool(window or {}, "pending", False),
            maintenance_description=tuple(get_list(window or {}, "description")),
            project_id=ProjectId(project) if project else None,
            firewall_rules=frozenset(rules),
            storage_size_mib=get_int(data, "storage_size_mib", 0),
            metrics_endpoints=frozenset(endpoints),
            version_end_of_life=get_time(data, "version_end_of_life", None),
            version_end_of_availability=get_time(
                data, "version_end_of_availability", None
            ),
            created_at=parse_time(get_str(data, "created_at")),
        )
        return self.bind(database)

    def builder(
        self,
        name: str,
        engine: DatabaseEngine,
        standby_nodes: int,
        size: DropletTypeId,
        region: RegionId,
    ) -> DatabaseBuilder:
        ret = DatabaseBuilder(
            name=name,
            engine=engine,
            standby_nodes=standby_nodes,
            size=size,
            region=region,
        )
        ret._adapter = self
        return ret

    def state_of(self, snapshot: Database) -> DatabaseStatus:
        return snapshot.status

    def on_unprocessable(self, builder: DatabaseBuilder, message: str):
        if "invalid size" in message.lower():
            raise ValueError(message)

    def write_maintenance(
        self, database_id: DatabaseId, schedule: DatabaseMaintenanceSchedule
    ):
        path = f"{self.resource_path(database_id)}/maintenance"
        response = self.transport.request("PUT", path, schedule.to_server())
        if response.status_code == 404:
            raise ResourceNotFoundError(database_id)
        self.transport.check(response, (204,))
        logit.info(
            f"moved maintenance window of database {database_id}", schedule.to_server()
        )

    # ----------------------------------------------------------------------
    # Reconciliation.
    # ----------------------------------------------------------------------
    def unchangeable(self, live: Database, target: DatabaseBuilder) -> dict:
        return {
            "name": (live.name, target.name),
            "engine": (live.engine, target.engine),
            "region": (live.region, target.region),
            "version": (live.version, target.version),
            "vpc": (live.vpc, target.vpc),
            "project_id": (live.project_id, target.project_id),
        }

    def matches(self, live: Database, target: DatabaseBuilder) -> bool:
        return (
            live.name == target.name
            and live.engine == target.engine
            and live.region == target.region
            and not changed(live.version, target.version)
            and not changed(live.vpc, target.vpc)
            and not changed(live.project_id, target.project_id)
            and not self._resize(live, target)
            and not changed(live.maintenance_schedule, target.maintenance_schedule)
            and frozenset(_.rule for _ in live.firewall_rules) == target.firewall_rules
            and live.tags == target.tags
        )

    def _resize(self, live: Database, target: DatabaseBuilder) -> bool:
        return (
            live.size != target.size
            or live.standby_nodes != target.standby_nodes
            or changed(live.storage_size_mib, target.storage_size_mib)
        )

    def build_patch(self, live: Database, target: DatabaseBuilder) -> dict:
        """Return the changes grouped by the endpoint that applies them."""
        patch = {}
        if self._resize(live, target):
            patch["resize"] = {
                "size": str(target.size),
                "num_nodes": target.standby_nodes + 1,
            }
            if target.storage_size_mib is not None:
                patch["resize"]["storage_size_mib"] = target.storage_size_mib
        if changed(live.maintenance_schedule, target.maintenance_schedule):
            assert target.maintenance_schedule is not None
            patch["maintenance"] = target.maintenance_schedule.to_server()
        if frozenset(_.rule for _ in live.firewall_rules) != target.firewall_rules:
            rules = sorted(target.firewall_rules, key=str)
            patch["firewall"] = {"rules": [_.to_server() for _ in rules]}
        if live.tags != target.tags:
            patch["tags"] = sorted(target.tags)
        return patch

    def write_patch(self, live: Database, patch: dict):
        path = self.resource_path(live.id)
        endpoints = [("resize", (202,)), ("maintenance", (204,)), ("firewall", (204,))]
        for name, expected in endpoints:
            if name not in patch:
                continue
            response = self.transport.request("PUT", f"{path}/{name}", patch[name])
            if response.status_code == 404:
                raise ResourceNotFoundError(live.id)
            self.transport.check(response, expected)

        if "tags" in patch:
            ocean.tags.retag(
                self.transport, "database", live.id, live.tags, set(patch["tags"])
            )
