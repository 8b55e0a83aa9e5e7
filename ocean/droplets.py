import logging
import re
from datetime import datetime, timedelta
from enum import Enum
from ipaddress import IPv4Address, IPv6Address, ip_address
from typing import FrozenSet

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

import ocean.poll
import ocean.tags
from ocean.errors import (
    ActionFailedError,
    ResourceNotFoundError,
    UnexpectedResponseError,
)
from ocean.ids import DropletId, DropletTypeId, ImageId, RegionId, SshKeyId, VpcId
from ocean.models import BackupSchedule, valid_tag
from ocean.resource import Builder, ManagedSnapshot, ResourceAdapter, changed
from ocean.transport import (
    get_bool,
    get_dict,
    get_enum,
    get_int,
    get_list,
    get_str,
    get_value,
    parse_time,
)

# Convenience.
logit = logging.getLogger("ocean")

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9]?[a-z0-9A-Z.\-]*[a-z0-9A-Z]$")
MAX_USER_DATA_BYTES = 64 * 1024


class DropletStatus(str, Enum):
    NEW = "new"
    ACTIVE = "active"
    OFF = "off"
    ARCHIVE = "archive"


class DropletFeature(str, Enum):
    BACKUPS = "backups"
    IPV6 = "ipv6"
    MONITORING = "monitoring"
    PRIVATE_NETWORKING = "private_networking"


# Server side feature names. The monitoring agent is called `droplet_agent`.
SERVER_FEATURES = {
    "backups": DropletFeature.BACKUPS,
    "ipv6": DropletFeature.IPV6,
    "monitoring": DropletFeature.MONITORING,
    "droplet_agent": DropletFeature.MONITORING,
    "private_networking": DropletFeature.PRIVATE_NETWORKING,
}

DEFAULT_FEATURES = frozenset(
    {DropletFeature.MONITORING, DropletFeature.PRIVATE_NETWORKING}
)


class ImageType(str, Enum):
    BASE = "base"
    SNAPSHOT = "snapshot"
    BACKUP = "backup"
    CUSTOM = "custom"
    ADMIN = "admin"


class ImageStatus(str, Enum):
    NEW = "new"
    AVAILABLE = "available"
    PENDING = "pending"
    DELETED = "deleted"
    RETIRED = "retired"


class DropletImage(BaseModel):
    """Operating system image of a droplet.

    Droplets only embed a summary of their image, hence most fields have
    defaults. `ocean.catalog.ImageAdapter` returns complete images.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    id: int
    slug: str | None = None
    name: str = ""
    distribution: str = ""
    public: bool = False
    regions: FrozenSet[RegionId] = frozenset()
    type: ImageType | None = None
    min_disk_size_gib: int = 0
    size_gib: float = 0
    description: str = ""
    tags: FrozenSet[str] = frozenset()
    status: ImageStatus | None = None
    error_message: str = ""
    created_at: datetime | None = None

    @property
    def key(self) -> ImageId:
        return ImageId(self.slug or str(self.id))

    def matches(self, image: ImageId) -> bool:
        """Return `True` if `image` is either our slug or our numeric ID."""
        return str(image) in (self.slug, str(self.id))


def parse_image(data: dict) -> DropletImage:
    def lower(name: str) -> str | None:
        val = get_str(data, name, None)
        return val.lower() if val else None

    kind, status = lower("type"), lower("status")
    created = get_str(data, "created_at", None)
    try:
        return DropletImage(
            id=get_int(data, "id"),
            slug=get_str(data, "slug", None),
            name=get_str(data, "name", ""),
            distribution=get_str(data, "distribution", ""),
            public=get_bool(data, "public", False),
            regions=frozenset(RegionId(_) for _ in get_list(data, "regions")),
            type=ImageType(kind) if kind else None,
            min_disk_size_gib=get_int(data, "min_disk_size", 0),
            size_gib=get_value(data, "size_gigabytes", 0),
            description=get_str(data, "description", ""),
            tags=frozenset(get_list(data, "tags")),
            status=ImageStatus(status) if status else None,
            error_message=get_str(data, "error_message", ""),
            created_at=parse_time(created) if created else None,
        )
    except ValueError as err:
        raise UnexpectedResponseError(f"invalid image: {err}") from None


class Droplet(ManagedSnapshot):
    id: DropletId
    name: str
    droplet_type: DropletTypeId
    image: DropletImage
    region: RegionId
    vpc: VpcId | None = None
    addresses: FrozenSet[IPv4Address | IPv6Address] = frozenset()
    features: FrozenSet[DropletFeature] = frozenset()
    tags: FrozenSet[str] = frozenset()
    status: DropletStatus
    created_at: datetime

    def wait_for(self, status: DropletStatus, timeout: float | timedelta) -> "Droplet":
        return ocean.poll.wait_for(self._adapter, self, status, timeout)


class DropletBuilder(Builder):
    name: str
    droplet_type: DropletTypeId
    image: ImageId
    region: RegionId
    vpc: VpcId | None = None
    ssh_keys: FrozenSet[SshKeyId] = frozenset()
    features: FrozenSet[DropletFeature] = DEFAULT_FEATURES
    tags: FrozenSet[str] = frozenset()
    user_data: str | None = None
    backup_schedule: BackupSchedule | None = None

    # Abort the creation if the image does not support the monitoring agent.
    fail_on_unsupported_os: bool = False

    @field_validator("name")
    @classmethod
    def valid_name(cls, v: str) -> str:
        if NAME_PATTERN.match(v) is None:
            raise ValueError(f"must match {NAME_PATTERN.pattern} (got {v!r})")
        return v

    @field_validator("tags")
    @classmethod
    def valid_tags(cls, v: FrozenSet[str]) -> FrozenSet[str]:
        for tag in v:
            valid_tag(tag)
        return v

    @field_validator("user_data")
    @classmethod
    def valid_user_data(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if len(v) == 0:
            raise ValueError("must be nonempty")
        if len(v.encode("utf8")) > MAX_USER_DATA_BYTES:
            raise ValueError(f"must not exceed {MAX_USER_DATA_BYTES} bytes")
        return v

    @model_validator(mode="after")
    def backups_need_feature(self):
        if self.backup_schedule and DropletFeature.BACKUPS not in self.features:
            raise ValueError("backup schedule requires the BACKUPS feature")
        return self

    # ----------------------------------------------------------------------
    # Fluent setters.
    # ----------------------------------------------------------------------
    def set_name(self, name: str) -> "DropletBuilder":
        self.name = name
        return self

    def set_vpc(self, vpc: VpcId) -> "DropletBuilder":
        self.vpc = vpc
        return self

    def set_ssh_keys(self, keys) -> "DropletBuilder":
        self.ssh_keys = frozenset(keys)
        return self

    def set_features(self, features) -> "DropletBuilder":
        self.features = frozenset(features)
        return self

    def set_tags(self, tags) -> "DropletBuilder":
        self.tags = frozenset(tags)
        return self

    def add_tag(self, tag: str) -> "DropletBuilder":
        self.tags = self.tags | {tag}
        return self

    def set_user_data(self, user_data: str) -> "DropletBuilder":
        self.user_data = user_data
        return self

    def set_backup_schedule(self, schedule: BackupSchedule) -> "DropletBuilder":
        self.features = self.features | {DropletFeature.BACKUPS}
        self.backup_schedule = schedule
        return self

    def set_fail_on_unsupported_os(self, value: bool) -> "DropletBuilder":
        self.fail_on_unsupported_os = value
        return self

    def copy_unchangeable_properties_from(self, live: Droplet) -> "DropletBuilder":
        self.droplet_type = live.droplet_type
        self.image = live.image.key
        self.region = live.region
        self.vpc = live.vpc
        self.features = live.features
        return self

    def to_server(self) -> dict:
        image = str(self.image)
        ret = {
            "name": self.name,
            "size": str(self.droplet_type),
            "image": int(image) if image.isdigit() else image,
            "region": str(self.region),
            "ssh_keys": sorted(_.value for _ in self.ssh_keys),
            "backups": DropletFeature.BACKUPS in self.features,
            "ipv6": DropletFeature.IPV6 in self.features,
            "monitoring": DropletFeature.MONITORING in self.features,
            "private_networking": DropletFeature.PRIVATE_NETWORKING in self.features,
            "tags": sorted(self.tags),
        }
        if self.vpc is not None:
            ret["vpc_uuid"] = str(self.vpc)
        if self.user_data is not None:
            ret["user_data"] = self.user_data
        if self.backup_schedule is not None:
            ret["backup_policy"] = self.backup_schedule.to_server()
        if self.fail_on_unsupported_os:
            ret["with_droplet_agent"] = True
        return ret


class DropletAdapter(ResourceAdapter):
    label = "droplet"
    collection_path = "/v2/droplets"
    collection_key = "droplets"
    item_key = "droplet"
    create_statuses = (202,)

    # Seconds to wait for actions like `rename` to complete.
    action_timeout = 300

    def parse(self, data: dict) -> Droplet:
        networks = get_dict(data, "networks", {})
        addresses = [
            ip_address(get_str(_, "ip_address"))
            for version in ("v4", "v6")
            for _ in get_list(networks, version)
        ]
        features = [SERVER_FEATURES.get(_) for _ in get_list(data, "features")]
        vpc = get_str(data, "vpc_uuid", None)

        droplet = Droplet(
            id=DropletId(get_int(data, "id")),
            name=get_str(data, "name"),
            droplet_type=DropletTypeId(get_str(data, "size_slug")),
            image=parse_image(get_dict(data, "image")),
            region=RegionId(get_str(get_dict(data, "region"), "slug")),
            vpc=VpcId(vpc) if vpc else None,
            addresses=frozenset(addresses),
            features=frozenset(_ for _ in features if _ is not None),
            tags=frozenset(get_list(data, "tags")),
            status=get_enum(data, "status", DropletStatus),
            created_at=parse_time(get_str(data, "created_at")),
        )
        return self.bind(droplet)

    def builder(
        self,
        name: str,
        droplet_type: DropletTypeId,
        image: ImageId,
        region: RegionId,
    ) -> DropletBuilder:
        ret = DropletBuilder(
            name=name, droplet_type=droplet_type, image=image, region=region
        )
        ret._adapter = self
        return ret

    def state_of(self, snapshot: Droplet) -> DropletStatus:
        return snapshot.status

    def on_unprocessable(self, builder: DropletBuilder, message: str):
        if "smaller disk than the image" in message.lower():
            raise ValueError(message)

    # ----------------------------------------------------------------------
    # Reconciliation.
    # ----------------------------------------------------------------------
    def unchangeable(self, live: Droplet, target: DropletBuilder) -> dict:
        image = target.image if live.image.matches(target.image) else live.image.key
        return {
            "droplet_type": (live.droplet_type, target.droplet_type),
            "image": (image, target.image),
            "region": (live.region, target.region),
            "vpc": (live.vpc, target.vpc),
            "features": (live.features, target.features),
        }

    def matches(self, live: Droplet, target: DropletBuilder) -> bool:
        return (
            live.name == target.name
            and live.droplet_type == target.droplet_type
            and live.image.matches(target.image)
            and live.region == target.region
            and not changed(live.vpc, target.vpc)
            and live.features == target.features
            and live.tags == target.tags
        )

    def build_patch(self, live: Droplet, target: DropletBuilder) -> dict:
        patch = {}
        if live.name != target.name:
            patch["name"] = target.name
        if live.tags != target.tags:
            patch["tags"] = sorted(target.tags)
        return patch

    def write_patch(self, live: Droplet, patch: dict):
        if "name" in patch:
            self.run_action(live.id, {"type": "rename", "name": patch["name"]})
        if "tags" in patch:
            ocean.tags.retag(
                self.transport, "droplet", live.id, live.tags, set(patch["tags"])
            )

    def run_action(self, droplet_id: DropletId, action: dict):
        """Trigger a droplet action and block until the server completed it."""
        path = f"{self.resource_path(droplet_id)}/actions"
        response = self.transport.request("POST", path, action)
        if response.status_code == 404:
            raise ResourceNotFoundError(droplet_id)
        self.transport.check(response, (201,))
        action_id = get_int(
            get_dict(self.transport.response_body(response), "action"), "id"
        )

        def fetch() -> str:
            resp = self.transport.request("GET", f"{path}/{action_id}")
            self.transport.check(resp, (200,))
            body = self.transport.response_body(resp)
            return get_str(get_dict(body, "action"), "status")

        status = ocean.poll.poll(
            fetch,
            lambda _: _ in ("completed", "errored"),
            self.action_timeout,
            f"droplet {droplet_id} action {action['type']}",
        )
        if status == "errored":
            raise ActionFailedError(action_id, action["type"])
        logit.info(f"droplet {droplet_id}: action <{action['type']}> completed")
