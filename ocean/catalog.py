"""Offerings of the platform, ie what the account may create and where.

None of these can be created or modified by the caller.
"""
from datetime import datetime
from decimal import Decimal
from typing import Dict, FrozenSet, List, Tuple

from pydantic import BaseModel, ConfigDict

from ocean.databases import DatabaseEngine
from ocean.droplets import DropletImage, parse_image
from ocean.errors import ResourceNotFoundError, UnexpectedResponseError
from ocean.ids import DropletTypeId, RegionId
from ocean.resource import ResourceAdapter, Snapshot
from ocean.transport import (
    get_bool,
    get_dict,
    get_int,
    get_list,
    get_str,
    get_time,
    get_value,
)

# Sizes of disks and GPU memory are reported in these units.
MIB_PER_UNIT = {"gib": 1024, "tib": 1024 * 1024}


def _mib(node: dict) -> int:
    amount, unit = get_int(node, "amount"), get_str(node, "unit")
    try:
        return amount * MIB_PER_UNIT[unit]
    except KeyError:
        raise UnexpectedResponseError(f"unknown unit <{unit}>") from None


def _decimal(node: dict, name: str) -> Decimal:
    return Decimal(str(get_value(node, name)))


# ----------------------------------------------------------------------
# Droplet types.
# ----------------------------------------------------------------------
class DiskInfo(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Scratch disks lose their data when the droplet stops.
    persistent: bool
    size_mib: int


class GpuInfo(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    count: int
    model: str
    vram_mib: int


class DropletType(Snapshot):
    """Hardware configuration of a droplet, eg `s-1vcpu-1gb`."""

    id: DropletTypeId
    memory_mib: int
    vcpus: int
    disk_gib: int
    transfer_tib: Decimal
    price_hourly: Decimal
    price_monthly: Decimal
    regions: FrozenSet[RegionId] = frozenset()
    available: bool
    description: str = ""
    disks: Tuple[DiskInfo, ...] = ()
    gpu: GpuInfo | None = None

    @property
    def is_contracted(self) -> bool:
        """Return `True` if the type requires a contract with the provider."""
        return len(self.regions) == 0


class DropletTypeAdapter(ResourceAdapter):
    label = "droplet type"
    collection_path = "/v2/sizes"
    collection_key = "sizes"

    def parse(self, data: dict) -> DropletType:
        disks = []
        for disk in get_list(data, "disk_info"):
            kind = get_str(disk, "type")
            if kind not in ("local", "scratch"):
                raise UnexpectedResponseError(f"unknown disk type <{kind}>")
            size = _mib(get_dict(disk, "size"))
            disks.append(DiskInfo(persistent=kind == "local", size_mib=size))

        gpu = get_dict(data, "gpu_info", None)
        if gpu is not None:
            gpu = GpuInfo(
                count=get_int(gpu, "count"),
                model=get_str(gpu, "model"),
                vram_mib=_mib(get_dict(gpu, "vram")),
            )

        droplet_type = DropletType(
            id=DropletTypeId(get_str(data, "slug")),
            memory_mib=get_int(data, "memory"),
            vcpus=get_int(data, "vcpus"),
            disk_gib=get_int(data, "disk"),
            transfer_tib=_decimal(data, "transfer"),
            price_hourly=_decimal(data, "price_hourly"),
            price_monthly=_decimal(data, "price_monthly"),
            regions=frozenset(RegionId(_) for _ in get_list(data, "regions")),
            available=get_bool(data, "available"),
            description=get_str(data, "description", ""),
            disks=tuple(disks),
            gpu=gpu,
        )
        return self.bind(droplet_type)

    def get(self, resource_id: DropletTypeId) -> DropletType:
        # The API has no endpoint for individual droplet types.
        droplet_type = self.find(lambda _: _.id == resource_id)
        if droplet_type is None:
            raise ResourceNotFoundError(resource_id)
        return droplet_type

    def available(self, region: RegionId | None = None) -> List[DropletType]:
        """Return the types the account may create, optionally in `region`."""
        return self.list(
            lambda _: _.available and (region is None or region in _.regions)
        )


# ----------------------------------------------------------------------
# Images.
# ----------------------------------------------------------------------
class ImageAdapter(ResourceAdapter):
    """Public images and the snapshots, backups and uploads of the account.

    `get` accepts the slug of public images (eg `ubuntu-24-04-x64`) as well as
    the numeric ID of any image.
    """

    label = "image"
    collection_path = "/v2/images"
    collection_key = "images"
    item_key = "image"

    def parse(self, data: dict) -> DropletImage:
        return parse_image(data)

    def distributions(self) -> List[DropletImage]:
        """Return the public operating system images."""
        params = {"type": "distribution"}
        return self.transport.get_elements(
            self.collection_path, params, self.parse_page
        )


# ----------------------------------------------------------------------
# Kubernetes versions.
# ----------------------------------------------------------------------
class KubernetesVersion(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    # Eg `1.29.1-do.0`. Builders need this value.
    slug: str

    # Eg `1.29.1`.
    kubernetes_version: str
    supported_features: FrozenSet[str] = frozenset()

    @property
    def release(self) -> Tuple[int, ...]:
        """Return the numeric upstream version, eg `(1, 29, 1)`."""
        try:
            return tuple(int(_) for _ in self.kubernetes_version.split("."))
        except ValueError:
            return ()


class KubernetesVersionAdapter(ResourceAdapter):
    label = "Kubernetes version"
    collection_path = "/v2/kubernetes/options"

    def parse(self, data: dict) -> KubernetesVersion:
        return KubernetesVersion(
            slug=get_str(data, "slug"),
            kubernetes_version=get_str(data, "kubernetes_version"),
            supported_features=frozenset(get_list(data, "supported_features")),
        )

    def parse_page(self, page: dict) -> List[KubernetesVersion]:
        options = get_dict(page, "options")
        return [self.parse(_) for _ in get_list(options, "versions")]

    def get(self, slug: str) -> KubernetesVersion:
        version = self.find(lambda _: _.slug == slug)
        if version is None:
            raise ResourceNotFoundError(slug)
        return version

    def latest(self) -> KubernetesVersion:
        """Return the newest version the server offers."""
        versions = self.list()
        if len(versions) == 0:
            raise UnexpectedResponseError("server offers no Kubernetes versions")
        return max(versions, key=lambda _: _.release)


# ----------------------------------------------------------------------
# Database engines.
# ----------------------------------------------------------------------
class VersionAvailability(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str
    end_of_life: datetime | None = None
    end_of_availability: datetime | None = None


class DatabaseType(BaseModel):
    """Regions, versions and sizes the server offers for a database engine."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    engine: DatabaseEngine
    regions: FrozenSet[RegionId] = frozenset()
    versions: FrozenSet[str] = frozenset()

    # Valid droplet types for each number of nodes, ie standby nodes plus one.
    layouts: Dict[int, FrozenSet[DropletTypeId]] = {}
    availability: Tuple[VersionAvailability, ...] = ()

    def droplet_types(self, standby_nodes: int) -> FrozenSet[DropletTypeId]:
        return self.layouts.get(standby_nodes + 1, frozenset())

    def end_of_life(self, version: str) -> datetime | None:
        for info in self.availability:
            if info.version == version:
                return info.end_of_life
        return None

    def end_of_availability(self, version: str) -> datetime | None:
        for info in self.availability:
            if info.version == version:
                return info.end_of_availability
        return None


class DatabaseTypeAdapter(ResourceAdapter):
    label = "database type"
    collection_path = "/v2/databases/options"

    def parse(self, data: dict) -> DatabaseType:
        """Return the type for `data`, ie the options of one engine.

        The caller injects the `engine` name and the matching
        `version_availability` list into `data`.
        """
        layouts = {
            get_int(_, "num_nodes"): frozenset(
                DropletTypeId(size) for size in get_list(_, "sizes")
            )
            for _ in get_list(data, "layouts")
        }
        availability = [
            VersionAvailability(
                version=get_str(_, "version"),
                end_of_life=get_time(_, "end_of_life", None),
                end_of_availability=get_time(_, "end_of_availability", None),
            )
            for _ in get_list(data, "version_availability")
        ]
        return DatabaseType(
            engine=DatabaseEngine(get_str(data, "engine")),
            regions=frozenset(RegionId(_) for _ in get_list(data, "regions")),
            versions=frozenset(get_list(data, "versions")),
            layouts=layouts,
            availability=tuple(availability),
        )

    def parse_page(self, page: dict) -> List[DatabaseType]:
        options = get_dict(page, "options")
        availability = get_dict(page, "version_availability", {})
        known = {_.value for _ in DatabaseEngine}

        ret = []
        for engine, data in sorted(options.items()):
            # Skip engines this library does not support yet.
            if engine not in known:
                continue
            versions = availability.get(engine) or []
            ret.append(
                self.parse(
                    data | {"engine": engine, "version_availability": versions}
                )
            )
        return ret

    def get(self, engine: DatabaseEngine) -> DatabaseType:
        ret = self.find(lambda _: _.engine == engine)
        if ret is None:
            raise ResourceNotFoundError(engine.value)
        return ret
