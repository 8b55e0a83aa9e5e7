"""Regions and virtual private clouds."""
from datetime import datetime
from types import MappingProxyType
from typing import FrozenSet, List

from ocean.errors import ResourceNotFoundError
from ocean.ids import DropletTypeId, RegionId, VpcId
from ocean.resource import ResourceAdapter, Snapshot
from ocean.transport import get_bool, get_list, get_str, parse_time

# City of every data center prefix, eg `nyc1` -> New York.
DATACENTER_LOCATIONS = MappingProxyType(
    {
        "ams": "Amsterdam",
        "blr": "Bangalore",
        "fra": "Frankfurt",
        "lon": "London",
        "nyc": "New York",
        "sfo": "San Francisco",
        "sgp": "Singapore",
        "syd": "Sydney",
        "tor": "Toronto",
    }
)


def location_of(region: RegionId) -> str:
    """Return the city of `region`, eg `New York` for `nyc3`."""
    prefix = str(region).rstrip("0123456789")
    try:
        return DATACENTER_LOCATIONS[prefix]
    except KeyError:
        raise ValueError(f"unknown region <{region}>") from None


class Region(Snapshot):
    id: RegionId
    name: str
    features: FrozenSet[str] = frozenset()
    available: bool
    sizes: FrozenSet[DropletTypeId] = frozenset()

    @property
    def location(self) -> str:
        return location_of(self.id)


class Vpc(Snapshot):
    id: VpcId
    name: str
    region: RegionId
    ip_range: str = ""
    default: bool
    description: str = ""
    urn: str = ""
    created_at: datetime | None = None


class RegionAdapter(ResourceAdapter):
    label = "region"
    collection_path = "/v2/regions"
    collection_key = "regions"

    def parse(self, data: dict) -> Region:
        region = Region(
            id=RegionId(get_str(data, "slug")),
            name=get_str(data, "name"),
            features=frozenset(get_list(data, "features")),
            available=get_bool(data, "available"),
            sizes=frozenset(DropletTypeId(_) for _ in get_list(data, "sizes")),
        )
        return self.bind(region)

    def get(self, resource_id: RegionId) -> Region:
        # The API has no endpoint for individual regions.
        region = self.find(lambda _: _.id == resource_id)
        if region is None:
            raise ResourceNotFoundError(resource_id)
        return region


class VpcAdapter(ResourceAdapter):
    label = "VPC"
    collection_path = "/v2/vpcs"
    collection_key = "vpcs"
    item_key = "vpc"

    def parse(self, data: dict) -> Vpc:
        created = get_str(data, "created_at", None)
        vpc = Vpc(
            id=VpcId(get_str(data, "id")),
            name=get_str(data, "name"),
            region=RegionId(get_str(data, "region")),
            ip_range=get_str(data, "ip_range", ""),
            default=get_bool(data, "default", False),
            description=get_str(data, "description", ""),
            urn=get_str(data, "urn", ""),
            created_at=parse_time(created) if created else None,
        )
        return self.bind(vpc)

    def default_vpc(self, region: RegionId) -> Vpc:
        """Return the default VPC of `region`."""
        vpc = self.find(lambda _: _.region == region and _.default)
        if vpc is None:
            raise ValueError(f"region <{region}> has no default VPC")
        return vpc

    def in_region(self, region: RegionId) -> List[Vpc]:
        return self.list(lambda _: _.region == region)
