from datetime import datetime
from enum import Enum

from ocean.ids import ProjectId
from ocean.resource import ResourceAdapter, Snapshot
from ocean.transport import get_bool, get_enum, get_int, get_str, parse_time


class Environment(str, Enum):
    DEVELOPMENT = "Development"
    STAGING = "Staging"
    PRODUCTION = "Production"


class Project(Snapshot):
    id: ProjectId
    owner_uuid: str
    owner_id: int
    name: str
    description: str = ""
    purpose: str = ""
    environment: Environment | None = None
    is_default: bool
    created_at: datetime
    updated_at: datetime


class ProjectAdapter(ResourceAdapter):
    label = "project"
    collection_path = "/v2/projects"
    collection_key = "projects"
    item_key = "project"

    def parse(self, data: dict) -> Project:
        project = Project(
            id=ProjectId(get_str(data, "id")),
            owner_uuid=get_str(data, "owner_uuid"),
            owner_id=get_int(data, "owner_id"),
            name=get_str(data, "name"),
            description=get_str(data, "description", ""),
            purpose=get_str(data, "purpose", ""),
            environment=get_enum(data, "environment", Environment, None),
            is_default=get_bool(data, "is_default", False),
            created_at=parse_time(get_str(data, "created_at")),
            updated_at=parse_time(get_str(data, "updated_at")),
        )
        return self.bind(project)

    def get_default(self) -> Project:
        return self.get("default")
