"""Container registry, its repositories and their images."""
import base64
import binascii
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, FrozenSet, List
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

import ocean.poll
from ocean.errors import ResourceNotFoundError, UnexpectedResponseError
from ocean.ids import ContainerImageId
from ocean.resource import ResourceAdapter, Snapshot
from ocean.transport import get_dict, get_int, get_list, get_str, parse_time

# Convenience.
logit = logging.getLogger("ocean")

REGISTRY_HOST = "registry.digitalocean.com"


class RegistryCredentials(BaseModel):
    model_config = ConfigDict(frozen=True)

    username: str
    password: str = Field(repr=False)


class ContainerImage(Snapshot):
    registry: str
    repository: str
    id: ContainerImageId
    tags: FrozenSet[str] = frozenset()

    # Digests of the blobs (layers, configs or child manifests) of this image.
    layers: FrozenSet[str] = frozenset()

    def reload(self) -> "ContainerImage":
        image = self._adapter.find_image(
            self.registry, self.repository, lambda _: _.id == self.id
        )
        if image is None:
            raise ResourceNotFoundError(self.id)
        return image

    def destroy(self):
        self._adapter.destroy_image(self)


class Repository(Snapshot):
    registry: str
    name: str
    tag_count: int = 0
    manifest_count: int = 0

    def reload(self) -> "Repository":
        repo = self._adapter.find_repository(self.registry, self.name)
        if repo is None:
            raise ResourceNotFoundError(self.name)
        return repo

    def get_images(self) -> List[ContainerImage]:
        return self._adapter.get_images(self.registry, self.name)

    def get_image(self, predicate: Callable[[ContainerImage], bool]):
        return self._adapter.find_image(self.registry, self.name, predicate)

    def delete_dangling_images(self) -> List[ContainerImage]:
        """Delete all images that are untagged and not part of a tagged image.

        Return the deleted images.
        """
        images = {_.id: _ for _ in self.get_images()}

        # Tagged images keep their blobs alive. Some of these blobs are child
        # manifests (multi-arch images) that in turn keep their own blobs.
        keep = {_.id for _ in images.values() if _.tags}
        pending = list(keep)
        while pending:
            for digest in images[pending.pop()].layers:
                image_id = ContainerImageId(digest)
                if image_id in images and image_id not in keep:
                    keep.add(image_id)
                    pending.append(image_id)

        dangling = [img for img_id, img in images.items() if img_id not in keep]
        for image in dangling:
            image.destroy()
        logit.info(
            f"deleted {len(dangling)} dangling images from {self.name}",
            {"digests": [str(_.id) for _ in dangling]},
        )
        return dangling


class Registry(Snapshot):
    name: str
    region: str = ""
    storage_usage_bytes: int = 0
    created_at: datetime | None = None

    @property
    def id(self) -> str:
        return self.name

    def reload(self) -> "Registry":
        return self._adapter.get()

    def get_repositories(self) -> List[Repository]:
        return self._adapter.get_repositories(self.name)

    def get_repository(self, name: str) -> Repository | None:
        return self._adapter.find_repository(self.name, name)

    def get_credentials(
        self, read_write: bool = False, expiry: timedelta | None = None
    ) -> RegistryCredentials:
        return self._adapter.get_credentials(read_write, expiry)

    def delete_unused_layers(self, timeout: float | timedelta = 3600):
        """Run the garbage collector and block until it finished."""
        self._adapter.collect_garbage(self.name, timeout)


class RegistryAdapter(ResourceAdapter):
    label = "registry"
    collection_path = "/v2/registry"
    item_key = "registry"

    def parse(self, data: dict) -> Registry:
        created = get_str(data, "created_at", None)
        registry = Registry(
            name=get_str(data, "name"),
            region=get_str(data, "region", ""),
            storage_usage_bytes=get_int(data, "storage_usage_bytes", 0),
            created_at=parse_time(created) if created else None,
        )
        return self.bind(registry)

    def get(self, resource_id=None) -> Registry:
        """Return the registry of the account.

        Every account has at most one registry, hence `resource_id` is unused.
        """
        return self.transport.get_resource(
            self.collection_path, self.item_key, self.parse, "registry"
        )

    # ----------------------------------------------------------------------
    # Repositories.
    # ----------------------------------------------------------------------
    def repo_path(self, registry: str, repository: str) -> str:
        # Repository names may contain slashes, eg `team/app`.
        return f"/v2/registry/{registry}/repositories/{quote(repository, safe='')}"

    def parse_repositories(self, page: dict) -> List[Repository]:
        repos = [
            Repository(
                registry=get_str(_, "registry_name"),
                name=get_str(_, "name"),
                tag_count=get_int(_, "tag_count", 0),
                manifest_count=get_int(_, "manifest_count", 0),
            )
            for _ in get_list(page, "repositories")
        ]
        return [self.bind(_) for _ in repos]

    def get_repositories(self, registry: str) -> List[Repository]:
        path = f"/v2/registry/{registry}/repositoriesV2"
        return self.transport.get_elements(path, None, self.parse_repositories)

    def find_repository(self, registry: str, name: str) -> Repository | None:
        path = f"/v2/registry/{registry}/repositoriesV2"
        return self.transport.get_element(
            path, None, self.parse_repositories, lambda _: _.name == name
        )

    # ----------------------------------------------------------------------
    # Images.
    # ----------------------------------------------------------------------
    def parse_images(self, registry: str, repository: str) -> Callable:
        def mapper(page: dict) -> List[ContainerImage]:
            images = [
                ContainerImage(
                    registry=registry,
                    repository=repository,
                    id=ContainerImageId(get_str(_, "digest")),
                    tags=frozenset(get_list(_, "tags")),
                    layers=frozenset(
                        get_str(blob, "digest") for blob in get_list(_, "blobs")
                    ),
                )
                for _ in get_list(page, "manifests")
            ]
            return [self.bind(_) for _ in images]

        return mapper

    def get_images(self, registry: str, repository: str) -> List[ContainerImage]:
        path = f"{self.repo_path(registry, repository)}/digests"
        mapper = self.parse_images(registry, repository)
        return self.transport.get_elements(path, None, mapper)

    def find_image(
        self,
        registry: str,
        repository: str,
        predicate: Callable[[ContainerImage], bool],
    ) -> ContainerImage | None:
        path = f"{self.repo_path(registry, repository)}/digests"
        mapper = self.parse_images(registry, repository)
        return self.transport.get_element(path, None, mapper, predicate)

    def destroy_image(self, image: ContainerImage):
        path = f"{self.repo_path(image.registry, image.repository)}/digests/{image.id}"
        response = self.transport.request("DELETE", path)
        if response.status_code == 412:
            # Eg the image is still referenced by a tag.
            raise ValueError(self.transport.server_message(response))
        self.transport.check(response, (204, 404))

    # ----------------------------------------------------------------------
    # Maintenance.
    # ----------------------------------------------------------------------
    def get_credentials(
        self, read_write: bool, expiry: timedelta | None
    ) -> RegistryCredentials:
        """Return the docker login credentials for the registry."""
        params: Dict[str, str | int] = {"read_write": str(read_write).lower()}
        if expiry is not None:
            params["expiry_seconds"] = int(expiry.total_seconds())
        path = "/v2/registry/docker-credentials"
        response = self.transport.check(
            self.transport.request("GET", path, params=params), (200,)
        )
        auths = get_dict(self.transport.response_body(response), "auths")
        auth = get_str(get_dict(auths, REGISTRY_HOST), "auth")
        try:
            username, _, password = base64.b64decode(auth).decode().partition(":")
        except (binascii.Error, UnicodeDecodeError) as err:
            msg = f"invalid docker credentials: {err}"
            raise UnexpectedResponseError(msg) from None
        return RegistryCredentials(username=username, password=password)

    def active_garbage_collection(self, registry: str) -> str | None:
        """Return the UUID of the running garbage collection, if any."""
        path = f"/v2/registry/{registry}/garbage-collection"
        response = self.transport.request("GET", path)
        if response.status_code == 404:
            return None
        self.transport.check(response, (200,))
        body = self.transport.response_body(response)
        return get_str(get_dict(body, "garbage_collection"), "uuid")

    def collect_garbage(self, registry: str, timeout: float | timedelta):
        path = f"/v2/registry/{registry}/garbage-collection"
        response = self.transport.check(
            self.transport.request("POST", path), (200, 201)
        )
        body = self.transport.response_body(response)
        uuid = get_str(get_dict(body, "garbage_collection"), "uuid")
        logit.info(f"started garbage collection {uuid} of registry {registry}")

        # The collection is finished once a different one (or none) is active.
        ocean.poll.poll(
            lambda: self.active_garbage_collection(registry),
            lambda active: active != uuid,
            timeout,
            f"garbage collection {uuid}",
        )
