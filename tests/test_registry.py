import pytest
from httpx import Response

from ocean.errors import ResourceNotFoundError
from ocean.ids import ContainerImageId

from .conftest import url

REGISTRY = {
    "registry": {
        "name": "example",
        "created_at": "2020-03-21T16:02:37Z",
        "region": "fra1",
        "storage_usage_bytes": 29393920,
    }
}
REPOS = "/v2/registry/example/repositoriesV2"
DIGESTS = "/v2/registry/example/repositories/app/digests"


def manifest(digest: str, tags=(), blobs=()) -> dict:
    return {
        "digest": digest,
        "tags": list(tags),
        "blobs": [{"digest": _, "compressed_size_bytes": 1024} for _ in blobs],
    }


@pytest.fixture
def registry(client, respx_mock):
    respx_mock.get(url("/v2/registry")).return_value = Response(200, json=REGISTRY)
    return client.registry.get()


@pytest.fixture
def repository(registry, respx_mock):
    repo = {"registry_name": "example", "name": "app", "tag_count": 1}
    respx_mock.get(url(REPOS)).return_value = Response(
        200, json={"repositories": [repo], "links": {}}
    )
    return registry.get_repository("app")


class TestRegistry:
    def test_get(self, registry):
        assert registry.id == "example"
        assert registry.region == "fra1"
        assert registry.storage_usage_bytes == 29393920

    def test_not_found(self, client, respx_mock):
        respx_mock.get(url("/v2/registry")).return_value = Response(404, json={})
        with pytest.raises(ResourceNotFoundError):
            client.registry.get()

    def test_repositories(self, registry, repository):
        assert repository.name == "app"
        assert repository.tag_count == 1
        assert [_.name for _ in registry.get_repositories()] == ["app"]
        assert registry.get_repository("other") is None

    def test_credentials(self, registry, respx_mock):
        # Base64 encoded `user:pass`.
        body = {"auths": {"registry.digitalocean.com": {"auth": "dXNlcjpwYXNz"}}}
        route = respx_mock.get(url("/v2/registry/docker-credentials"))
        route.return_value = Response(200, json=body)

        creds = registry.get_credentials(read_write=True)
        assert (creds.username, creds.password) == ("user", "pass")
        assert "pass" not in repr(creds)
        assert route.calls.last.request.url.params["read_write"] == "true"

    def test_garbage_collection(self, registry, respx_mock, m_sleep):
        path = url("/v2/registry/example/garbage-collection")
        gc = {"garbage_collection": {"uuid": "gc-1", "status": "requested"}}
        respx_mock.post(path).return_value = Response(201, json=gc)
        respx_mock.get(path).side_effect = [
            Response(200, json=gc),
            Response(404, json={}),
        ]

        registry.delete_unused_layers()
        assert m_sleep.call_count == 1


class TestImages:
    def test_images(self, repository, respx_mock):
        body = {"manifests": [manifest("sha256:a", ["latest"], ["sha256:l1"])]}
        respx_mock.get(url(DIGESTS)).return_value = Response(200, json=body)

        (image,) = repository.get_images()
        assert image.id == ContainerImageId("sha256:a")
        assert image.tags == {"latest"}
        assert image.layers == {"sha256:l1"}
        assert image.reload() == image

    def test_delete_dangling_images(self, repository, respx_mock):
        # `a` is a multi-arch image whose child manifest `b` must survive.
        manifests = [
            manifest("sha256:a", ["latest"], ["sha256:b", "sha256:l1"]),
            manifest("sha256:b", [], ["sha256:l2"]),
            manifest("sha256:c", [], ["sha256:l3"]),
            manifest("sha256:d"),
        ]
        respx_mock.get(url(DIGESTS)).return_value = Response(
            200, json={"manifests": manifests, "links": {}}
        )
        del_c = respx_mock.delete(url(f"{DIGESTS}/sha256:c"))
        del_c.return_value = Response(204)
        del_d = respx_mock.delete(url(f"{DIGESTS}/sha256:d"))
        del_d.return_value = Response(204)

        deleted = repository.delete_dangling_images()
        assert {_.id for _ in deleted} == {
            ContainerImageId("sha256:c"),
            ContainerImageId("sha256:d"),
        }
        assert del_c.call_count == del_d.call_count == 1

    def test_destroy_referenced_image(self, repository, respx_mock):
        body = {"manifests": [manifest("sha256:a", ["latest"])]}
        respx_mock.get(url(DIGESTS)).return_value = Response(200, json=body)
        respx_mock.delete(url(f"{DIGESTS}/sha256:a")).return_value = Response(
            412, json={"id": "precondition_failed", "message": "image is tagged"}
        )

        (image,) = repository.get_images()
        with pytest.raises(ValueError):
            image.destroy()
