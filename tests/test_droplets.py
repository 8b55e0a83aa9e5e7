import json
from datetime import time, timezone

import pytest
from httpx import Response

from ocean.droplets import Droplet, DropletFeature, DropletStatus
from ocean.errors import (
    ActionFailedError,
    ImmutableFieldError,
    UnexpectedResponseError,
)
from ocean.ids import DropletId, DropletTypeId, ImageId, RegionId, SshKeyId, VpcId
from ocean.models import BackupPlan, BackupSchedule, DayOfWeek
from ocean.reconcile import Created

from .conftest import url

RESOURCE = "/v2/droplets/3164444"


@pytest.fixture
def droplet_data(specimen) -> dict:
    return specimen("droplet")["droplet"]


def get_live(client, respx_mock, droplet_data) -> Droplet:
    route = respx_mock.get(url(RESOURCE))
    route.return_value = Response(200, json={"droplet": droplet_data})
    return client.droplets.get(DropletId(3164444))


def make_builder(client):
    return client.droplets.builder(
        "web-1",
        DropletTypeId("s-1vcpu-1gb"),
        ImageId("ubuntu-20-04-x64"),
        RegionId("nyc3"),
    )


class TestDroplet:
    def test_parse(self, client, respx_mock, droplet_data):
        live = get_live(client, respx_mock, droplet_data)

        assert live.id == DropletId(3164444)
        assert live.status == DropletStatus.ACTIVE
        assert live.region == RegionId("nyc3")
        assert live.vpc == VpcId("760e09ef-dc84-11e8-981e-3cfdfeaae000")
        assert live.image.key == ImageId("ubuntu-20-04-x64")
        assert len(live.addresses) == 3
        assert live.features == {
            DropletFeature.BACKUPS,
            DropletFeature.IPV6,
            DropletFeature.PRIVATE_NETWORKING,
        }

    def test_parse_without_vpc(self, client, respx_mock, droplet_data):
        del droplet_data["vpc_uuid"]
        assert get_live(client, respx_mock, droplet_data).vpc is None

    def test_wait_for(self, client, respx_mock, droplet_data, m_sleep):
        live = get_live(client, respx_mock, droplet_data | {"status": "new"})
        respx_mock.get(url(RESOURCE)).side_effect = [
            Response(200, json={"droplet": droplet_data | {"status": "new"}}),
            Response(200, json={"droplet": droplet_data}),
        ]
        ret = live.wait_for(DropletStatus.ACTIVE, 600)
        assert ret.status == DropletStatus.ACTIVE
        assert m_sleep.call_count == 1


class TestBuilder:
    def test_defaults(self, client):
        builder = make_builder(client)
        assert builder.features == {
            DropletFeature.MONITORING,
            DropletFeature.PRIVATE_NETWORKING,
        }
        assert builder.vpc is None

    @pytest.mark.parametrize("name", ["", "web 1", "web_1", "web-", "web.io."])
    def test_invalid_name(self, client, name):
        with pytest.raises(ValueError):
            make_builder(client).set_name(name)

    def test_invalid_tags(self, client):
        builder = make_builder(client)
        with pytest.raises(ValueError):
            builder.add_tag("no spaces")
        with pytest.raises(ValueError):
            builder.add_tag("x" * 256)
        assert builder.tags == frozenset()

    def test_user_data(self, client):
        builder = make_builder(client)
        builder.set_user_data("  #cloud-config\n")
        assert builder.user_data == "#cloud-config"

        with pytest.raises(ValueError):
            builder.set_user_data("   ")
        with pytest.raises(ValueError):
            builder.set_user_data("x" * (64 * 1024 + 1))

    def test_backup_schedule(self, client):
        schedule = BackupSchedule(
            start_time=time(8, tzinfo=timezone.utc),
            day=DayOfWeek.SUNDAY,
            plan=BackupPlan.WEEKLY,
        )

        # A schedule without the backup feature makes no sense.
        with pytest.raises(ValueError):
            make_builder(client).backup_schedule = schedule

        builder = make_builder(client).set_backup_schedule(schedule)
        assert DropletFeature.BACKUPS in builder.features
        assert builder.to_server()["backup_policy"] == {
            "plan": "weekly",
            "hour": 8,
            "weekday": "SUN",
        }

    def test_to_server(self, client):
        builder = make_builder(client)
        builder.set_ssh_keys([SshKeyId(2), SshKeyId(1)]).set_tags(["web"])
        builder.set_vpc(VpcId("vpc-1")).set_fail_on_unsupported_os(True)

        assert builder.to_server() == {
            "name": "web-1",
            "size": "s-1vcpu-1gb",
            "image": "ubuntu-20-04-x64",
            "region": "nyc3",
            "ssh_keys": [1, 2],
            "backups": False,
            "ipv6": False,
            "monitoring": True,
            "private_networking": True,
            "tags": ["web"],
            "vpc_uuid": "vpc-1",
            "with_droplet_agent": True,
        }

        # Numeric images are IDs, not slugs.
        builder = client.droplets.builder(
            "web-1", DropletTypeId("s"), ImageId("63663980"), RegionId("nyc3")
        )
        assert builder.to_server()["image"] == 63663980


class TestCreate:
    def test_created(self, client, respx_mock, droplet_data):
        route = respx_mock.post(url("/v2/droplets"))
        route.return_value = Response(202, json={"droplet": droplet_data})

        ret = make_builder(client).create()
        assert isinstance(ret, Created)
        assert ret.resource.id == DropletId(3164444)
        assert json.loads(route.calls.last.request.read())["name"] == "web-1"

    def test_disk_too_small(self, client, respx_mock):
        msg = "You specified a droplet size with a smaller disk than the image."
        respx_mock.post(url("/v2/droplets")).return_value = Response(
            422, json={"id": "unprocessable_entity", "message": msg}
        )
        with pytest.raises(ValueError):
            make_builder(client).create()

    def test_unprocessable(self, client, respx_mock):
        respx_mock.post(url("/v2/droplets")).return_value = Response(
            422, json={"id": "unprocessable_entity", "message": "invalid region"}
        )
        with pytest.raises(UnexpectedResponseError):
            make_builder(client).create()


class TestUpdate:
    def make_target(self, client, live: Droplet):
        builder = make_builder(client).copy_unchangeable_properties_from(live)
        return builder.set_tags(live.tags)

    def test_matches(self, client, respx_mock, droplet_data):
        live = get_live(client, respx_mock, droplet_data)
        target = self.make_target(client, live)
        assert live.matches(target)
        assert live.update(target) is live

        # Images match by slug and by numeric ID.
        target.image = ImageId("63663980")
        assert live.matches(target)

    def test_rename(self, client, respx_mock, droplet_data, m_sleep):
        live = get_live(client, respx_mock, droplet_data)

        action = {"id": 36804636, "status": "in-progress", "type": "rename"}
        post = respx_mock.post(url(f"{RESOURCE}/actions"))
        post.return_value = Response(201, json={"action": action})
        respx_mock.get(url(f"{RESOURCE}/actions/36804636")).side_effect = [
            Response(200, json={"action": action}),
            Response(200, json={"action": action | {"status": "completed"}}),
        ]
        respx_mock.get(url(RESOURCE)).return_value = Response(
            200, json={"droplet": droplet_data | {"name": "web-2"}}
        )

        new = live.update(self.make_target(client, live).set_name("web-2"))
        assert new.name == "web-2"
        assert json.loads(post.calls.last.request.read()) == {
            "type": "rename",
            "name": "web-2",
        }
        assert m_sleep.call_count == 1

    def test_rename_fails(self, client, respx_mock, droplet_data):
        live = get_live(client, respx_mock, droplet_data)

        action = {"id": 1, "status": "errored", "type": "rename"}
        respx_mock.post(url(f"{RESOURCE}/actions")).return_value = Response(
            201, json={"action": action | {"status": "in-progress"}}
        )
        respx_mock.get(url(f"{RESOURCE}/actions/1")).return_value = Response(
            200, json={"action": action}
        )
        with pytest.raises(ActionFailedError):
            live.update(self.make_target(client, live).set_name("web-2"))

    def test_retag(self, client, respx_mock, droplet_data):
        live = get_live(client, respx_mock, droplet_data)

        create_tag = respx_mock.post(url("/v2/tags"))
        create_tag.return_value = Response(201, json={"tag": {"name": "db"}})
        attach = respx_mock.post(url("/v2/tags/db/resources"))
        attach.return_value = Response(204)
        detach = respx_mock.delete(url("/v2/tags/env:prod/resources"))
        detach.return_value = Response(204)

        target = self.make_target(client, live).set_tags(["web", "db"])
        respx_mock.get(url(RESOURCE)).return_value = Response(
            200, json={"droplet": droplet_data | {"tags": ["web", "db"]}}
        )
        new = live.update(target)

        assert new.tags == {"web", "db"}
        assert json.loads(create_tag.calls.last.request.read()) == {"name": "db"}
        resource = {"resource_id": "3164444", "resource_type": "droplet"}
        expected = {"resources": [resource]}
        assert json.loads(attach.calls.last.request.read()) == expected
        assert json.loads(detach.calls.last.request.read()) == expected

    def test_immutable(self, client, respx_mock, droplet_data):
        live = get_live(client, respx_mock, droplet_data)
        target = self.make_target(client, live)
        target.region = RegionId("fra1")
        with pytest.raises(ImmutableFieldError) as err:
            live.update(target)
        assert err.value.field == "region"

        # Features cannot change after creation.
        target = self.make_target(client, live)
        target.features = frozenset({DropletFeature.IPV6})
        with pytest.raises(ImmutableFieldError):
            live.update(target)

    def test_destroy(self, client, respx_mock, droplet_data):
        live = get_live(client, respx_mock, droplet_data)
        route = respx_mock.delete(url(RESOURCE))
        route.return_value = Response(204)
        live.destroy()
        assert route.called
