"""Attach tags to and detach tags from resources via the tags API.

Droplets and databases have no endpoint to replace their tags in one go.
"""
import logging
from typing import AbstractSet

from ocean.transport import Transport

# Convenience.
logit = logging.getLogger("ocean")


def _resources(resource_type: str, resource_id) -> dict:
    resource = {"resource_id": str(resource_id), "resource_type": resource_type}
    return {"resources": [resource]}


def retag(
    transport: Transport,
    resource_type: str,
    resource_id,
    current: AbstractSet[str],
    wanted: AbstractSet[str],
):
    """Change the tags of a resource from `current` to `wanted`.

    Inputs:
        resource_type: str
            Eg `droplet` or `database`.
        resource_id: Any
            Server ID of the resource.

    """
    body = _resources(resource_type, resource_id)
    for tag in sorted(wanted - current):
        # Tags must exist before the server accepts them. Creating an
        # existing tag is harmless.
        resp = transport.request("POST", "/v2/tags", {"name": tag})
        transport.check(resp, (200, 201, 422))

        resp = transport.request("POST", f"/v2/tags/{tag}/resources", body)
        transport.check(resp, (204,))

    for tag in sorted(current - wanted):
        resp = transport.request("DELETE", f"/v2/tags/{tag}/resources", body)
        transport.check(resp, (204, 404))

    logit.debug(
        f"retagged {resource_type} {resource_id}",
        {"added": sorted(wanted - current), "removed": sorted(current - wanted)},
    )
