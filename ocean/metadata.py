"""Identity of the droplet this process runs on.

The metadata service is only reachable from inside a droplet and needs no
token. Outside a droplet the requests time out quickly and the resulting
`httpx` errors propagate to the caller.
"""
import logging

import httpx

from ocean.errors import UnexpectedResponseError
from ocean.ids import DropletId, RegionId
from ocean.transport import Transport

# Link local address of the metadata service.
METADATA_SERVER = "http://169.254.169.254"

# Convenience.
logit = logging.getLogger("ocean")


class DropletMetadata:
    def __init__(
        self,
        transport: Transport,
        base_url: str = METADATA_SERVER,
        timeout: float = 1,
    ):
        self.transport = transport
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def value(self, name: str) -> str | None:
        """Return the plain text metadata `name`, eg `hostname`.

        Returns `None` if the service does not know `name`.
        """
        self.transport.ensure_open()
        url = f"{self.base_url}/metadata/v1/{name}"
        response = self.transport.client.get(url, timeout=self.timeout)
        logit.debug(f"GET {response.status_code} {url}")
        if response.status_code != 200:
            return None
        return response.text.strip()

    def droplet_id(self) -> DropletId | None:
        value = self.value("id")
        if value is None:
            return None
        try:
            return DropletId(int(value))
        except ValueError:
            raise UnexpectedResponseError(f"invalid droplet ID <{value}>") from None

    def hostname(self) -> str | None:
        return self.value("hostname")

    def region(self) -> RegionId | None:
        value = self.value("region")
        return None if value is None else RegionId(value)

    def is_droplet(self) -> bool:
        """Return `True` if this process runs inside a droplet."""
        try:
            return self.droplet_id() is not None
        except httpx.TransportError:
            return False
