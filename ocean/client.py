import logging
from typing import Tuple

import httpx

import ocean.logstreams
from ocean.catalog import (
    DatabaseTypeAdapter,
    DropletTypeAdapter,
    ImageAdapter,
    KubernetesVersionAdapter,
)
from ocean.config import REST_SERVER, ClientConfig, make_httpclient
from ocean.databases import DatabaseAdapter
from ocean.droplets import DropletAdapter
from ocean.kubernetes import KubernetesAdapter
from ocean.metadata import DropletMetadata
from ocean.network import RegionAdapter, VpcAdapter
from ocean.projects import ProjectAdapter
from ocean.registry import RegistryAdapter
from ocean.ssh_keys import SshKeyAdapter
from ocean.transport import Transport

# Convenience.
logit = logging.getLogger("ocean")


class OceanClient:
    """Entry point to all resources of an account.

    Example:
        with OceanClient(token) as client:
            droplet = client.droplets.get(DropletId(1234))

    """

    def __init__(
        self,
        token: str | None = None,
        base_url: str = REST_SERVER,
        timeout: float = 30,
        httpclient: httpx.Client | None = None,
    ):
        self.transport = Transport(base_url, timeout, httpclient)
        if token is not None:
            self.transport.login(token)

        self.droplets = DropletAdapter(self.transport)
        self.kubernetes = KubernetesAdapter(self.transport)
        self.databases = DatabaseAdapter(self.transport)
        self.ssh_keys = SshKeyAdapter(self.transport)
        self.registry = RegistryAdapter(self.transport)
        self.projects = ProjectAdapter(self.transport)
        self.regions = RegionAdapter(self.transport)
        self.vpcs = VpcAdapter(self.transport)

        # Read only catalogs.
        self.droplet_types = DropletTypeAdapter(self.transport)
        self.images = ImageAdapter(self.transport)
        self.kubernetes_versions = KubernetesVersionAdapter(self.transport)
        self.database_types = DatabaseTypeAdapter(self.transport)

        # Only available inside a droplet.
        self.metadata = DropletMetadata(self.transport)

    @classmethod
    def from_config(cls, cfg: ClientConfig) -> Tuple["OceanClient", bool]:
        """Return a client configured by `cfg` and install its log level."""
        ocean.logstreams.setup(cfg.loglevel)
        httpclient, err = make_httpclient(cfg)
        client = cls(cfg.token, cfg.base_url, cfg.timeout, httpclient)
        return client, err

    def login(self, token: str) -> "OceanClient":
        self.transport.login(token)
        return self

    @property
    def is_closed(self) -> bool:
        return self.transport.is_closed

    def close(self):
        self.transport.close()
        logit.debug("client closed")

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
