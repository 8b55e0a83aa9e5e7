import logging
import os
import ssl
from pathlib import Path
from typing import Tuple

import httpx
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

# Convenience.
logit = logging.getLogger("ocean")

REST_SERVER = "https://api.digitalocean.com"

LOGLEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ClientConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # Personal access token, see https://cloud.digitalocean.com/account/api.
    token: str

    base_url: str = REST_SERVER

    # Seconds before an individual request times out.
    timeout: float = Field(default=30, gt=0)

    # Optional CA bundle, eg for corporate proxies.
    ca_file: Path | None = None

    loglevel: str = "info"

    @field_validator("token", "base_url", "loglevel")
    @classmethod
    def valid_string(cls, v: str) -> str:
        if len(v) != len(v.strip()):
            raise ValueError("must not have leading or trailing whitespace")

        if len(v) == 0:
            raise ValueError("must be nonempty")
        return v

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("loglevel")
    @classmethod
    def known_loglevel(cls, v: str) -> str:
        if v.upper() not in LOGLEVELS:
            raise ValueError(f"must be one of {sorted(LOGLEVELS)}")
        return v.lower()


def _from_environment() -> dict:
    """Return the config values defined by environment variables."""
    names = {
        "token": "DIGITALOCEAN_ACCESS_TOKEN",
        "base_url": "OCEAN_BASE_URL",
        "timeout": "OCEAN_TIMEOUT",
        "ca_file": "OCEAN_CA_FILE",
        "loglevel": "OCEAN_LOGLEVEL",
    }
    values = {key: os.getenv(var) for key, var in names.items()}
    return {k: v for k, v in values.items() if v is not None}


def compile_client_config() -> Tuple[ClientConfig, bool]:
    """Return the client configuration defined by the environment."""
    try:
        cfg = ClientConfig.model_validate(_from_environment())
    except ValidationError as e:
        fields = [str.join(".", map(str, err["loc"])) for err in e.errors()]
        logit.error("invalid environment variables", {"names": tuple(fields)})
        return ClientConfig(token="invalid"), True
    return cfg, False


def load_client_config(fname: Path) -> Tuple[ClientConfig, bool]:
    """Return the client configuration defined in the YAML file `fname`.

    Environment variables take precedence over the values in the file.
    """
    try:
        data = yaml.safe_load(fname.read_text()) or {}
        assert isinstance(data, dict), "config file must contain a mapping"
        cfg = ClientConfig.model_validate(data | _from_environment())
    except (AssertionError, OSError, yaml.YAMLError, ValidationError) as e:
        logit.error("cannot load config file", {"file": str(fname), "reason": str(e)})
        return ClientConfig(token="invalid"), True
    return cfg, False


def make_httpclient(cfg: ClientConfig) -> Tuple[httpx.Client, bool]:
    try:
        verify = True
        if cfg.ca_file:
            verify = ssl.create_default_context(cafile=str(cfg.ca_file.expanduser()))
        client = httpx.Client(verify=verify, timeout=cfg.timeout)
    except OSError as err:
        logit.error("cannot create http client", {"reason": tuple(err.args)})
        return httpx.Client(timeout=cfg.timeout), True
    return client, False
