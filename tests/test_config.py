from pathlib import Path
from unittest import mock

import httpx
import pytest

import ocean.config as config
import ocean.logstreams
from ocean.client import OceanClient


@pytest.fixture
def environ():
    """Replace all environment variables for the duration of the test."""
    with mock.patch.dict("os.environ", values={}, clear=True):
        yield


class TestClientConfig:
    def test_compile_client_config(self, environ):
        new_env = {
            "DIGITALOCEAN_ACCESS_TOKEN": "token",
            "OCEAN_BASE_URL": "https://example.com/",
            "OCEAN_TIMEOUT": "5",
        }
        with mock.patch.dict("os.environ", values=new_env):
            cfg, err = config.compile_client_config()
        assert not err
        assert cfg.token == "token"
        assert cfg.base_url == "https://example.com"
        assert cfg.timeout == 5
        assert cfg.ca_file is None

    @pytest.mark.parametrize(
        "new_env",
        [
            {},
            {"DIGITALOCEAN_ACCESS_TOKEN": ""},
            {"DIGITALOCEAN_ACCESS_TOKEN": " token"},
            {"DIGITALOCEAN_ACCESS_TOKEN": "token", "OCEAN_TIMEOUT": "0"},
            {"DIGITALOCEAN_ACCESS_TOKEN": "token", "OCEAN_TIMEOUT": "abc"},
            {"DIGITALOCEAN_ACCESS_TOKEN": "token", "OCEAN_LOGLEVEL": "verbose"},
        ],
    )
    def test_compile_client_config_err(self, environ, new_env):
        with mock.patch.dict("os.environ", values=new_env):
            _, err = config.compile_client_config()
        assert err

    def test_load_client_config(self, environ, tmp_path: Path):
        fname = tmp_path / "ocean.yaml"
        fname.write_text("token: from-file\ntimeout: 10\nloglevel: debug\n")

        cfg, err = config.load_client_config(fname)
        assert not err
        assert (cfg.token, cfg.timeout, cfg.loglevel) == ("from-file", 10, "debug")

        # Environment variables take precedence.
        with mock.patch.dict("os.environ", {"DIGITALOCEAN_ACCESS_TOKEN": "env"}):
            cfg, err = config.load_client_config(fname)
        assert not err
        assert cfg.token == "env"

    @pytest.mark.parametrize("content", ["", "- a list", "token: t\nunknown: 1\n"])
    def test_load_client_config_err(self, environ, tmp_path: Path, content):
        fname = tmp_path / "ocean.yaml"
        fname.write_text(content)
        _, err = config.load_client_config(fname)
        assert err

        _, err = config.load_client_config(tmp_path / "does-not-exist.yaml")
        assert err


class TestHttpClient:
    def test_make_httpclient(self):
        cfg = config.ClientConfig(token="token", timeout=7)
        client, err = config.make_httpclient(cfg)
        assert not err
        assert isinstance(client, httpx.Client)
        assert client.timeout.read == 7

    def test_make_httpclient_invalid_ca_file(self, tmp_path: Path):
        cfg = config.ClientConfig(token="token", ca_file=tmp_path / "missing.pem")
        client, err = config.make_httpclient(cfg)
        assert err
        assert isinstance(client, httpx.Client)

    def test_client_from_config(self):
        cfg = config.ClientConfig(
            token="token", base_url="https://example.com", loglevel="WARNING"
        )
        assert cfg.loglevel == "warning"

        # The client installs the configured log level.
        with mock.patch.object(ocean.logstreams, "setup") as m_setup:
            client, err = OceanClient.from_config(cfg)
        m_setup.assert_called_once_with("warning")
        assert not err
        assert client.transport.base_url == "https://example.com"
        assert client.transport.token == "token"
        client.close()
        assert client.is_closed
