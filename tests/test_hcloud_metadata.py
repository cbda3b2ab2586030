"""Tests for the metadata service lookup."""
from unittest.mock import MagicMock, patch
from urllib.error import URLError

import pytest

from hcloud_config import Config
from hcloud_metadata import METADATA_URL, get_instance_id, resolve_instance_id
from hcloud_snapshots import ConfigurationError


class TestGetInstanceId:
    """Test get_instance_id with a mocked urlopen."""

    def test_reads_reply(self):
        response = MagicMock()
        response.read.return_value = b"4711\n"
        response.__enter__.return_value = response

        with patch("urllib.request.urlopen", return_value=response) as urlopen:
            assert get_instance_id() == "4711"

        assert urlopen.call_args[0][0] == METADATA_URL

    def test_unreachable(self):
        with patch("urllib.request.urlopen", side_effect=URLError("no route to host")):
            with pytest.raises(ConfigurationError, match="unable to find instance ID"):
                get_instance_id()

    def test_reply_not_utf8(self):
        response = MagicMock()
        response.read.return_value = b"\xff\xfe"
        response.__enter__.return_value = response

        with patch("urllib.request.urlopen", return_value=response):
            with pytest.raises(ConfigurationError, match="unable to find instance ID"):
                get_instance_id()


class TestResolveInstanceId:
    """Test filling in the instance ID."""

    def test_explicit_id_skips_lookup(self):
        config = Config(api_key="k", api_secret="s", instance_id=12)
        lookup = MagicMock()
        assert resolve_instance_id(config, lookup=lookup) is config
        lookup.assert_not_called()

    def test_lookup(self):
        config = Config(api_key="k", api_secret="s")
        assert resolve_instance_id(config, lookup=lambda: "4711").instance_id == 4711

    def test_default_lookup_is_the_metadata_service(self):
        config = Config(api_key="k", api_secret="s")
        with patch("hcloud_metadata.get_instance_id", return_value="99"):
            assert resolve_instance_id(config).instance_id == 99

    def test_garbage_reply(self):
        config = Config(api_key="k", api_secret="s")
        with pytest.raises(ConfigurationError, match="malformed instance ID"):
            resolve_instance_id(config, lookup=lambda: "<html>not found</html>")
