from urllib.error import URLError
import logging
import urllib.request

from hcloud_config import Config, with_instance_id
from hcloud_snapshots import ConfigurationError

logger = logging.getLogger("Application")

METADATA_URL = "http://169.254.169.254/hetzner/v1/metadata/instance-id"
METADATA_TIMEOUT = 5


def get_instance_id(url: str = METADATA_URL, timeout: float = METADATA_TIMEOUT) -> str:
    """
    Ask the local metadata service which server we are running on

    :param url: metadata endpoint returning the server ID as plain text
    :param timeout: seconds to wait for the metadata service
    :return: the raw reply, stripped
    :raise ConfigurationError: if the metadata service is not reachable
    """
    logger.debug("looking up instance ID via metadata service")
    try:
        with urllib.request.urlopen(url, timeout=timeout) as response:
            return response.read().decode("utf-8").strip()
    except (URLError, OSError, UnicodeDecodeError) as e:
        raise ConfigurationError("unable to find instance ID: " + str(e)) from e


def resolve_instance_id(config: Config, lookup=None) -> Config:
    """
    Return config unchanged if it names a server, otherwise a copy with the ID from the metadata service
    """
    if config.instance_id is not None:
        return config
    if lookup is None:
        lookup = get_instance_id
    return with_instance_id(config, lookup())
