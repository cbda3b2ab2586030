from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional
import os

from hcloud_snapshots import (ConfigurationError, DEFAULT_API_ENDPOINT, DEFAULT_MAX_RETRIES,
                              DEFAULT_POLL_INTERVAL)

DEFAULT_SNAPSHOTS_RETENTION = 7
LOG_LEVELS = ("error", "info", "debug")

ENV_API_ENDPOINT = "API_ENDPOINT"
ENV_API_KEY = "API_KEY"
ENV_API_SECRET = "API_SECRET"


class MatchStrategy(Enum):
    """Which snapshots of a server count as ours

    LABEL: created from the server and labelled with the autosnap key
    SERVER: every snapshot created from the server
    """
    LABEL = "label"
    SERVER = "server"


@dataclass(frozen=True)
class Config:
    api_endpoint: str = DEFAULT_API_ENDPOINT
    api_key: str = ""
    api_secret: str = ""
    instance_id: Optional[int] = None
    snapshots_retention: int = DEFAULT_SNAPSHOTS_RETENTION
    dry_run: bool = False
    log_to: str = "-"
    log_level: str = "info"
    match: MatchStrategy = MatchStrategy.LABEL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    max_retries: int = DEFAULT_MAX_RETRIES
    timeout: Optional[float] = None


def parse_credentials(text: str) -> dict:
    """Parse the content of an API credentials file

    One key=value pair per line, only api_key and api_secret are known.
    Blank lines are rejected like any other line without exactly one '='.

    :param text: content of the credentials file
    :type text: str
    :return: dict with the keys found, among api_key and api_secret
    :raise ConfigurationError: on a malformed line or an unknown key
    :rtype: dict
    """
    credentials = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        parts = line.split("=")
        if len(parts) != 2:
            raise ConfigurationError("invalid credentials line format (expected key=value) at line " + str(lineno))
        key, value = parts[0], parts[1]

        key = key.lower()
        if key not in ("api_key", "api_secret"):
            raise ConfigurationError("invalid credentials file key '" + parts[0] + "' at line " + str(lineno))
        credentials[key] = value
    return credentials


def read_credentials_file(path: str) -> dict:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError("unable to read credentials file " + path + ": " + str(e)) from e
    return parse_credentials(text)


def parse_instance_id(value) -> int:
    """Turn a server ID given on the command line or by the metadata service into an int

    :raise ConfigurationError: if value is not a positive integer
    :rtype: int
    """
    try:
        instance_id = int(str(value).strip())
    except ValueError:
        raise ConfigurationError("malformed instance ID '" + str(value) + "'") from None
    if instance_id <= 0:
        raise ConfigurationError("malformed instance ID '" + str(value) + "'")
    return instance_id


def load_config(args, environ: Mapping[str, str] = None) -> Config:
    """Build the settings of this run from the command line and the environment

    Credentials come from API_KEY/API_SECRET, a credentials file overrides them.

    :param args: parsed command line
    :type args: argparse.Namespace
    :param environ: environment to read, os.environ by default
    :type environ: dict
    :rtype: Config
    """
    if environ is None:
        environ = os.environ

    api_key = environ.get(ENV_API_KEY, "")
    api_secret = environ.get(ENV_API_SECRET, "")

    if getattr(args, "credentials_file", None):
        credentials = read_credentials_file(args.credentials_file)
        api_key = credentials.get("api_key", api_key)
        api_secret = credentials.get("api_secret", api_secret)

    instance_id = None
    if getattr(args, "instance_id", None):
        instance_id = parse_instance_id(args.instance_id)

    config = Config(api_endpoint=environ.get(ENV_API_ENDPOINT) or DEFAULT_API_ENDPOINT,
                    api_key=api_key,
                    api_secret=api_secret,
                    instance_id=instance_id,
                    snapshots_retention=args.snapshot_retention,
                    dry_run=args.dry_run,
                    log_to=args.log,
                    log_level=args.log_level,
                    match=MatchStrategy(args.match),
                    timeout=args.timeout)
    validate_config(config)
    return config


def validate_config(config: Config):
    if not config.api_key or not config.api_secret:
        raise ConfigurationError("missing API credentials")
    if config.log_level not in LOG_LEVELS:
        raise ConfigurationError("invalid value for option --log-level: " + str(config.log_level))
    if config.timeout is not None and config.timeout <= 0:
        raise ConfigurationError("invalid value for option --timeout: " + str(config.timeout))


def with_instance_id(config: Config, instance_id) -> Config:
    return replace(config, instance_id=parse_instance_id(instance_id))


def scramble_string(s: str) -> str:
    """Hide a secret for logging: every character except the first and the last becomes '*'

    :rtype: str
    """
    if len(s) <= 1:
        return "*" * len(s)
    return s[0] + "*" * (len(s) - 2) + s[-1]
