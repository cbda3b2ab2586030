#!/usr/bin/env python3
import argparse
import logging
import sys
from typing import Optional

from hcloud_automation import create_snapshot, rotate_snapshots
from hcloud_config import (Config, DEFAULT_SNAPSHOTS_RETENTION, LOG_LEVELS, MatchStrategy, load_config,
                           scramble_string)
from hcloud_logging import setup_logging
from hcloud_metadata import resolve_instance_id
from hcloud_snapshots import AutosnapError, ConfigurationError, Deadline, SnapshotService

logger = logging.getLogger("Application")

DESCRIPTION = "hcloud-autosnap - Automatic Hetzner Cloud server snapshots"

EPILOG = """
Supported environment variables:
  API_ENDPOINT    Hetzner Cloud API endpoint (default "https://api.hetzner.cloud/v1")
  API_KEY         API token name
  API_SECRET      API token

API credentials file format:
  Instead of reading API credentials from environment variables, it is
  possible to read those from a file formatted such as:

    api_key=autosnap
    api_secret=AbCdEfGhIjKlMnOpQrStUvWxYz0123456789aBcDeFgHiJkLmNoPqRsTuVwXyZ01
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hcloud-autosnap",
                                     description=DESCRIPTION,
                                     epilog=EPILOG,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("-f", "--credentials-file", default="",
                        help="File to read API credentials from")
    parser.add_argument("-i", "--instance-id", default="",
                        help="ID of the server to snapshot (disables metadata service lookup)")
    parser.add_argument("-r", "--snapshot-retention", type=int, default=DEFAULT_SNAPSHOTS_RETENTION,
                        help="Maximum snapshots retention (default: %(default)s)")
    parser.add_argument("-l", "--log", default="-",
                        help='File to log activity to, "-" to log to stdout or ":syslog" to log to syslog')
    parser.add_argument("-L", "--log-level", default="info", choices=LOG_LEVELS,
                        help="Logging level (default: %(default)s)")
    parser.add_argument("-d", "--dry-run", action="store_true",
                        help="Run in dry-run mode (read-only)")
    parser.add_argument("-m", "--match", default=MatchStrategy.LABEL.value,
                        choices=[m.value for m in MatchStrategy],
                        help="Snapshots counted for retention: only labelled ones or all of the server "
                             "(default: %(default)s)")
    parser.add_argument("--timeout", type=float, default=None,
                        help="Abort the run after this many seconds")
    return parser


def run(config: Config, service: SnapshotService = None, deadline: Deadline = None) -> Optional[int]:
    """Rotate the snapshots of the configured server, then take a new one

    :param config: settings of this run, with instance_id resolved
    :type config: Config
    :param service: remote snapshot service, built from config if not given
    :type service: SnapshotService
    :param deadline: run deadline, built from config.timeout if not given
    :type deadline: Deadline
    :return: ID of the new snapshot, None in dry-run mode
    :raise AutosnapError: on any fatal error
    """
    if deadline is None:
        deadline = Deadline(config.timeout)
    if service is None:
        service = SnapshotService.from_config(config, deadline=deadline)

    logger.debug("settings: api_endpoint=" + config.api_endpoint +
                 " api_key=" + config.api_key +
                 " api_secret=" + scramble_string(config.api_secret) +
                 " instance_id=" + str(config.instance_id) +
                 " max_snapshots_retention=" + str(config.snapshots_retention) +
                 " match=" + config.match.value +
                 " dry_run=" + str(config.dry_run))

    server = service.get_server(config.instance_id)
    logger.debug("server " + str(server.id) + " is '" + server.name + "'")

    rotate_snapshots(service, server.id, config.snapshots_retention,
                     dry_run=config.dry_run, match=config.match, deadline=deadline)
    return create_snapshot(service, server, dry_run=config.dry_run, match=config.match, deadline=deadline)


def main(argv=None, environ=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        setup_logging(args.log, args.log_level)
    except ConfigurationError as e:
        print("ERROR: " + str(e), file=sys.stderr)
        return 1

    try:
        config = load_config(args, environ)
        config = resolve_instance_id(config)
        run(config)
    except AutosnapError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("stopped processing")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
