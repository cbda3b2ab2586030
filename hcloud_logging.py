from logging.handlers import SysLogHandler
import logging
import platform
import sys

from hcloud_snapshots import ConfigurationError

LOG_FORMAT = '[%(filename)s:%(lineno)s - %(funcName)20s() ] %(asctime)s - %(name)s - %(levelname)s - %(message)s'
SYSLOG_FORMAT = 'hcloud-autosnap: %(levelname)s - %(message)s'
SYSLOG_TARGET = ":syslog"

LEVELS = {
    "error": logging.ERROR,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def get_log_handler(log_to: str) -> logging.Handler:
    """Return the handler for the --log option

    :param log_to: "-" (or empty) for stdout, ":syslog" for the local syslog, otherwise a file path
    :type log_to: str
    :raise ConfigurationError: if the target cannot be used
    :rtype: logging.Handler
    """
    if log_to in ("-", ""):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        return handler

    if log_to == SYSLOG_TARGET:
        if platform.system() == "Windows":
            raise ConfigurationError("syslog is not supported on Windows")
        address = "/var/run/syslog" if platform.system() == "Darwin" else "/dev/log"
        try:
            handler = SysLogHandler(address=address, facility=SysLogHandler.LOG_LOCAL0)
        except OSError as e:
            raise ConfigurationError("unable to initialize syslog logging: " + str(e)) from e
        handler.setFormatter(logging.Formatter(SYSLOG_FORMAT))
        return handler

    try:
        handler = logging.FileHandler(log_to)
    except OSError as e:
        raise ConfigurationError("unable to initialize file logging: " + str(e)) from e
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def setup_logging(log_to: str = "-", log_level: str = "info") -> logging.Logger:
    if log_level not in LEVELS:
        raise ConfigurationError("invalid value for option --log-level: " + str(log_level))

    logger = logging.getLogger("Application")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.addHandler(get_log_handler(log_to))
    logger.setLevel(LEVELS[log_level])
    return logger
