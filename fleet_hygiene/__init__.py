import logging

__version__ = "0.0.1"

USER_AGENT_STRING = "Python (fleet_hygiene/%s)" % __version__

log_format = "%(levelname)-10s %(funcName)s: %(message)s"
logger = logging.getLogger("fleet_hygiene")
