"""
Liveness check for the companion Maestro Studio server.
"""
import logging

import requests

from .config import STUDIO_HOST, STUDIO_PORT, STUDIO_PATH, STUDIO_PROBE_TIMEOUT

logger = logging.getLogger(__name__)


class StudioProbe:
    """
    Best-effort check that something answers HTTP on the studio port.
    The server can still die between a positive check and its use.
    """

    def __init__(self, url: str = None, timeout: float = STUDIO_PROBE_TIMEOUT):
        self.url = url or f"http://{STUDIO_HOST}:{STUDIO_PORT}{STUDIO_PATH}"
        self.timeout = timeout

    def is_running(self) -> bool:
        """Any HTTP response counts as running. Errors and timeouts never raise."""
        try:
            response = requests.get(self.url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug("Studio probe %s failed: %s", self.url, e)
            return False
        response.close()
        logger.debug("Studio probe %s answered %s", self.url, response.status_code)
        return True

    def __call__(self) -> bool:
        return self.is_running()
