# node_agent/client.py
"""Node Agent client used by the orchestrator."""

import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)


class NodeAgentClient:
    """Talks to the agent running on one node; `agent_url` like "http://n1:9000"."""

    HEALTH_TIMEOUT = 5

    def __init__(self, agent_url: str, timeout: int = 10):
        self.base_url = agent_url.rstrip("/")
        self.timeout = timeout

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path}"

    def health_check(self) -> bool:
        try:
            response = requests.get(self._url("health"), timeout=self.HEALTH_TIMEOUT)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.error(f"Health check failed for {self.base_url}: {e}")
            return False

    def get_node_info(self) -> Optional[Dict[str, Any]]:
        """Capacity, admission and neighbor snapshot, or None when unreachable."""
        try:
            response = requests.get(self._url("info"), timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error(f"Failed to get node info from {self.base_url}: {e}")
            return None

    def request_admission(self, token: Optional[str] = None) -> bool:
        """
        Ask the agent to admit its node.

        Returns:
            True if the node is admitted, False if refused

        Raises:
            RuntimeError: If the agent cannot be reached
        """
        try:
            response = requests.post(
                self._url("admission"),
                json={"token": token},
                timeout=self.timeout
            )
        except requests.exceptions.Timeout:
            raise RuntimeError(f"Admission timeout after {self.timeout}s")
        except requests.exceptions.ConnectionError:
            raise RuntimeError(f"Cannot connect to node agent at {self.base_url}")

        if response.status_code == 403:
            return False
        if response.status_code != 200:
            raise RuntimeError(f"Admission failed: HTTP {response.status_code}")
        return bool(response.json().get("admitted"))

    def has_payload(self, name: str) -> bool:
        try:
            response = requests.get(self._url(f"payloads/{name}"), timeout=self.timeout)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.error(f"Failed to check payload {name} on {self.base_url}: {e}")
            return False

    def upload_payload(self, name: str, content: str) -> bool:
        try:
            response = requests.put(
                self._url(f"payloads/{name}"),
                json={"content": content},
                timeout=self.timeout
            )
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.error(f"Failed to upload payload {name} to {self.base_url}: {e}")
            return False
