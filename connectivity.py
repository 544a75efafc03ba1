# connectivity.py
#
# Description: Connectivity signals consumed by the UI to gate input. Two
#              independent probes (backend liveness and upstream credential
#              validity) are combined by a pure truth table.
#

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

import requests

from config import settings

logger = logging.getLogger(__name__)


class ConnectivityStatus(str, Enum):
    UNKNOWN = "unknown"
    CONNECTED = "connected"
    INVALID_CREDENTIAL = "invalid-credential"
    UNREACHABLE = "unreachable"


def derive_status(reachable: Optional[bool], credential_valid: Optional[bool]) -> ConnectivityStatus:
    """
    Combine the two probe results. `None` means the probe has not completed.

    reachable=False                        -> unreachable
    reachable=True, credential_valid=False -> invalid-credential
    reachable=True, credential_valid=True  -> connected
    anything not yet checked               -> unknown
    """
    if reachable is None:
        return ConnectivityStatus.UNKNOWN
    if not reachable:
        return ConnectivityStatus.UNREACHABLE
    if credential_valid is None:
        return ConnectivityStatus.UNKNOWN
    if not credential_valid:
        return ConnectivityStatus.INVALID_CREDENTIAL
    return ConnectivityStatus.CONNECTED


class ConnectivityMonitor:
    """Probes the backend API and keeps the status of the latest check."""

    def __init__(self, base_url: str | None = None, timeout: float = 5.0) -> None:
        self._base_url = (base_url or settings.chat_api_url).rstrip("/")
        self._timeout = timeout
        self.status = ConnectivityStatus.UNKNOWN

    def check_reachability(self) -> bool:
        """True when the backend answers its health endpoint."""
        try:
            response = requests.get(f"{self._base_url}/health", timeout=self._timeout)
        except requests.exceptions.RequestException as e:
            logger.warning("Health probe failed", extra={"error": str(e)})
            return False
        return response.ok

    def check_credential(self) -> bool:
        """True when the backend reports the upstream credential as accepted."""
        try:
            response = requests.get(f"{self._base_url}/validate-key", timeout=self._timeout)
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("Credential probe failed", extra={"error": str(e)})
            return False
        return isinstance(data, dict) and data.get("valid") is True

    def refresh(self) -> ConnectivityStatus:
        """Run both probes and recompute the status."""
        self.status = ConnectivityStatus.UNKNOWN
        reachable = self.check_reachability()
        credential_valid = self.check_credential() if reachable else None
        self.status = derive_status(reachable, credential_valid)
        logger.info("Connectivity checked", extra={"status": self.status.value})
        return self.status
