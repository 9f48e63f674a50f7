"""Forwarding of finalized votes to the external backup service."""

import logging
from typing import Optional

import httpx

from voters.shared import VoteRecord
from .config import Config

logger = logging.getLogger(__name__)


class BackupClient:
    """Authenticated JSON POST of vote records to a backup endpoint."""

    def __init__(
        self,
        url: str = Config.BACKUP_URL,
        token: str = Config.BACKUP_TOKEN,
        timeout: float = Config.BACKUP_TIMEOUT,
        client: Optional[httpx.Client] = None
    ):
        self.url = url
        self.token = token
        self.client = client or httpx.Client(timeout=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.url and self.token)

    def backup(self, record: VoteRecord) -> None:
        """
        Send the full record to the backup endpoint.

        Raises:
            httpx.HTTPError: On transport errors or non-2xx responses
        """
        response = self.client.post(
            self.url,
            json=record.to_dict(),
            headers={"Authorization": f"Bearer {self.token}"}
        )
        response.raise_for_status()
        logger.info(f"Vote backed up: id={record.id}, status={response.status_code}")

    def close(self):
        """Close the underlying HTTP client."""
        self.client.close()
