"""Client for the external object-storage service that holds issue photos."""

import logging
import posixpath
from typing import Iterable, Optional
from urllib.parse import urlparse

import requests

logger = logging.getLogger(__name__)


class ImageStorage:
    """Delete remotely stored images by their opaque reference.

    References are stored verbatim on issues. The public id is the path of the
    reference from the configured folder onwards, without file extension.
    """

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str] = None,
        folder: str = "",
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.api_key = api_key
        self.folder = folder.strip("/")
        self.timeout = timeout

    def public_id(self, reference: str) -> str:
        path = urlparse(reference).path or reference
        stem = posixpath.splitext(path)[0].strip("/")
        if self.folder and self.folder in stem:
            return stem[stem.index(self.folder):]
        return posixpath.basename(stem)

    def delete(self, reference: str) -> None:
        if not self.base_url:
            logger.debug("storage not configured, skipping delete of %s", reference)
            return
        public_id = self.public_id(reference)
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        response = requests.delete(
            f"{self.base_url}/{public_id}", headers=headers, timeout=self.timeout
        )
        response.raise_for_status()
        logger.info("deleted image %s", public_id)


def cleanup_images(storage: ImageStorage, references: Iterable[str]) -> int:
    """Delete each reference, logging failures without raising.

    Returns the number of references deleted successfully.
    """
    deleted = 0
    for reference in references:
        try:
            storage.delete(reference)
            deleted += 1
        except Exception:
            logger.exception("failed to clean up image %s", reference)
    return deleted
