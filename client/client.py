# =============================================================================
# Closet Tagger VLM - HTTP Client
# =============================================================================
# Provides the TaggerClient class responsible for uploading clothing photos
# to the tagging server and managing the remote closet.
# =============================================================================

import logging
import time
from pathlib import Path
from typing import List, Union

import requests

logger = logging.getLogger(__name__)


class TaggerClient:
    """
    HTTP client for the tagging server.

    Args:
        server_url: Base URL of the server (e.g., "http://127.0.0.1:8000").
    """

    def __init__(self, server_url: str):
        self._server_url = server_url.rstrip("/")
        self._session = requests.Session()

    def tag_image(
        self,
        image_path: Union[str, Path],
        max_retries: int = 3,
    ) -> dict:
        """
        Upload a photo for tagging.

        A "busy" answer (HTTP 409) means another photo is being analyzed; it
        is retried with exponential backoff like connection errors.  Other
        outcomes ("tagged", "no_clothing", "failed", "cancelled") are
        returned as-is.

        Args:
            image_path:  Path to the image file.
            max_retries: Maximum number of attempts.

        Returns:
            dict: The server's TagResponse body.

        Raises:
            requests.exceptions.RequestException: After all retries exhausted.
        """
        path = Path(image_path)
        data = path.read_bytes()
        url = f"{self._server_url}/api/v1/tag"
        result = None
        last_exception = None

        for attempt in range(1, max_retries + 1):
            try:
                response = self._session.post(
                    url,
                    files={"image": (path.name, data, "application/octet-stream")},
                    timeout=600,
                )
                if response.status_code not in (200, 409, 500):
                    response.raise_for_status()
                result = response.json()
                if result.get("status") != "busy":
                    logger.info(
                        "Tagged %s -> %s (attempt %d, %.1fms)",
                        path.name, result.get("status"), attempt,
                        result.get("processing_time_ms", 0),
                    )
                    return result
                last_exception = None
                logger.warning("Server busy while tagging %s (attempt %d/%d)", path.name, attempt, max_retries)

            except requests.exceptions.RequestException as exc:
                last_exception = exc
                logger.warning(
                    "Failed to send %s (attempt %d/%d): %s",
                    path.name, attempt, max_retries, exc,
                )

            if attempt < max_retries:
                wait_time = 2 ** (attempt - 1)
                logger.info("Retrying in %ds", wait_time)
                time.sleep(wait_time)

        if last_exception is not None:
            logger.error("All %d attempts failed for %s", max_retries, path.name)
            raise last_exception
        return result

    def cancel(self) -> bool:
        """Cancel the tag request currently running on the server."""
        response = self._session.post(f"{self._server_url}/api/v1/tag/cancel", timeout=10)
        response.raise_for_status()
        return response.json()["cancelled"]

    def warm_up(self) -> dict:
        """Ask the server to load the model (can take minutes on first run)."""
        response = self._session.post(f"{self._server_url}/api/v1/model/load", timeout=1800)
        if response.status_code not in (200, 500):
            response.raise_for_status()
        return response.json()

    def list_closet(self) -> List[dict]:
        response = self._session.get(f"{self._server_url}/api/v1/closet", timeout=10)
        response.raise_for_status()
        return response.json()["items"]

    def rename_item(self, item_id: str, tag: str) -> dict:
        response = self._session.patch(
            f"{self._server_url}/api/v1/closet/{item_id}", json={"tag": tag}, timeout=10
        )
        response.raise_for_status()
        return response.json()

    def delete_item(self, item_id: str) -> None:
        response = self._session.delete(f"{self._server_url}/api/v1/closet/{item_id}", timeout=10)
        response.raise_for_status()

    def wait_for_server(self, timeout: int = 300, poll_interval: float = 5.0) -> bool:
        """
        Block until the server's /health endpoint answers.

        Args:
            timeout:       Maximum seconds to wait for the server.
            poll_interval: Seconds between health check polls.

        Returns:
            True if the server is reachable, False if timeout expired.
        """
        url = f"{self._server_url}/health"
        start = time.time()

        logger.info("Waiting for server at %s (timeout=%ds)...", url, timeout)

        while (time.time() - start) < timeout:
            try:
                response = self._session.get(url, timeout=5)
                if response.status_code == 200:
                    data = response.json()
                    logger.info(
                        "Server is up (model_loaded=%s).", data.get("model_loaded", False)
                    )
                    return True
            except requests.exceptions.ConnectionError:
                logger.debug("Server not reachable yet...")

            time.sleep(poll_interval)

        logger.error("Timed out waiting for server after %ds.", timeout)
        return False
