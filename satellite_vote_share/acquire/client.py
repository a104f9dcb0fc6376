"""Harvard Dataverse client with timeouts and bounded retry.

Failures are sorted into three kinds:
- 404: the file is gone, :class:`SourceNotFoundError`, never retried;
- timeouts, dropped connections, 429 and 5xx: :class:`TransientSourceError`,
  retried with exponential backoff until the attempt budget runs out;
- a response that arrives but cannot be used (bad JSON, truncated zip):
  :class:`MalformedSourceError`.

Example usage:
    client = DataverseClient()
    files = client.list_files(VEST_2020_DOI)
    client.download_file(files[0]["id"], RAW_DATA_DIR / files[0]["filename"])
"""

from __future__ import annotations

import os
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests
from loguru import logger
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import AcquisitionError, MalformedSourceError, SourceNotFoundError, TransientSourceError
from ..io import mkdir_p
from ..settings import RetryParams
from .sources import DATAVERSE_BASE_URL

TRANSIENT_STATUS = {429, 500, 502, 503, 504}


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(f"[acquire] attempt {retry_state.attempt_number} failed ({exc}); retrying")


class DataverseClient:
    """Thin wrapper over the Dataverse native and data-access APIs."""

    def __init__(
        self,
        base_url: str = DATAVERSE_BASE_URL,
        params: RetryParams = RetryParams(),
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.params = params
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "satellite-vote-share"})

    def _retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception_type(TransientSourceError),
            wait=wait_exponential(multiplier=1, min=self.params.wait_min, max=self.params.wait_max),
            stop=stop_after_attempt(self.params.attempts),
            before_sleep=_log_retry,
            reraise=True,
        )

    def _get(self, url: str, query: Optional[Dict[str, Any]] = None, stream: bool = False):
        logger.debug(f"GET {url} params={query}")
        try:
            resp = self.session.get(url, params=query, timeout=self.params.timeout, stream=stream)
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise TransientSourceError(f"{url}: {e}") from e

        if resp.status_code == 404:
            resp.close()
            raise SourceNotFoundError(f"Resource not found: {url}")
        if resp.status_code in TRANSIENT_STATUS:
            resp.close()
            raise TransientSourceError(f"{url}: HTTP {resp.status_code}")
        try:
            resp.raise_for_status()
        except requests.exceptions.HTTPError as e:
            resp.close()
            raise AcquisitionError(f"{url}: {e}") from e
        return resp

    def get_json(self, url: str, query: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        def once() -> Dict[str, Any]:
            resp = self._get(url, query)
            try:
                return resp.json()
            except ValueError as e:
                raise MalformedSourceError(f"{url}: response is not JSON") from e

        return self._retrying()(once)

    def list_files(self, doi: str) -> List[Dict[str, Any]]:
        """Files of the latest dataset version as ``{"filename", "id", "filesize"}`` dicts."""
        url = f"{self.base_url}/api/datasets/:persistentId/"
        payload = self.get_json(url, {"persistentId": doi})
        try:
            entries = payload["data"]["latestVersion"]["files"]
            files = [
                {
                    "filename": e["dataFile"]["filename"],
                    "id": int(e["dataFile"]["id"]),
                    "filesize": e["dataFile"].get("filesize"),
                }
                for e in entries
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedSourceError(f"{doi}: unexpected dataset metadata layout ({e})") from e
        logger.info(f"[acquire] {doi}: {len(files)} files listed")
        return files

    def download_file(self, file_id: int, dest: Path, overwrite: bool = False, original: bool = False) -> Path:
        """Fetch a datafile by id.

        Ingested tabular files are served as Dataverse's tab-separated export
        unless ``original`` asks for the file as uploaded (``format=original``).
        """
        query = {"format": "original"} if original else None
        return self.download_url(f"{self.base_url}/api/access/datafile/{file_id}", dest, overwrite, query)

    def download_url(
        self, url: str, dest: Path, overwrite: bool = False, query: Optional[Dict[str, Any]] = None
    ) -> Path:
        """Stream ``url`` to ``dest``; the file only appears once it is complete."""
        dest = Path(dest)
        if dest.exists() and not overwrite:
            logger.info(f"[acquire] {dest.name} exists; skipping")
            return dest
        mkdir_p(dest.parent)
        self._retrying()(self._stream_to, url, dest, query)
        logger.success(f"[acquire] {dest.name} ({dest.stat().st_size} bytes)")
        return dest

    def _stream_to(self, url: str, dest: Path, query: Optional[Dict[str, Any]] = None) -> None:
        part = dest.with_name(dest.name + ".part")
        resp = self._get(url, query, stream=True)
        try:
            with open(part, "wb") as fh:
                for chunk in resp.iter_content(chunk_size=self.params.chunk_size):
                    if chunk:
                        fh.write(chunk)
        except (requests.exceptions.ChunkedEncodingError, requests.exceptions.ConnectionError) as e:
            part.unlink(missing_ok=True)
            raise TransientSourceError(f"{url}: connection dropped mid-download") from e
        finally:
            resp.close()

        if dest.suffix.lower() == ".zip" and not zipfile.is_zipfile(part):
            part.unlink(missing_ok=True)
            raise MalformedSourceError(f"{url}: payload is not a valid zip archive")
        os.replace(part, dest)
