"""Remote template sources.

A registry serves ``<url>/index.json`` (a list of descriptor documents, or an
object with a ``templates`` list) and one ``<url>/<name>/<version>.tar.gz``
archive per template version holding the template files.
"""

from __future__ import annotations

import io
import logging
import tarfile
from pathlib import Path
from typing import Any, Protocol

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from ..core.errors import DescriptorValidationError, RemoteSourceError
from ..core.models import TemplateDescriptor
from ..core.schema import JsonSchemaValidator, SchemaValidator
from .loader import parse_descriptor

logger = logging.getLogger(__name__)


class TemplateSource(Protocol):
    name: str

    def list_templates(self) -> list[TemplateDescriptor]: ...

    def download(self, descriptor: TemplateDescriptor, dest: Path) -> None: ...


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500 or exc.response.status_code == 429
    return False


class HttpRegistrySource:
    """Template registry reachable over HTTP.

    Args:
        url: Registry base URL
        timeout: Per-request timeout in seconds
        retries: Attempts per request for transport errors and 5xx/429 responses
        backoff: Exponential backoff multiplier in seconds
        client: Preconfigured ``httpx.Client`` (tests pass a ``MockTransport``)
        schema_validator: Validator for listed descriptor documents
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        retries: int = 3,
        backoff: float = 1.0,
        client: httpx.Client | None = None,
        schema_validator: SchemaValidator | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self.name = f"remote:{self.url}"
        self.retries = max(1, retries)
        self.backoff = backoff
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._validator = schema_validator or JsonSchemaValidator()

    def list_templates(self) -> list[TemplateDescriptor]:
        """Fetch the registry index. Invalid entries are dropped with a warning.

        Raises:
            RemoteSourceError: When the index cannot be fetched or decoded
        """
        response = self._get(f"{self.url}/index.json")
        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise RemoteSourceError(f"Invalid index from {self.url}: {exc}") from exc

        entries = payload.get("templates", []) if isinstance(payload, dict) else payload
        if not isinstance(entries, list):
            raise RemoteSourceError(f"Index from {self.url} is not a list of templates")

        descriptors = []
        for entry in entries:
            if not isinstance(entry, dict):
                logger.warning(f"Skipping non-object index entry from {self.url}")
                continue
            try:
                descriptors.append(
                    parse_descriptor(entry, self._validator, origin=self.name)
                )
            except DescriptorValidationError as exc:
                logger.warning(f"Dropping invalid descriptor from {self.url}: {exc}")
        logger.debug(f"Fetched {len(descriptors)} descriptor(s) from {self.url}")
        return descriptors

    def download(self, descriptor: TemplateDescriptor, dest: Path) -> None:
        """Download and unpack a template archive into ``dest``.

        Raises:
            RemoteSourceError: When the archive cannot be fetched or unpacked
        """
        url = f"{self.url}/{descriptor.name}/{descriptor.version}.tar.gz"
        response = self._get(url)
        try:
            with tarfile.open(fileobj=io.BytesIO(response.content), mode="r:gz") as archive:
                archive.extractall(dest, filter="data")
        except (tarfile.TarError, OSError) as exc:
            raise RemoteSourceError(f"Cannot unpack {url}: {exc}") from exc
        logger.info(f"Downloaded {descriptor.name}@{descriptor.version} from {self.url}")

    def close(self) -> None:
        self._client.close()

    def _get(self, url: str) -> httpx.Response:
        retrying = Retrying(
            reraise=True,
            retry=retry_if_exception(_is_retryable),
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential(multiplier=self.backoff, max=30),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )
        try:
            for attempt in retrying:
                with attempt:
                    response = self._client.get(url)
                    response.raise_for_status()
        except httpx.HTTPError as exc:
            raise RemoteSourceError(f"Request to {url} failed: {exc}", url=url) from exc
        return response
