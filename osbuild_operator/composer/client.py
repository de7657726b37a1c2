"""Client for the osbuild composer compose API."""

from abc import ABC, abstractmethod
import logging
import ssl
from pathlib import Path
from typing import Any
from urllib.parse import urljoin

from aiohttp import ClientError, ClientSession, ClientTimeout, TCPConnector
from mashumaro.exceptions import InvalidFieldValue, MissingField

from osbuild_operator.exceptions import ComposerException

from .models import ComposeId, ComposeRequest, ComposeStatus

__all__ = [
    "Composer",
    "ComposerClient",
    "create_ssl_context",
]

_LOGGER = logging.getLogger(__name__)

COMPOSE_PATH = "api/image-builder-composer/v2/compose"


class Composer(ABC):
    """Interface to the image compose service."""

    @abstractmethod
    async def post_compose(self, request: ComposeRequest) -> ComposeId:
        """Submit a new compose and return its id.

        Raises:
            ComposerException: If the compose was not accepted.
        """

    @abstractmethod
    async def get_compose_status(self, compose_id: str) -> ComposeStatus:
        """Return the status of a compose.

        Raises:
            ComposerException: If the status could not be retrieved.
        """

    async def close(self) -> None:
        """Release any resources held by the client."""


def create_ssl_context(
    ca_file: Path | None = None,
    cert_file: Path | None = None,
    key_file: Path | None = None,
) -> ssl.SSLContext:
    """Create the SSL context for mutual TLS with the compose service."""
    context = ssl.create_default_context(cafile=str(ca_file) if ca_file else None)
    if cert_file and key_file:
        context.load_cert_chain(str(cert_file), str(key_file))
    return context


class ComposerClient(Composer):
    """Compose service client over HTTP."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        """Initialize the ComposerClient.

        Args:
            base_url: Base URL of the compose service
            timeout: Timeout in seconds for each request
            ssl_context: SSL context for https connections, or None for defaults
        """
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self._timeout = ClientTimeout(total=timeout)
        self._ssl_context = ssl_context
        self._session: ClientSession | None = None

    def _get_session(self) -> ClientSession:
        if self._session is None or self._session.closed:
            self._session = ClientSession(
                connector=TCPConnector(
                    ssl=self._ssl_context if self._ssl_context is not None else True
                ),
                timeout=self._timeout,
            )
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        expected_status: int,
        json: dict[str, Any] | None = None,
    ) -> Any:
        url = urljoin(self.base_url, path)
        _LOGGER.debug("%s %s", method, url)
        try:
            async with self._get_session().request(
                method, url, json=json
            ) as response:
                if response.status != expected_status:
                    body = await response.text()
                    raise ComposerException(
                        f"{method} {url} failed with status code {response.status}, "
                        f"and body {body}"
                    )
                return await response.json()
        except ClientError as err:
            raise ComposerException(f"{method} {url} failed: {err}") from err
        except TimeoutError as err:
            raise ComposerException(f"{method} {url} timed out") from err
        except ValueError as err:
            raise ComposerException(
                f"{method} {url} returned invalid JSON: {err}"
            ) from err

    async def post_compose(self, request: ComposeRequest) -> ComposeId:
        """Submit a new compose and return its id."""
        data = await self._request("POST", COMPOSE_PATH, 201, json=request.to_dict())
        try:
            return ComposeId.from_dict(data)
        except (MissingField, InvalidFieldValue) as err:
            raise ComposerException(f"Invalid compose response: {err}") from err

    async def get_compose_status(self, compose_id: str) -> ComposeStatus:
        """Return the status of a compose."""
        data = await self._request("GET", f"{COMPOSE_PATH}/{compose_id}", 200)
        if not isinstance(data, dict):
            raise ComposerException(f"Invalid compose status response: {data}")
        try:
            return ComposeStatus.from_dict(data)
        except (MissingField, InvalidFieldValue) as err:
            raise ComposerException(f"Invalid compose status response: {err}") from err

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None
