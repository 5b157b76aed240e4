"""
Base Source Adapter
Uniform validate / enumerate / fetch contract over content origins
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import logging

import httpx

from core import AdapterValidation, AuthContext, FetchedContent, LessonRef
from processing import compute_content_hash
from utils.exceptions import SessionExpiredError, SourceFetchError


logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; LessonBatchAnalyzer/1.0)"


class SourceAdapter(ABC):
    """
    Source adapter base class

    Subclasses implement the three contract methods. HTTP goes through a
    shared ``httpx.AsyncClient`` created lazily; pass ``transport`` to route
    requests elsewhere (e.g. ``httpx.MockTransport`` in tests).
    """

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    @abstractmethod
    def source_type(self) -> str:
        """Registry key"""
        pass

    @abstractmethod
    def validate(self, root_url: str) -> AdapterValidation:
        """Check whether ``root_url`` can be served by this adapter."""
        pass

    @abstractmethod
    async def enumerate_lessons(self, root_url: str, auth: Optional[AuthContext] = None) -> List[LessonRef]:
        """
        List the lessons reachable from a program root.

        Returns:
            lessons in source order
        """
        pass

    @abstractmethod
    async def fetch_lesson_content(self, url: str, auth: Optional[AuthContext] = None) -> FetchedContent:
        """
        Fetch one lesson as plain text plus its content hash.
        """
        pass

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def _headers(self, auth: Optional[AuthContext] = None) -> Dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/json,text/plain;q=0.9,*/*;q=0.8",
        }
        if auth is not None:
            if auth.cookie:
                headers["Cookie"] = auth.cookie
            if auth.token:
                headers["Authorization"] = f"Bearer {auth.token}"
        return headers

    async def _get(self, url: str, auth: Optional[AuthContext] = None, *, session_bound: bool = False) -> httpx.Response:
        """
        GET ``url`` and map failures onto the error taxonomy.

        With ``session_bound`` a 401/403 means the session cookie expired and
        raises :class:`SessionExpiredError`; otherwise every non-2xx status
        raises :class:`SourceFetchError` carrying the status code.
        """
        client = self._get_client()
        try:
            response = await client.get(url, headers=self._headers(auth))
        except httpx.TimeoutException as e:
            raise SourceFetchError(f"Timed out fetching {url}", source=self.source_type) from e
        except httpx.HTTPError as e:
            raise SourceFetchError(f"Request to {url} failed: {e}", source=self.source_type) from e

        status = response.status_code
        if status >= 400:
            logger.warning("[%s] HTTP %d from %s", self.source_type, status, url)
        if session_bound and status in (401, 403):
            raise SessionExpiredError(
                "Session expired - please refresh the cookie",
                status_code=status,
                source=self.source_type,
            )
        if status >= 400:
            raise SourceFetchError(
                f"HTTP {status} fetching {url}",
                source=self.source_type,
                status_code=status,
            )
        return response

    @staticmethod
    def _fetched(text: str) -> FetchedContent:
        return FetchedContent(text=text, hash=compute_content_hash(text))

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
