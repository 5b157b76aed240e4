"""
Cookie Site Adapter
Scrapes lesson lists and lesson pages from session-cookie protected course sites
"""
from typing import List, Optional, Sequence
from urllib.parse import urljoin, urlparse
import logging

from bs4 import BeautifulSoup

from core import AdapterValidation, AuthContext, FetchedContent, LessonRef, SourceType
from processing import collapse_whitespace, normalize_lines, truncate
from utils.exceptions import AuthError

from .base import SourceAdapter


logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_HOSTS = ("yonote.ru", "practicum.yandex.ru", "praktikum.yandex.ru")

# Tried in order; the first selector with any match wins.
LESSON_LINK_SELECTORS = (
    'a[href*="/urok/"], a[href*="/lesson/"]',
    ".lesson-link, .topic-link",
    "[data-lesson-id] a",
    ".content-tree a",
    ".syllabus-item a",
    ".curriculum-module__lesson a",
    ".lesson-card__link",
)
FALLBACK_LINK_SELECTOR = "a[href]"

SKIP_PATH_PARTS = ("/profile", "/settings", "/logout", "/login")
SKIP_EXTENSIONS = (".pdf", ".zip", ".png", ".jpg", ".jpeg", ".gif", ".svg", ".css", ".js")
SKIP_SCHEMES = ("mailto:", "javascript:", "tel:")

NOISE_SELECTOR = "script, style, noscript, nav, header, footer, .navigation, .sidebar, .menu, .breadcrumb"
CONTENT_SELECTORS = (
    "main",
    "article",
    ".content",
    ".lesson-content",
    ".main-content",
    '[role="main"]',
    "#content",
    ".page-content",
)


class CookieSiteAdapter(SourceAdapter):
    """
    Session-cookie authenticated course site scraper.

    Every request carries the user's cookie; a 401/403 answer raises
    ``SessionExpiredError`` so the caller asks for a fresh cookie instead of
    retrying.
    """

    def __init__(
        self,
        allowed_hosts: Sequence[str] = DEFAULT_ALLOWED_HOSTS,
        min_content_chars: int = 100,
        max_title_chars: int = 200,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.allowed_hosts = tuple(host.lower().strip(".") for host in allowed_hosts)
        self.min_content_chars = min_content_chars
        self.max_title_chars = max_title_chars

    @property
    def source_type(self) -> str:
        return SourceType.YONOTE.value

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    def _host_allowed(self, hostname: str) -> bool:
        hostname = (hostname or "").lower()
        return any(hostname == host or hostname.endswith("." + host) for host in self.allowed_hosts)

    def validate(self, root_url: str) -> AdapterValidation:
        try:
            parsed = urlparse(str(root_url or "").strip())
        except ValueError:
            return AdapterValidation(ok=False, reason="Malformed URL")

        if not parsed.scheme or not parsed.netloc:
            return AdapterValidation(ok=False, reason="Malformed URL")
        if parsed.scheme != "https":
            return AdapterValidation(ok=False, reason="Only https URLs are supported")
        if not self._host_allowed(parsed.hostname or ""):
            return AdapterValidation(
                ok=False,
                reason=f"Host {parsed.hostname} is not supported; allowed hosts: {', '.join(self.allowed_hosts)}",
            )
        return AdapterValidation(ok=True)

    async def enumerate_lessons(self, root_url: str, auth: Optional[AuthContext] = None) -> List[LessonRef]:
        self._require_cookie(auth)
        response = await self._get(root_url, auth, session_bound=True)
        lessons = self.parse_lessons(response.text, str(response.url) or root_url)
        logger.info(f"[{self.source_type}] Enumerated {len(lessons)} lessons from {root_url}")
        return lessons

    async def fetch_lesson_content(self, url: str, auth: Optional[AuthContext] = None) -> FetchedContent:
        self._require_cookie(auth)
        response = await self._get(url, auth, session_bound=True)
        return self._fetched(self.extract_content(response.text))

    # ------------------------------------------------------------------
    # Parsing
    # ------------------------------------------------------------------

    @staticmethod
    def _require_cookie(auth: Optional[AuthContext]) -> None:
        if auth is None or not auth.cookie:
            raise AuthError("A session cookie is required for this source")

    @staticmethod
    def _should_skip(url: str) -> bool:
        lowered = url.lower()
        if lowered.startswith(SKIP_SCHEMES) or "#" in lowered:
            return True
        path = urlparse(lowered).path
        if any(part in path for part in SKIP_PATH_PARTS):
            return True
        return path.endswith(SKIP_EXTENSIONS)

    def _title_for(self, anchor, position: int) -> str:
        title = collapse_whitespace(anchor.get_text(" "))
        if len(title) < 3:
            container = anchor.find_parent(
                lambda tag: tag.has_attr("data-lesson-title")
                or bool({"lesson-item", "topic-item"} & set(tag.get("class") or []))
            )
            title = collapse_whitespace(container.get_text(" ")) if container is not None else ""
        if not title:
            title = f"Lesson {position + 1}"
        return truncate(title, self.max_title_chars)

    def parse_lessons(self, html: str, base_url: str) -> List[LessonRef]:
        """Extract ordered, de-duplicated same-host lesson links from a program page."""
        soup = BeautifulSoup(html, "lxml")

        anchors = []
        for selector in LESSON_LINK_SELECTORS:
            anchors = soup.select(selector)
            if anchors:
                break
        if not anchors:
            anchors = soup.select(FALLBACK_LINK_SELECTOR)

        base_host = urlparse(base_url).netloc.lower()
        seen = set()
        lessons: List[LessonRef] = []
        for anchor in anchors:
            href = (anchor.get("href") or "").strip()
            if not href or href.lower().startswith(SKIP_SCHEMES):
                continue
            full_url = urljoin(base_url, href)
            parsed = urlparse(full_url)
            if parsed.scheme not in ("http", "https") or parsed.netloc.lower() != base_host:
                continue
            if self._should_skip(full_url):
                continue
            if full_url in seen:
                continue
            seen.add(full_url)

            position = len(lessons)
            lessons.append(LessonRef(title=self._title_for(anchor, position), url=full_url, order=position))
        return lessons

    def extract_content(self, html: str) -> str:
        """
        Main-content text of a lesson page.

        Noise elements are removed first; the first matching content selector
        wins, otherwise the body is used. Results shorter than
        ``min_content_chars`` fall back to the whole page text.
        """
        soup = BeautifulSoup(html, "lxml")
        for element in soup.select(NOISE_SELECTOR):
            element.decompose()

        body = soup.body or soup
        container = None
        for selector in CONTENT_SELECTORS:
            container = soup.select_one(selector)
            if container is not None:
                break
        if container is None:
            container = body

        text = normalize_lines(container.get_text("\n"))
        if len(text) < self.min_content_chars:
            text = collapse_whitespace(body.get_text(" "))
        return text
