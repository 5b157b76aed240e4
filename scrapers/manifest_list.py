"""
Manifest List Adapter
Reads lesson lists from JSON manifests or delimited text files
"""
from typing import Any, List, Optional
from urllib.parse import urlparse
import json
import logging

from core import AdapterValidation, AuthContext, FetchedContent, LessonRef, SourceType
from processing import collapse_whitespace, strip_html
from utils.exceptions import ValidationError

from .base import SourceAdapter


logger = logging.getLogger(__name__)

MANIFEST_EXTENSIONS = (".txt", ".json", ".csv")
MANIFEST_PATH_PARTS = ("/manifest", "/urls", "/lessons")
LINE_DELIMITERS = ("\t", "|", ",", ";")
COMMENT_PREFIXES = ("#", "//")


def _is_http_url(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _default_title(index: int) -> str:
    return f"Lesson {index + 1}"


class ManifestListAdapter(SourceAdapter):
    """
    List-of-URLs adapter.

    Accepts ``{"lessons": [{"title", "url", "order"}]}`` or ``{"urls": [...]}``
    JSON documents, or text files with one lesson per line
    (``url``, ``title<TAB>url``, ``url|title``, ``title,url``, ``title;url``).
    """

    @property
    def source_type(self) -> str:
        return SourceType.GENERIC_LIST.value

    def validate(self, root_url: str) -> AdapterValidation:
        value = str(root_url or "").strip()
        if not _is_http_url(value):
            return AdapterValidation(ok=False, reason="Malformed URL")
        path = urlparse(value).path.lower()
        if path.endswith(MANIFEST_EXTENSIONS) or any(part in path for part in MANIFEST_PATH_PARTS):
            return AdapterValidation(ok=True)
        return AdapterValidation(
            ok=False,
            reason="URL must point to a .txt, .json or .csv lesson list or a manifest path",
        )

    async def enumerate_lessons(self, root_url: str, auth: Optional[AuthContext] = None) -> List[LessonRef]:
        response = await self._get(root_url, auth)
        content_type = response.headers.get("content-type", "").lower()
        if "json" in content_type or urlparse(root_url).path.lower().endswith(".json"):
            lessons = self.parse_json_manifest(response.text)
        else:
            lessons = self.parse_text_list(response.text)
        logger.info(f"[{self.source_type}] Enumerated {len(lessons)} lessons from {root_url}")
        return lessons

    async def fetch_lesson_content(self, url: str, auth: Optional[AuthContext] = None) -> FetchedContent:
        response = await self._get(url, auth)
        return self._fetched(strip_html(response.text))

    @staticmethod
    def parse_json_manifest(payload: str) -> List[LessonRef]:
        try:
            data: Any = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValidationError("Manifest is not valid JSON", details={"error": str(e)}) from e
        if not isinstance(data, dict):
            raise ValidationError("Manifest must be a JSON object with 'lessons' or 'urls'")

        lessons: List[LessonRef] = []
        if isinstance(data.get("lessons"), list):
            for index, item in enumerate(data["lessons"]):
                if not isinstance(item, dict):
                    continue
                url = str(item.get("url") or "").strip()
                if not _is_http_url(url):
                    continue
                order = item.get("order")
                lessons.append(
                    LessonRef(
                        title=collapse_whitespace(item.get("title")) or _default_title(index),
                        url=url,
                        order=order if isinstance(order, int) else index,
                    )
                )
        elif isinstance(data.get("urls"), list):
            for index, url in enumerate(data["urls"]):
                url = str(url or "").strip()
                if _is_http_url(url):
                    lessons.append(LessonRef(title=_default_title(index), url=url, order=index))

        return sorted(lessons, key=lambda lesson: lesson.order)

    @staticmethod
    def parse_text_list(payload: str) -> List[LessonRef]:
        lessons: List[LessonRef] = []
        for raw_line in payload.splitlines():
            line = raw_line.strip()
            if not line or line.startswith(COMMENT_PREFIXES):
                continue

            position = len(lessons)
            title, url = _default_title(position), line
            for delimiter in LINE_DELIMITERS:
                if delimiter not in line:
                    continue
                parts = [part.strip() for part in line.split(delimiter)]
                if parts[0].lower().startswith("http"):
                    url = parts[0]
                    title = parts[1] or title
                elif parts[1].lower().startswith("http"):
                    title, url = parts[0] or title, parts[1]
                break

            if not _is_http_url(url):
                logger.debug("Skipping malformed manifest line: %s", line[:120])
                continue
            lessons.append(LessonRef(title=title, url=url, order=position))
        return lessons
