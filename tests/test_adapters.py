"""
Tests for the source adapters and their registry
"""
import json

import httpx
import pytest

from core import AuthContext, LessonRef
from processing import compute_content_hash
from scrapers import AdapterRegistry, CookieSiteAdapter, ManifestListAdapter, build_default_registry
from utils.exceptions import AuthError, SessionExpiredError, SourceFetchError, UnsupportedSourceError, ValidationError

from conftest import lesson_page, site_transport


COOKIE = AuthContext(cookie="session=abc")

PROGRAM_PAGE = """
<html><body>
  <a href="/profile">Profile</a>
  <ul class="syllabus">
    <li><a href="/lesson/1">Intro</a></li>
    <li><div class="lesson-item">Second topic <a href="/lesson/2"></a></div></li>
    <li><a href="/lesson/1">Intro again</a></li>
    <li><a href="https://other.example.com/lesson/9">Elsewhere</a></li>
    <li><a href="/lesson/slides.pdf">Slides</a></li>
    <li><a href="/lesson/3#quiz">Quiz anchor</a></li>
    <li><a href="/profile/lesson/4">Profile lesson</a></li>
  </ul>
</body></html>
"""


class TestCookieSiteAdapter:
    """Cookie-authenticated course site scraper"""

    @pytest.mark.parametrize(
        "url, ok",
        [
            ("https://yonote.ru/course/python", True),
            ("https://team.yonote.ru/doc/1", True),
            ("https://practicum.yandex.ru/learn/python", True),
            ("http://yonote.ru/course", False),
            ("https://example.com/course", False),
            ("not a url", False),
        ],
    )
    def test_validate(self, url, ok):
        assert CookieSiteAdapter().validate(url).ok is ok

    def test_validate_reason(self):
        result = CookieSiteAdapter().validate("http://yonote.ru/course")
        assert result.reason == "Only https URLs are supported"

    def test_parse_lessons(self):
        lessons = CookieSiteAdapter().parse_lessons(PROGRAM_PAGE, "https://yonote.ru/course")

        assert lessons == [
            LessonRef(title="Intro", url="https://yonote.ru/lesson/1", order=0),
            LessonRef(title="Second topic", url="https://yonote.ru/lesson/2", order=1),
        ]

    def test_parse_lessons_falls_back_to_all_links(self):
        html = '<html><body><a href="/a">Alpha page</a><a href="/b">Beta page</a><a href="mailto:x@y.z">Mail</a></body></html>'

        lessons = CookieSiteAdapter().parse_lessons(html, "https://yonote.ru/course")

        assert [lesson.url for lesson in lessons] == ["https://yonote.ru/a", "https://yonote.ru/b"]
        assert [lesson.title for lesson in lessons] == ["Alpha page", "Beta page"]

    def test_extract_content_prefers_main(self):
        text = CookieSiteAdapter().extract_content(lesson_page("Lesson A"))

        assert text.startswith("Lesson A")
        assert "Course menu" not in text
        assert "Contacts" not in text

    def test_extract_content_short_main_uses_body(self):
        long_text = "Detailed explanation of list comprehensions with examples. " * 3
        html = f"<html><body><main>Short</main><div>{long_text}</div><script>var x = 1;</script></body></html>"

        text = CookieSiteAdapter().extract_content(html)

        assert text.startswith("Short Detailed explanation")
        assert "var x" not in text

    @pytest.mark.asyncio
    async def test_enumerate_sends_cookie(self):
        seen = []

        def handler(request):
            seen.append(request.headers.get("cookie"))
            return httpx.Response(200, text=PROGRAM_PAGE)

        async with CookieSiteAdapter(transport=httpx.MockTransport(handler)) as adapter:
            lessons = await adapter.enumerate_lessons("https://yonote.ru/course", COOKIE)

        assert seen == ["session=abc"]
        assert len(lessons) == 2

    @pytest.mark.asyncio
    async def test_fetch_returns_text_and_hash(self):
        async with CookieSiteAdapter(transport=site_transport({"/lesson/a": lesson_page("Lesson A")})) as adapter:
            fetched = await adapter.fetch_lesson_content("https://yonote.ru/lesson/a", COOKIE)

        assert fetched.hash == compute_content_hash(fetched.text)
        assert "Lesson A explains" in fetched.text

    @pytest.mark.asyncio
    async def test_rejected_cookie_raises_session_expired(self):
        async with CookieSiteAdapter(transport=site_transport({"/lesson/a": 403})) as adapter:
            with pytest.raises(SessionExpiredError) as info:
                await adapter.fetch_lesson_content("https://yonote.ru/lesson/a", COOKIE)

        assert info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_other_errors_keep_status(self):
        async with CookieSiteAdapter(transport=site_transport({})) as adapter:
            with pytest.raises(SourceFetchError) as info:
                await adapter.fetch_lesson_content("https://yonote.ru/lesson/missing", COOKIE)

        assert info.value.status_code == 404
        assert not info.value.is_auth_failure

    @pytest.mark.asyncio
    async def test_cookie_required(self):
        with pytest.raises(AuthError):
            await CookieSiteAdapter().fetch_lesson_content("https://yonote.ru/lesson/a", None)


TEXT_LIST = """# lessons
https://cdn.example.com/1
Second lesson\thttps://cdn.example.com/2
https://cdn.example.com/3|Third
Fourth,https://cdn.example.com/4
Fifth;https://cdn.example.com/5
not a url
"""


class TestManifestListAdapter:
    """JSON manifests and delimited text lists"""

    @pytest.mark.parametrize(
        "url, ok",
        [
            ("https://cdn.example.com/course.json", True),
            ("https://cdn.example.com/lessons.txt", True),
            ("https://cdn.example.com/api/manifest/42", True),
            ("https://cdn.example.com/page.html", False),
            ("ftp://cdn.example.com/course.json", False),
        ],
    )
    def test_validate(self, url, ok):
        assert ManifestListAdapter().validate(url).ok is ok

    def test_parse_json_lessons(self):
        payload = json.dumps(
            {
                "lessons": [
                    {"title": "Second", "url": "https://cdn.example.com/2", "order": 2},
                    {"url": "https://cdn.example.com/1", "order": 1},
                    {"title": "Broken", "url": "nope"},
                    "not an object",
                ]
            }
        )

        lessons = ManifestListAdapter.parse_json_manifest(payload)

        assert [(lesson.title, lesson.url, lesson.order) for lesson in lessons] == [
            ("Lesson 2", "https://cdn.example.com/1", 1),
            ("Second", "https://cdn.example.com/2", 2),
        ]

    def test_parse_json_urls(self):
        lessons = ManifestListAdapter.parse_json_manifest('{"urls": ["https://a.example.com/x", "bad"]}')
        assert lessons == [LessonRef(title="Lesson 1", url="https://a.example.com/x", order=0)]

    @pytest.mark.parametrize("payload", ["{not json", "[1, 2]"])
    def test_parse_json_rejects(self, payload):
        with pytest.raises(ValidationError):
            ManifestListAdapter.parse_json_manifest(payload)

    def test_parse_text_list(self):
        lessons = ManifestListAdapter.parse_text_list(TEXT_LIST)

        assert [(lesson.title, lesson.url, lesson.order) for lesson in lessons] == [
            ("Lesson 1", "https://cdn.example.com/1", 0),
            ("Second lesson", "https://cdn.example.com/2", 1),
            ("Third", "https://cdn.example.com/3", 2),
            ("Fourth", "https://cdn.example.com/4", 3),
            ("Fifth", "https://cdn.example.com/5", 4),
        ]

    @pytest.mark.asyncio
    async def test_enumerate_and_fetch(self):
        def handler(request):
            if request.url.path == "/course":
                return httpx.Response(200, json={"urls": ["https://cdn.example.com/l1"]})
            return httpx.Response(200, text="<p>Hello &amp; welcome</p><script>track()</script>")

        async with ManifestListAdapter(transport=httpx.MockTransport(handler)) as adapter:
            lessons = await adapter.enumerate_lessons("https://cdn.example.com/course")
            fetched = await adapter.fetch_lesson_content(lessons[0].url)

        assert [lesson.url for lesson in lessons] == ["https://cdn.example.com/l1"]
        assert fetched.text == "Hello & welcome"

    @pytest.mark.asyncio
    async def test_auth_status_is_reported(self):
        async with ManifestListAdapter(transport=site_transport({"/l1": 401})) as adapter:
            with pytest.raises(SourceFetchError) as info:
                await adapter.fetch_lesson_content("https://cdn.example.com/l1")

        assert info.value.is_auth_failure


class TestAdapterRegistry:
    """Source type lookup"""

    def test_default_registry(self):
        registry = build_default_registry()
        assert registry.source_types() == ["generic_list", "yonote"]
        assert isinstance(registry.get("yonote"), CookieSiteAdapter)

    def test_unknown_source(self):
        with pytest.raises(UnsupportedSourceError):
            AdapterRegistry().get("moodle")

    def test_detect(self):
        registry = build_default_registry()
        assert registry.detect("https://yonote.ru/course") == "yonote"
        assert registry.detect("https://cdn.example.com/list.txt") == "generic_list"
        assert registry.detect("https://example.com/page") is None
        assert registry.validate("moodle", "https://x.y").ok is False
