import pytest

from longform.api import related
from longform.api.linker import link_internal_content
from longform.api.related import (
    RelatedContentUnavailable,
    StaticRelatedContent,
    WordPressRelatedContent,
    coerce_related_items,
    rank_related_posts,
)


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self.payload = payload

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []
        self.headers = {}
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, params, timeout))
        return self.responses.pop(0)


def test_rank_related_posts_orders_by_overlap():
    posts = [
        {"title": "Baking Sourdough Bread", "slug": "sourdough"},
        {"title": "Email Tips", "slug": "email-tips"},
        {"title": "Marketing Automation for Startups", "slug": "automation-startups"},
    ]
    ranked = rank_related_posts("Email Marketing Automation Guide", posts)
    assert [item.slug for item in ranked] == ["automation-startups", "email-tips"]


def test_rank_related_posts_respects_limit_and_empty_source():
    posts = [{"title": f"Marketing Automation Part {index}", "slug": f"part-{index}"} for index in range(5)]
    assert len(rank_related_posts("Marketing Automation", posts, limit=2)) == 2
    assert rank_related_posts("a an the", posts) == []


def test_coerce_related_items_skips_invalid_entries():
    items = coerce_related_items([{"title": "Good &amp; Valid", "slug": "/good/"}, {"title": "No slug"}])
    assert [(item.title, item.slug) for item in items] == [("Good & Valid", "good")]


def test_static_provider_honours_limit():
    provider = StaticRelatedContent([{"title": "One", "slug": "one"}, {"title": "Two", "slug": "two"}])
    assert [item.slug for item in provider("source", 1)] == ["one"]


def test_wordpress_provider_fetches_and_ranks_posts():
    session = FakeSession(
        [
            FakeResponse(
                200,
                [
                    {"title": {"rendered": "Email Marketing Automation Guide"}, "slug": "email-marketing-automation-guide"},
                    {"title": {"rendered": "Marketing Automation &amp; You"}, "slug": "automation-and-you"},
                    {"title": {"rendered": "Baking Bread"}, "slug": "baking-bread"},
                ],
            )
        ]
    )
    provider = WordPressRelatedContent("https://blog.example.com/wp-json/", session=session, timeout_seconds=5)

    items = provider("email-marketing-automation-guide", 3)

    assert [(item.title, item.slug) for item in items] == [("Marketing Automation & You", "automation-and-you")]
    url, params, timeout = session.calls[0]
    assert url == "https://blog.example.com/wp-json/wp/v2/posts"
    assert params == {"per_page": 50}
    assert timeout == 5


def test_wordpress_provider_raises_after_retries(monkeypatch):
    delays = []
    monkeypatch.setattr(related.time, "sleep", delays.append)
    session = FakeSession([FakeResponse(500), FakeResponse(503)])
    provider = WordPressRelatedContent("https://blog.example.com", session=session, retries=2)

    with pytest.raises(RelatedContentUnavailable):
        provider.fetch_posts()
    assert len(session.calls) == 2
    assert delays == [0.4]


def test_wordpress_failure_does_not_break_linking(monkeypatch):
    monkeypatch.setattr(related.time, "sleep", lambda seconds: None)
    session = FakeSession([FakeResponse(500), FakeResponse(500)])
    provider = WordPressRelatedContent("https://blog.example.com", session=session, retries=2)

    body = "<p>Marketing Automation matters.</p>"
    result = link_internal_content(body, "email-marketing", provider)
    assert result.linked_content == body
    assert result.links_added == 0


def test_wordpress_provider_closes_its_own_session(monkeypatch):
    session = FakeSession([FakeResponse(200, [{"title": {"rendered": "Kubernetes"}, "slug": "kubernetes"}])])
    monkeypatch.setattr(related.requests, "Session", lambda: session)
    provider = WordPressRelatedContent("https://blog.example.com")

    items = provider.fetch_posts()

    assert [item.slug for item in items] == ["kubernetes"]
    assert session.closed is True
    assert session.headers["Accept"] == "application/json"
