import pytest
from pydantic import ValidationError

from longform.api.linker import derive_anchor_candidates, link_internal_content
from longform.api.models import RelatedItem
from longform.api.related import StaticRelatedContent

TOOLS = ["Kubernetes", "Terraform", "Prometheus", "Grafana", "Ansible"]


def _provider(titles):
    return StaticRelatedContent([{"title": title, "slug": title.lower()} for title in titles])


def test_link_cap_one_link_per_item():
    body = "<p>Kubernetes, Terraform, Prometheus, Grafana and Ansible work together.</p>"
    result = link_internal_content(body, "devops-stack", _provider(TOOLS), related_limit=5)

    assert result.links_added == 3
    assert result.linked_content.count('class="internal-link"') == 3
    assert [insertion.slug for insertion in result.insertions] == ["kubernetes", "terraform", "prometheus"]
    assert 'href="/blog/kubernetes/"' in result.linked_content
    assert result.linked_content.endswith("Grafana and Ansible work together.</p>")


def test_existing_anchor_is_not_rewrapped():
    body = '<p>Read <a href="/docs">Kubernetes</a> docs. Kubernetes rocks.</p>'
    result = link_internal_content(body, "intro", _provider(["Kubernetes"]))

    assert result.links_added == 1
    assert result.linked_content.startswith('<p>Read <a href="/docs">Kubernetes</a> docs. <a href="/blog/kubernetes/"')
    assert result.linked_content.endswith(">Kubernetes</a> rocks.</p>")


def test_phrases_inside_iframes_and_attributes_skipped():
    body = '<iframe src="https://video.example.com" title="Kubernetes">Kubernetes</iframe><p>Nothing here.</p>'
    result = link_internal_content(body, "intro", _provider(["Kubernetes"]))

    assert result.links_added == 0
    assert result.linked_content == body


def test_possessive_match_keeps_matched_text():
    result = link_internal_content("<p>We tuned kubernetes's scheduler.</p>", "intro", _provider(["Kubernetes"]))
    assert ">kubernetes's</a> scheduler" in result.linked_content


def test_provider_failure_leaves_content_unchanged():
    def broken(source, limit):
        raise RuntimeError("wordpress down")

    body = "<p>Kubernetes everywhere.</p>"
    result = link_internal_content(body, "intro", broken)
    assert result.linked_content == body
    assert result.links_added == 0


def test_source_document_is_not_linked_to_itself():
    result = link_internal_content("<p>Kubernetes basics.</p>", "Kubernetes", _provider(["Kubernetes"]))
    assert result.links_added == 0


def test_anchor_candidates_rank_capitalized_and_longer_first():
    item = RelatedItem(title="Email Marketing Automation Tools", slug="email-tools")
    phrases = [candidate.phrase for candidate in derive_anchor_candidates(item)]
    assert phrases == [
        "Marketing Automation",
        "Automation Tools",
        "Email Marketing",
        "Automation",
        "Marketing",
        "Email",
        "Tools",
    ]


def test_anchor_candidates_for_lowercase_title():
    item = RelatedItem(title="how to grow newsletters fast", slug="grow-newsletters")
    candidates = derive_anchor_candidates(item)
    assert [candidate.phrase for candidate in candidates] == ["newsletters"]
    assert candidates[0].capitalized is False


def test_slug_with_markup_is_never_linked():
    provider = StaticRelatedContent([{"title": "Kubernetes", "slug": 'k" onclick="x'}])
    body = "<p>Kubernetes everywhere.</p>"
    result = link_internal_content(body, "intro", provider)

    assert result.links_added == 0
    assert result.linked_content == body
    assert "onclick" not in result.linked_content

    with pytest.raises(ValidationError):
        RelatedItem(title="Kubernetes", slug="k<script>")
