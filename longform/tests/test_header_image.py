from longform.api.header_image import (
    DEFAULT_ALT_TEXT,
    HEADER_IMAGE_CLASS,
    extract_header_image_candidate,
    insert_header_image,
    sanitize_image_url,
)


def test_header_image_inserted_once_after_h1():
    html = "<h1>Article Title</h1>\n<p>Intro</p>"
    first = insert_header_image(html, "https://img.example.com/hero.jpg", "Article Title")
    second = insert_header_image(first, "https://img.example.com/other.jpg", "Article Title")

    assert first.startswith("<h1>Article Title</h1>\n<figure")
    assert first.count(HEADER_IMAGE_CLASS) == 1
    assert second == first
    assert "other.jpg" not in second


def test_header_image_prepended_without_h1():
    html = insert_header_image("<p>Intro</p>", "https://img.example.com/hero.jpg")
    assert html.startswith(f'<figure class="{HEADER_IMAGE_CLASS}"')
    assert f'alt="{DEFAULT_ALT_TEXT}"' in html
    assert html.endswith("<p>Intro</p>")


def test_header_image_falls_back_to_first_body_image():
    html = '<p>Intro</p><p><img src="https://img.example.com/body.jpg" alt="x"></p>'
    assert insert_header_image(html, None) == html

    with_fallback = insert_header_image(html, None, fallback_to_existing=True)
    assert with_fallback.startswith(f'<figure class="{HEADER_IMAGE_CLASS}"')
    assert f'<img src="https://img.example.com/body.jpg" alt="{DEFAULT_ALT_TEXT}"' in with_fallback
    assert with_fallback.count(HEADER_IMAGE_CLASS) == 1


def test_header_image_rejects_non_http_urls():
    assert sanitize_image_url("javascript:alert(1)") is None
    assert sanitize_image_url("  https://img.example.com/a.jpg ") == "https://img.example.com/a.jpg"
    assert insert_header_image("<p>x</p>", "data:image/png;base64,AAA") == "<p>x</p>"


def test_header_image_alt_text_escaped():
    html = insert_header_image("<p>x</p>", "https://img.example.com/a.jpg", 'Tips & "Tricks"')
    assert 'alt="Tips &amp; &quot;Tricks&quot;"' in html


def test_extract_header_image_candidate():
    content, url = extract_header_image_candidate("Intro\n![hero](https://img.example.com/h.jpg)\nMore")
    assert url == "https://img.example.com/h.jpg"
    assert content == "Intro\n\nMore"

    content, url = extract_header_image_candidate("No images here")
    assert url is None
    assert content == "No images here"


def test_markdown_image_title_is_not_part_of_url():
    content, url = extract_header_image_candidate('Intro\n![a](https://x.com/a.jpg "Cap")\nMore')

    assert url == "https://x.com/a.jpg"
    assert content == "Intro\n\nMore"
