from __future__ import annotations

from datetime import date
from typing import List, Optional

from .models import (
    PHASE_BODY_1,
    PHASE_BODY_2,
    PHASE_FINAL,
    PHASE_OUTLINE,
    GenerationRequest,
    PhaseSpec,
    VideoRef,
)
from .settings import BODY_TOKEN_BUDGET, FINAL_TOKEN_BUDGET, OUTLINE_TOKEN_BUDGET

BODY_SECTION_RANGES = {
    PHASE_BODY_1: ("1-4", "introduction and first 4 sections"),
    PHASE_BODY_2: ("5-8", "sections 5-8"),
}

EMBED_TEMPLATE = (
    '<iframe width="560" height="315" src="https://www.youtube.com/embed/VIDEO_ID" '
    'frameborder="0" allow="accelerometer; autoplay; encrypted-media; gyroscope; '
    'picture-in-picture" allowfullscreen></iframe>'
)

NO_LABEL_RULES = (
    "- Do not write labels such as \"Title:\", \"Meta Description:\", \"Introduction:\" or \"Section 1:\".\n"
    "- Start directly with ## headings or paragraph text.\n"
    "- Do not include instruction markers like \"[Write...]\" or \"[Insert...]\".\n"
    "- Do not include TODO, NOTE, PLACEHOLDER or similar meta-comments.\n"
    "- Every table must be complete; never leave a header row without data rows.\n"
)

TABLE_RULES = (
    "- Tables must be HTML (<table>, <thead>, <tbody>, <tr>, <th>, <td>). "
    "Never use Markdown pipe tables.\n"
)


def _current_year() -> int:
    return date.today().year


def _image_block(image_urls: List[str], *, final: bool) -> str:
    if not image_urls:
        return ""
    listing = "\n".join(f"{index}. {url}" for index, url in enumerate(image_urls, start=1))
    if final:
        usage = "Use every image not already placed in earlier parts."
    else:
        usage = "Distribute them evenly; do not cluster them in one section."
    return (
        "AVAILABLE IMAGES:\n"
        f"{listing}\n"
        "- Embed images at relevant points using: ![descriptive alt text](URL)\n"
        f"- {usage}\n"
    )


def _video_block(videos: List[VideoRef]) -> str:
    if not videos:
        return ""
    listing = "\n".join(
        f"{index}. {video.title or 'Untitled'} - Video ID: {video.id}"
        for index, video in enumerate(videos, start=1)
    )
    return (
        "AVAILABLE YOUTUBE VIDEOS (embed where relevant):\n"
        f"{listing}\n"
        f"- Embed with: {EMBED_TEMPLATE}\n"
    )


def outline_prompt(request: GenerationRequest) -> str:
    year = _current_year()
    return (
        f"You are outlining a comprehensive long-form article about: \"{request.topic}\"\n\n"
        f"User requirements: {request.instructions or 'none'}\n\n"
        "Produce a detailed outline with:\n\n"
        "1. A benefit-driven title of 55-65 characters that includes the topic naturally. "
        f"When a year is referenced, use {year}, never an earlier year. "
        "Write the title text only, without a \"Title:\" label.\n"
        "2. A 150-160 character meta description, without a \"Meta Description:\" label.\n"
        "3. Introduction structure: hook, why the topic matters, what readers will learn.\n"
        "4. Main content of at least 10 H2 sections. For each H2 list 2-4 H3 subsections, "
        "mark where HTML comparison tables belong (3-4 in total) and where images or videos fit.\n"
        "5. An FAQ section with 8-10 specific questions mixing basic and advanced topics.\n"
        "6. A conclusion with 4-5 key takeaways and a closing subsection "
        f"\"Partner with {request.business_name} for Success\" tied to the article's topics.\n\n"
        "FORMAT: Markdown with ## for H2 and ### for H3. Use real descriptive titles, not placeholders."
    )


def sections_prompt(
    request: GenerationRequest,
    outline: str,
    section_range: str,
    description: str,
) -> str:
    return (
        f"You are writing the {description} of a comprehensive pillar article about: \"{request.topic}\"\n\n"
        f"User requirements: {request.instructions or 'none'}\n\n"
        "Article outline to follow:\n"
        f"{outline}\n\n"
        f"{_image_block(request.image_urls, final=False)}\n"
        f"{_video_block(request.videos)}\n"
        f"Write sections {section_range} of the outline. For each H2 section:\n"
        "- ## H2 heading from the outline, then a 70-100 word opening paragraph.\n"
        "- 4-5 ### H3 subsections of 100-130 words, each opening with a **bold summary sentence**.\n"
        "- Concrete examples with numbers, tool names and metrics.\n"
        "- Pro tips as blockquotes: > **Pro Tip:** ...\n"
        "- A comparison table where the outline calls for one.\n\n"
        "FORMATTING:\n"
        "- Bold key terms on first mention; bullet lists for 3+ items.\n"
        f"{TABLE_RULES}"
        "- Paragraphs of 3-4 sentences, second person, conversational but authoritative.\n"
        f"- Do not mention {request.business_name} in these sections.\n\n"
        "RULES:\n"
        f"{NO_LABEL_RULES}"
        "- Write every H2 and H3 in the range; stay within 1,200-1,400 words."
    )


def final_sections_prompt(request: GenerationRequest, outline: str) -> str:
    business = request.business_name
    if request.website_url:
        call_to_action = f"Visit {request.website_url}"
    else:
        call_to_action = f"Contact {business}"
    return (
        f"You are writing the final part of a comprehensive pillar article about: \"{request.topic}\"\n\n"
        f"User requirements: {request.instructions or 'none'}\n\n"
        "Article outline to follow:\n"
        f"{outline}\n\n"
        f"{_image_block(request.image_urls, final=True)}\n"
        f"{_video_block(request.videos)}\n"
        "PART 1: any remaining H2 sections of the outline, in the same structure as earlier sections.\n\n"
        "PART 2: ## FAQ with 10-12 questions. Format each as:\n"
        "**Q: How do [specific action] for [specific outcome]?**\n"
        "followed by a direct 50-70 word answer.\n\n"
        "PART 3: ## Conclusion (350-450 words): recap, 4 bulleted takeaways, future outlook, then\n"
        f"### Partner with {business} for Success\n"
        "A 120-150 word closing that names 2-3 specific challenges from this article, explains what "
        f"{business} does about them, and ends with a call to action such as \"{call_to_action} to ...\".\n\n"
        "FORMATTING:\n"
        f"{TABLE_RULES}"
        "- Paragraphs of 3-4 sentences, second person.\n"
        f"- {business} appears only in the closing subsection of the conclusion, "
        "never in the sections or the FAQ.\n\n"
        "RULES:\n"
        f"{NO_LABEL_RULES}"
        "- No \"SEO Suggestions\", \"Image suggestions\" or internal linking suggestions.\n"
        "- Stay within 1,200-1,400 words."
    )


def build_phase_spec(phase: str, request: GenerationRequest, outline: Optional[str] = None) -> PhaseSpec:
    if phase == PHASE_OUTLINE:
        return PhaseSpec(name=phase, prompt=outline_prompt(request), token_budget=OUTLINE_TOKEN_BUDGET)
    if outline is None:
        raise ValueError(f"phase {phase} requires the outline")
    if phase in BODY_SECTION_RANGES:
        section_range, description = BODY_SECTION_RANGES[phase]
        return PhaseSpec(
            name=phase,
            prompt=sections_prompt(request, outline, section_range, description),
            token_budget=BODY_TOKEN_BUDGET,
        )
    if phase == PHASE_FINAL:
        return PhaseSpec(name=phase, prompt=final_sections_prompt(request, outline), token_budget=FINAL_TOKEN_BUDGET)
    raise ValueError(f"unknown phase: {phase}")
