"""Prompt construction for buyer-show compositing.

Turns the free-text fields a user fills in (scene description, product, placement,
style) into one enhanced prompt for the image model. Style and placement are picked
by fixed-priority keyword matching, so the same input always yields the same prompt.

``validate_prompt`` is a conservative keyword gate, not real moderation; callers use
a ``False`` result to stop before spending a provider call.
"""
from __future__ import annotations

import logging
import zlib
from dataclasses import dataclass


logger = logging.getLogger(__name__)

MIN_PROMPT_LENGTH = 10
MAX_PROMPT_LENGTH = 4000
LONG_PROMPT_THRESHOLD = 500

CREATE_DIRECTIVE = "Create a photorealistic image: "
CLOSING_INSTRUCTION = (
    "Please interpret this request as a complete scene description and create a cohesive, "
    "high-quality photographic image that tells the story described above."
)

PHOTOGRAPHY_STYLES: dict[str, dict[str, list[str]]] = {
    "natural": {
        "terms": ["natural lighting", "candid", "authentic", "lifestyle photography"],
        "keywords": ["soft shadows", "warm tones", "realistic proportions"],
    },
    "artistic": {
        "terms": ["artistic composition", "creative angle", "dramatic lighting"],
        "keywords": ["depth of field", "bokeh", "rule of thirds"],
    },
    "commercial": {
        "terms": ["commercial photography", "product showcase", "clean background"],
        "keywords": ["sharp focus", "professional lighting", "high-end quality"],
    },
    "casual": {
        "terms": ["casual lifestyle", "everyday setting", "relaxed atmosphere"],
        "keywords": ["natural poses", "comfortable environment", "informal"],
    },
    "luxury": {
        "terms": ["luxury photography", "premium quality", "elegant setting"],
        "keywords": ["sophisticated lighting", "refined composition", "high-end"],
    },
}

# Checked in order; first family with a hit wins.
STYLE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("luxury", ("luxury", "premium", "elegant", "奢华", "优雅", "高端", "高级", "精致")),
    ("commercial", ("commercial", "professional", "clean", "商业", "专业", "简洁", "干净")),
    ("artistic", ("artistic", "creative", "dramatic", "艺术", "创意", "戏剧")),
    ("casual", ("casual", "relaxed", "everyday", "休闲", "轻松", "日常", "随意")),
)

PLACEMENT_KEYWORDS: dict[str, list[str]] = {
    "foreground": ["prominently displayed", "center focus", "main subject"],
    "background": ["subtly placed", "background element", "environmental context"],
    "handheld": ["naturally held", "in use", "interactive placement"],
    "surface": ["placed on surface", "resting naturally", "stable positioning"],
}

PLACEMENT_TRIGGERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("handheld", ("hold", "hand", "using", "手持", "拿着", "握", "使用")),
    ("surface", ("table", "surface", "desk", "桌", "台面", "放置", "摆放")),
    ("background", ("background", "behind", "distant", "背景", "后面", "远处")),
)

COMPOSITION_RULES = [
    "maintain natural perspective and scale",
    "ensure proper lighting consistency",
    "blend seamlessly with existing environment",
    "preserve original image quality and style",
    "maintain realistic shadows and reflections",
]

PRODUCT_ENHANCEMENTS = ["high-quality", "well-designed", "realistic", "detailed"]

UNSAFE_KEYWORDS = (
    "violence",
    "illegal",
    "harmful",
    "nsfw",
    "adult",
    "weapon",
    "drug",
    "gambling",
    "hate",
)


@dataclass(frozen=True)
class PromptRequest:
    user_description: str
    product_description: str | None = None
    placement_description: str | None = None
    style_description: str | None = None
    has_scene_image: bool = False


@dataclass(frozen=True)
class PromptComponents:
    product_placement: str
    style_guide: str
    photography_terms: str
    composition: str


@dataclass(frozen=True)
class PromptResult:
    enhanced_prompt: str
    original_prompt: str
    components: PromptComponents
    style: str = "natural"
    placement: str = "foreground"


def detect_style(text: str) -> str:
    lowered = (text or "").lower()
    for style, words in STYLE_KEYWORDS:
        if any(w in lowered for w in words):
            return style
    return "natural"


def detect_placement(text: str) -> str:
    lowered = (text or "").lower()
    for placement, words in PLACEMENT_TRIGGERS:
        if any(w in lowered for w in words):
            return placement
    return "foreground"


def _enhance_product(product_description: str | None) -> str:
    if not product_description:
        return "the product"
    # Stable pick so identical input produces identical prompts
    idx = zlib.crc32(product_description.encode("utf-8")) % len(PRODUCT_ENHANCEMENTS)
    return f"{PRODUCT_ENHANCEMENTS[idx]} {product_description}"


def generate_prompt(request: PromptRequest) -> PromptResult:
    style = detect_style(request.style_description or request.user_description)
    placement = detect_placement(request.placement_description or request.user_description)
    style_cfg = PHOTOGRAPHY_STYLES[style]
    placement_cfg = PLACEMENT_KEYWORDS[placement]
    product = _enhance_product(request.product_description)

    components = PromptComponents(
        product_placement=request.placement_description or f"{placement_cfg[0]} in the scene",
        style_guide=f"{', '.join(style_cfg['terms'])}, {', '.join(style_cfg['keywords'])}",
        photography_terms=", ".join(COMPOSITION_RULES[:3]),
        composition="natural integration, professional quality, photorealistic result",
    )

    if request.has_scene_image:
        enhanced = (
            f"Please seamlessly integrate {product} into this scene. {request.user_description}.\n\n"
            f"Style requirements: {components.style_guide}\n"
            f"Placement: {components.product_placement}\n"
            f"Quality standards: {components.photography_terms}, {components.composition}\n\n"
            "The final image should look completely natural and professional, as if the product was "
            "originally part of the scene. Maintain the original lighting, perspective, and atmosphere "
            "while ensuring the product fits perfectly within the environment."
        )
    else:
        enhanced = (
            f"Create a high-quality lifestyle photograph featuring {product}. {request.user_description}\n\n"
            f"Photography style: {components.style_guide}\n"
            f"Composition: {components.composition}\n"
            f"Technical requirements: {components.photography_terms}\n\n"
            "The image should be suitable for social media sharing and showcase the product in an "
            "appealing, realistic way that potential buyers would find engaging and trustworthy."
        )

    logger.debug(
        "generated prompt style=%s placement=%s length=%d scene=%s",
        style,
        placement,
        len(enhanced),
        request.has_scene_image,
    )
    return PromptResult(
        enhanced_prompt=enhanced,
        original_prompt=request.user_description,
        components=components,
        style=style,
        placement=placement,
    )


def validate_prompt(prompt: str) -> bool:
    if len(prompt) < MIN_PROMPT_LENGTH or len(prompt) > MAX_PROMPT_LENGTH:
        return False
    lowered = prompt.lower()
    return not any(k in lowered for k in UNSAFE_KEYWORDS)


def optimize_for_gemini(prompt: str) -> str:
    """Shape a prompt into an explicit creation request.

    Idempotent: an already-optimized prompt is returned unchanged.
    """
    lowered = prompt.lower()
    if "create" not in lowered and "generate" not in lowered:
        prompt = f"{CREATE_DIRECTIVE}{prompt}"
    if len(prompt) > LONG_PROMPT_THRESHOLD and not prompt.endswith(CLOSING_INSTRUCTION):
        return f"{prompt}\n\n{CLOSING_INSTRUCTION}"
    return prompt
