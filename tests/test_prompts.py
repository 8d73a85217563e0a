import pytest

from modules.generation.prompts import (
    CLOSING_INSTRUCTION,
    CREATE_DIRECTIVE,
    MAX_PROMPT_LENGTH,
    MIN_PROMPT_LENGTH,
    PromptRequest,
    detect_placement,
    detect_style,
    generate_prompt,
    optimize_for_gemini,
    validate_prompt,
)


@pytest.mark.parametrize("length", [0, 1, MIN_PROMPT_LENGTH - 1, MAX_PROMPT_LENGTH + 1, 5000])
def test_validate_prompt_rejects_out_of_bounds_lengths(length: int) -> None:
    assert validate_prompt("x" * length) is False


@pytest.mark.parametrize("length", [MIN_PROMPT_LENGTH, 200, MAX_PROMPT_LENGTH])
def test_validate_prompt_accepts_clean_prompts_within_bounds(length: int) -> None:
    assert validate_prompt("x" * length) is True


def test_validate_prompt_rejects_denylisted_keywords_case_insensitive() -> None:
    assert validate_prompt("A cozy living room with a WEAPON on the shelf") is False
    assert validate_prompt("A cozy living room with a lamp on the shelf") is True


def test_detect_style_priority_and_default() -> None:
    assert detect_style("a luxury yet commercial product shot") == "luxury"
    assert detect_style("commercial and artistic") == "commercial"
    assert detect_style("artistic but casual") == "artistic"
    assert detect_style("just a sunny garden") == "natural"
    assert detect_style("") == "natural"


def test_detect_style_chinese_luxury_keyword() -> None:
    assert detect_style("我想要奢华优雅的风格") == "luxury"


def test_detect_placement() -> None:
    assert detect_placement("a woman holding it in her hand") == "handheld"
    assert detect_placement("放在桌子上") == "surface"
    assert detect_placement("far in the background") == "background"
    assert detect_placement("nothing specific") == "foreground"


def test_generate_prompt_with_scene_uses_integration_template() -> None:
    res = generate_prompt(
        PromptRequest(
            user_description="A warm living room in the evening",
            product_description="ceramic mug",
            style_description="elegant and premium",
            has_scene_image=True,
        )
    )
    assert res.style == "luxury"
    assert res.original_prompt == "A warm living room in the evening"
    assert res.enhanced_prompt.startswith("Please seamlessly integrate")
    assert "ceramic mug" in res.enhanced_prompt
    assert "luxury photography" in res.components.style_guide


def test_generate_prompt_without_scene_uses_lifestyle_template() -> None:
    res = generate_prompt(PromptRequest(user_description="someone relaxed on a sofa, a casual weekend"))
    assert res.enhanced_prompt.startswith("Create a high-quality lifestyle photograph featuring the product.")
    assert res.style == "casual"
    assert res.placement == "foreground"


def test_generate_prompt_is_deterministic() -> None:
    req = PromptRequest(user_description="kitchen counter at dawn", product_description="coffee grinder")
    assert generate_prompt(req) == generate_prompt(req)


def test_placement_description_overrides_detected_text() -> None:
    res = generate_prompt(
        PromptRequest(user_description="a quiet desk", placement_description="held in a hand", has_scene_image=True)
    )
    assert res.placement == "handheld"
    assert res.components.product_placement == "held in a hand"


def test_optimize_long_prompt_appends_closing_instruction() -> None:
    prompt = "scene " * 100  # 600 chars
    assert len(prompt) == 600
    out = optimize_for_gemini(prompt)
    assert len(out) > 600
    assert out.endswith(CLOSING_INSTRUCTION)
    assert out.startswith(CREATE_DIRECTIVE)


def test_optimize_short_prompt_only_adds_directive() -> None:
    assert optimize_for_gemini("a red bicycle") == f"{CREATE_DIRECTIVE}a red bicycle"
    assert optimize_for_gemini("Generate a red bicycle") == "Generate a red bicycle"


def test_optimize_is_idempotent() -> None:
    once = optimize_for_gemini("scene " * 100)
    assert optimize_for_gemini(once) == once
