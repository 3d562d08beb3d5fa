from __future__ import annotations

from meditation_agent.repositories.topic_catalog import get_topic_catalog, parse_topic_catalog
from meditation_agent.services.meditation.prompt_builder import PromptBuilder, describe_duration


def _builder() -> PromptBuilder:
    return PromptBuilder(get_topic_catalog())


def test_build_prompt_is_deterministic() -> None:
    builder = _builder()
    kwargs = {"topic": "sleep", "style": "gentle", "duration": 10, "language": "zh"}
    assert builder.build_prompt(**kwargs) == builder.build_prompt(**kwargs)


def test_build_prompt_zh_contains_sections_and_catalog_details() -> None:
    prompt = _builder().build_prompt(topic="助眠", style="gentle", duration=10, language="zh")
    for heading in ("【任务要求】", "【引导原则】", "【输出格式】", "【特殊要求】"):
        assert heading in prompt
    assert "「助眠」" in prompt
    assert "温柔舒缓" in prompt
    assert "标准练习（约10分钟）" in prompt
    assert "适合人群：失眠人群、睡前思绪纷乱者" in prompt
    assert "躺好并闭眼 → 放慢呼吸" in prompt
    assert prompt.endswith("请生成冥想引导词：")


def test_build_prompt_uses_topic_defaults_when_style_and_duration_missing() -> None:
    prompt = _builder().build_prompt(topic="sleep", language="zh")
    assert "温柔舒缓" in prompt
    assert "完整练习（约20分钟）" in prompt


def test_build_prompt_en_uses_en_template() -> None:
    prompt = _builder().build_prompt(topic="sleep", style="nature", duration=12, language="en")
    assert "[Task]" in prompt
    assert '"sleep"' in prompt
    assert "nature-imagery" in prompt
    assert "about 12 minutes" in prompt
    assert "Benefits: falls asleep faster" in prompt
    assert prompt.endswith("Please write the meditation guidance:")


def test_unknown_language_falls_back_to_zh_template() -> None:
    prompt = _builder().build_prompt(topic="sleep", style="gentle", duration=10, language="fr")
    assert "【任务要求】" in prompt


def test_unknown_topic_renders_literally_with_sentinel() -> None:
    prompt = _builder().build_prompt(topic="月光散步", style="gentle", duration=10, language="zh")
    assert "「月光散步」" in prompt
    assert "【特殊要求】\n无特殊要求" in prompt


def test_hardcoded_requirements_only_apply_to_uncatalogued_topics() -> None:
    empty = PromptBuilder(parse_topic_catalog({}))
    prompt = empty.build_prompt(topic="breath meditation", style="zen", duration=10, language="en")
    assert "Detailed guidance on breath observation" in prompt
    assert "\"breath meditation\"" in prompt
    catalogued = _builder().build_prompt(topic="助眠", style="gentle", duration=10, language="zh")
    assert "使用更加缓慢、轻柔的语调" not in catalogued


def test_customization_is_appended() -> None:
    prompt = _builder().build_prompt(
        topic="月光散步",
        style="gentle",
        duration=10,
        language="zh",
        customization={
            "additionalConstraints": ["避免提及工作"],
            "specialRequirements": ["结尾加入三次深呼吸"],
        },
    )
    assert "- 避免提及工作" in prompt
    assert "结尾加入三次深呼吸" in prompt
    assert "无特殊要求" not in prompt


def test_build_quick_prompt_is_single_paragraph() -> None:
    prompt = _builder().build_quick_prompt(topic="quick-relax", style="gentle", duration=2, language="zh")
    assert "\n" not in prompt
    assert "2分钟" in prompt
    assert "快速放松" in prompt

    en = _builder().build_quick_prompt(topic="quick-relax", duration=1, language="en")
    assert en.startswith("Write a short 1-minute guided meditation.")


def test_system_prompt_varies_by_mode() -> None:
    builder = _builder()
    assert builder.system_prompt("zh") != builder.system_prompt("zh", quick=True)
    assert builder.system_prompt("fr") == builder.system_prompt("zh")


def test_describe_duration() -> None:
    assert describe_duration(5, "zh") == "简短练习（约5分钟）"
    assert describe_duration(7, "zh") == "约7分钟"
    assert describe_duration(7, "en") == "about 7 minutes"
