"""冥想引导 Prompt 构建。

根据主题目录、用户参数与语言模板拼装发给大模型的提示词，分为标准模式与
快速模式（短时长）两种变体。纯字符串拼装，无 I/O；相同输入产出相同文本。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from meditation_agent.repositories.topic_catalog import TopicCatalog, TopicDescriptor
from meditation_agent.schemas.meditation import Customization

DEFAULT_TOPIC = "基础放松"
DEFAULT_STYLE = "gentle"
DEFAULT_DURATION = 10
FALLBACK_LANGUAGE = "zh"


@dataclass(frozen=True)
class LanguageTemplate:
    system_role: str
    constraints: tuple[str, ...]
    output_format: tuple[str, ...]
    headings: tuple[str, str, str, str]
    closing: str
    no_special_requirements: str
    list_sep: str


TEMPLATES: dict[str, LanguageTemplate] = {
    "zh": LanguageTemplate(
        system_role="你是一位经验丰富的冥想引导师，擅长用温和、平静的语言引导练习者进入深度放松状态。",
        constraints=(
            "语气温和、节奏缓慢、充满关怀",
            "包含开场引导、主体练习、结束回归三个部分",
            "使用简单易懂的语言，避免专业术语",
            "适当留白，给练习者充分的感受时间",
        ),
        output_format=(
            "1. 开场引导（1-2分钟）：帮助练习者放松身心，进入冥想状态",
            "2. 主体练习（根据主题展开）：核心引导内容",
            "3. 结束回归（1分钟）：温和地引导练习者回到当下",
            '4. 使用"..."表示停顿，给练习者留出感受的时间',
            "5. 每个段落控制在2-3句话，保持节奏舒缓",
        ),
        headings=("【任务要求】", "【引导原则】", "【输出格式】", "【特殊要求】"),
        closing="请生成冥想引导词：",
        no_special_requirements="无特殊要求",
        list_sep="、",
    ),
    "en": LanguageTemplate(
        system_role=(
            "You are an experienced meditation guide, skilled in using gentle and calm language "
            "to guide practitioners into deep relaxation."
        ),
        constraints=(
            "Gentle, slow-paced, caring",
            "Include opening guidance, main practice, and closing return",
            "Use simple, accessible language, avoid jargon",
            "Include appropriate pauses for practitioners to experience",
        ),
        output_format=(
            "1. Opening guidance (1-2 minutes): Help practitioners relax and enter meditation",
            "2. Main practice (based on theme): Core guidance content",
            "3. Closing return (1 minute): Gently guide practitioners back to present",
            '4. Use "..." to indicate pauses for practitioners to experience',
            "5. Keep each paragraph to 2-3 sentences for gentle pacing",
        ),
        headings=("[Task]", "[Guiding principles]", "[Output format]", "[Special requirements]"),
        closing="Please write the meditation guidance:",
        no_special_requirements="No special requirements",
        list_sep=", ",
    ),
}

DURATION_DESCRIPTIONS: dict[str, dict[int, str]] = {
    "zh": {
        5: "简短练习（约5分钟）",
        10: "标准练习（约10分钟）",
        15: "深度练习（约15分钟）",
        20: "完整练习（约20分钟）",
    },
    "en": {
        5: "a short practice (about 5 minutes)",
        10: "a standard practice (about 10 minutes)",
        15: "a deep practice (about 15 minutes)",
        20: "a full practice (about 20 minutes)",
    },
}

# 主题未收录进目录时的兜底要求，按原始主题名匹配。
TOPIC_FALLBACK_REQUIREMENTS: dict[str, dict[str, str]] = {
    "zh": {
        "助眠": "- 使用更加缓慢、轻柔的语调\n- 引导想象舒适、安全的环境\n- 逐步放松身体各个部位",
        "缓解焦虑": "- 强调呼吸的重要性\n- 引导觉察但不评判当下的感受\n- 培养内在的平静与接纳",
        "身体扫描": "- 从头到脚或从脚到头系统引导\n- 每个部位停留适当时间\n- 鼓励觉察而非改变",
        "慈心冥想": "- 从自己开始，逐步扩展到他人\n- 使用温暖、充满爱的语言\n- 培养慈悲与善意",
        "呼吸冥想": "- 详细引导呼吸的观察\n- 可以加入数息练习\n- 强调自然、不强迫",
    },
    "en": {
        "sleep": "- Use slower, gentler tone\n- Guide visualization of comfortable, safe environment\n- Progressive body relaxation",
        "anxiety relief": "- Emphasize importance of breathing\n- Guide awareness without judgment\n- Cultivate inner calm and acceptance",
        "body scan": "- Systematic guidance from head to toe or toe to head\n- Appropriate pause for each body part\n- Encourage awareness rather than change",
        "loving-kindness": "- Start with self, gradually extend to others\n- Use warm, loving language\n- Cultivate compassion and kindness",
        "breath meditation": "- Detailed guidance on breath observation\n- Can include counting breaths\n- Emphasize natural, non-forced breathing",
    },
}

SYSTEM_PROMPTS: dict[str, dict[str, str]] = {
    "zh": {
        "standard": "你是一个专业的冥想引导师，擅长创作温和、平静的冥想引导词。",
        "quick": "你是一个专业的冥想引导师，擅长创作简短有力的快速冥想引导。请确保内容紧凑、直接、有效。",
    },
    "en": {
        "standard": "You are a professional meditation guide who writes gentle, calm guided meditations.",
        "quick": (
            "You are a professional meditation guide who writes short, effective quick meditations. "
            "Keep the content compact, direct and practical."
        ),
    },
}


class PromptBuilder:
    """无状态 Prompt 构建器，持有只读主题目录引用。"""

    def __init__(self, catalog: TopicCatalog) -> None:
        self._catalog = catalog

    @property
    def catalog(self) -> TopicCatalog:
        return self._catalog

    def system_prompt(self, language: str, *, quick: bool = False) -> str:
        prompts = SYSTEM_PROMPTS.get(language) or SYSTEM_PROMPTS[FALLBACK_LANGUAGE]
        return prompts["quick" if quick else "standard"]

    def build_prompt(
        self,
        *,
        topic: str | None = None,
        style: str | None = None,
        duration: int | None = None,
        language: str = "zh",
        customization: Customization | dict[str, Any] | None = None,
    ) -> str:
        topic_text = str(topic or "").strip() or DEFAULT_TOPIC
        descriptor = self._catalog.find(topic_text)
        style, duration = self._apply_topic_defaults(descriptor, style, duration)
        lang = language if language in TEMPLATES else FALLBACK_LANGUAGE
        template = TEMPLATES[lang]
        extras = _normalize_customization(customization)

        task_heading, principle_heading, format_heading, special_heading = template.headings
        sections = [
            template.system_role,
            f"{task_heading}\n{self._build_main_instruction(topic_text, style, duration, lang, descriptor)}",
            f"{principle_heading}\n{self._build_constraints(template, extras, descriptor, lang)}",
            f"{format_heading}\n" + "\n".join(template.output_format),
            f"{special_heading}\n{self._build_special_requirements(topic_text, extras, descriptor, lang)}",
            template.closing,
        ]
        return "\n\n".join(sections).strip()

    def build_quick_prompt(
        self,
        *,
        topic: str | None = None,
        style: str | None = None,
        duration: int | None = None,
        language: str = "zh",
    ) -> str:
        topic_text = str(topic or "").strip() or DEFAULT_TOPIC
        descriptor = self._catalog.find(topic_text)
        style, duration = self._apply_topic_defaults(descriptor, style, duration)
        lang = language if language in TEMPLATES else FALLBACK_LANGUAGE
        topic_name = descriptor.localized_name(lang) if descriptor else topic_text
        style_name = self._catalog.style_name(style, lang)

        if lang == "zh":
            return (
                f"请生成一段简短的{duration}分钟冥想引导。主题：{topic_name}。风格：{style_name}。"
                "要求：语言温柔，节奏紧凑，直接进入主题，避免冗长开场；"
                "不要输出标题、解释或任何前言，只输出可直接朗读的引导词；"
                '用"..."表示短暂停顿，整体控制在一到两个短段落。'
            )
        return (
            f"Write a short {duration}-minute guided meditation. Theme: {topic_name}. Style: {style_name}. "
            "Requirements: gentle language, compact pacing, start the practice immediately without a long opening; "
            "no titles, explanations or preamble, only text that can be read aloud; "
            'use "..." for brief pauses and keep it to one or two short paragraphs.'
        )

    def _apply_topic_defaults(
        self,
        descriptor: TopicDescriptor | None,
        style: str | None,
        duration: int | None,
    ) -> tuple[str, int]:
        resolved_style = style
        resolved_duration = duration
        if descriptor is not None:
            if not resolved_style and descriptor.recommended_styles:
                resolved_style = descriptor.recommended_styles[0]
            if not resolved_duration:
                resolved_duration = descriptor.default_duration
        return resolved_style or DEFAULT_STYLE, resolved_duration or DEFAULT_DURATION

    def _build_main_instruction(
        self,
        topic: str,
        style: str,
        duration: int,
        language: str,
        descriptor: TopicDescriptor | None,
    ) -> str:
        topic_name = descriptor.localized_name(language) if descriptor else topic
        description = descriptor.localized_description(language) if descriptor else ""
        style_name = self._catalog.style_name(style, language)
        duration_desc = describe_duration(duration, language)

        if language == "zh":
            instruction = f"请为「{topic_name}」主题创建一段{style_name}风格的冥想引导词，时长{duration_desc}。"
            return f"{instruction}\n主题说明：{description}" if description else instruction
        instruction = (
            f'Please create a {style_name} style meditation guidance for "{topic_name}", '
            f"duration: {duration_desc}."
        )
        return f"{instruction}\nTheme description: {description}" if description else instruction

    def _build_constraints(
        self,
        template: LanguageTemplate,
        customization: Customization,
        descriptor: TopicDescriptor | None,
        language: str,
    ) -> str:
        lines = [f"- {item}" for item in template.constraints]
        if descriptor is not None:
            audience = descriptor.localized_audience(language)
            benefits = descriptor.localized_benefits(language)
            if audience:
                label = "适合人群" if language == "zh" else "Target audience"
                lines.append(f"- {label}{_colon(language)}{template.list_sep.join(audience)}")
            if benefits:
                label = "练习益处" if language == "zh" else "Benefits"
                lines.append(f"- {label}{_colon(language)}{template.list_sep.join(benefits)}")
        for constraint in customization.additional_constraints:
            text = str(constraint).strip()
            if text:
                lines.append(f"- {text}")
        return "\n".join(lines)

    def _build_special_requirements(
        self,
        topic: str,
        customization: Customization,
        descriptor: TopicDescriptor | None,
        language: str,
    ) -> str:
        template = TEMPLATES[language]
        requirements: list[str] = []
        zh = language == "zh"

        if descriptor is not None:
            if descriptor.techniques:
                label = "建议使用技巧" if zh else "Suggested techniques"
                requirements.append(f"{label}{_colon(language)}{template.list_sep.join(descriptor.techniques)}")
            if descriptor.best_time:
                label = "最佳练习时间" if zh else "Best practice time"
                requirements.append(f"{label}{_colon(language)}{template.list_sep.join(descriptor.best_time)}")
            if descriptor.progression:
                label = "引导顺序" if zh else "Guidance sequence"
                requirements.append(f"{label}{_colon(language)}{' → '.join(descriptor.progression)}")
        else:
            fallback = TOPIC_FALLBACK_REQUIREMENTS.get(language, {}).get(topic)
            if fallback:
                requirements.append(fallback)

        requirements.extend(
            str(item).strip() for item in customization.special_requirements if str(item).strip()
        )

        if not requirements:
            return template.no_special_requirements
        return "\n".join(requirements)


def describe_duration(duration: int, language: str) -> str:
    lang = language if language in DURATION_DESCRIPTIONS else FALLBACK_LANGUAGE
    named = DURATION_DESCRIPTIONS[lang].get(duration)
    if named:
        return named
    return f"约{duration}分钟" if lang == "zh" else f"about {duration} minutes"


def _colon(language: str) -> str:
    return "：" if language == "zh" else ": "


def _normalize_customization(value: Customization | dict[str, Any] | None) -> Customization:
    if isinstance(value, Customization):
        return value
    if isinstance(value, dict):
        return Customization.model_validate(value)
    return Customization()
