"""
Prompt and script builders for the four content types.

Product analysis is keyword based and needs no external call. Every builder
is language aware (ko, en, ja).
"""

import math
from dataclasses import dataclass, field

from contentforge.schemas import GenerationOptions, ImageStyle, Language


PLACEHOLDER_IMAGE_URL = "/static/placeholder-image.jpg"
PLACEHOLDER_VIDEO_URL = "/static/placeholder-video.mp4"
PLACEHOLDER_AUDIO_URL = "/static/placeholder-audio.mp3"


@dataclass
class ProductAnalysis:
    keywords: list[str] = field(default_factory=list)
    category: str = "general"
    target_audience: str = ""
    benefits: list[str] = field(default_factory=list)
    features: list[str] = field(default_factory=list)


_KEYWORD_MATCHES: list[tuple[tuple[str, ...], str]] = [
    (("스마트", "smart"), "smart"),
    (("건강", "health", "healthcare"), "health"),
    (("혁신", "innovation", "innovative"), "innovation"),
    (("고품질", "premium", "high-quality"), "premium"),
    (("편리", "convenient", "easy"), "convenience"),
    (("효율", "efficient", "productivity"), "efficiency"),
    (("안전", "safe", "security"), "safety"),
    (("디자인", "design", "beautiful"), "design"),
    (("기술", "technology", "tech"), "technology"),
    (("성능", "performance", "powerful"), "performance"),
    (("무선", "wireless"), "wireless"),
    (("소음", "noise"), "noise-cancellation"),
]

_CATEGORY_MATCHES: list[tuple[tuple[str, ...], str]] = [
    (("워치", "웨어러블", "watch", "wearable", "earbuds", "headphone"), "wearable"),
    (("앱", "소프트웨어", "app", "software"), "software"),
    (("화장품", "뷰티", "cosmetic", "beauty"), "beauty"),
    (("의료", "헬스케어", "medical", "healthcare"), "healthcare"),
]

_AUDIENCE = {
    Language.KO: "20-40대 활동적인 현대인",
    Language.EN: "active professionals in their 20s to 40s",
    Language.JA: "20〜40代のアクティブな現代人",
}

_BENEFITS = {
    Language.KO: ["편의성 향상", "시간 절약", "효율성 증대", "품질 개선"],
    Language.EN: ["more convenience", "time savings", "higher efficiency", "better quality"],
    Language.JA: ["利便性の向上", "時間の節約", "効率の向上", "品質の改善"],
}

_FEATURES = {
    Language.KO: ["첨단 기술", "사용자 친화적 디자인", "높은 신뢰성", "지속적 업데이트"],
    Language.EN: ["cutting-edge technology", "user-friendly design", "high reliability", "continuous updates"],
    Language.JA: ["最先端技術", "ユーザーフレンドリーなデザイン", "高い信頼性", "継続的なアップデート"],
}

IMAGE_STYLE_DESCRIPTIONS = {
    ImageStyle.MODERN: "sleek, contemporary, minimalist design with clean lines",
    ImageStyle.MINIMAL: "ultra-minimalist, white background, simple geometric shapes",
    ImageStyle.VIBRANT: "bright colors, dynamic composition, energetic feel",
    ImageStyle.PROFESSIONAL: "corporate style, sophisticated color palette, business-oriented",
}


def analyze_product(description: str, language: Language = Language.KO) -> ProductAnalysis:
    """Extract keywords and a coarse category from a product description."""
    lowered = description.lower()

    keywords = [
        keyword
        for words, keyword in _KEYWORD_MATCHES
        if any(word in lowered for word in words)
    ]

    category = "general"
    for words, name in _CATEGORY_MATCHES:
        if any(word in lowered for word in words):
            category = name
            break

    return ProductAnalysis(
        keywords=keywords,
        category=category,
        target_audience=_AUDIENCE[language],
        benefits=list(_BENEFITS[language]),
        features=list(_FEATURES[language]),
    )


def blog_title(description: str, analysis: ProductAnalysis, language: Language) -> str:
    lead = " ".join(analysis.keywords[:2]) or description.split(".")[0][:60]
    if language == Language.KO:
        return f"{lead} - 혁신적인 솔루션으로 일상을 바꾸다"
    if language == Language.JA:
        return f"{lead} - 日常を変える革新的なソリューション"
    return f"{lead} - Revolutionary Solution Changing Daily Life"


def blog_body(description: str, analysis: ProductAnalysis, language: Language) -> str:
    title = blog_title(description, analysis, language)
    features = "\n".join(f"- {item}" for item in analysis.features)
    benefits = "\n".join(f"- {item}" for item in analysis.benefits)
    if language == Language.KO:
        sections = [
            ("개요", f"{description}은 현대인의 라이프스타일을 혁신적으로 변화시키는 제품입니다."),
            ("주요 특징", features),
            ("핵심 혜택", benefits),
            ("타겟 고객", f"이 제품은 {analysis.target_audience}에게 특히 유용합니다."),
        ]
    elif language == Language.JA:
        sections = [
            ("概要", f"{description}は、現代人のライフスタイルを革新的に変える製品です。"),
            ("主要特徴", features),
            ("コア・ベネフィット", benefits),
            ("ターゲット顧客", f"この製品は{analysis.target_audience}に特に有用です。"),
        ]
    else:
        sections = [
            ("Overview", f"{description} is a product that transforms modern lifestyles."),
            ("Key Features", features),
            ("Core Benefits", benefits),
            ("Target Audience", f"This product is particularly useful for {analysis.target_audience}."),
        ]
    parts = [f"# {title}"]
    for heading, text in sections:
        parts.append(f"## {heading}\n{text}")
    return "\n\n".join(parts)


def blog_prompt(description: str, options: GenerationOptions) -> str:
    """Instruction for text backends. The reply must be a JSON object."""
    return (
        f"Write a marketing blog article in language '{options.language.value}' "
        f"for this product: {description}\n"
        "Reply with a JSON object with keys: title (string), body (markdown string), "
        "tags (list of strings), seo_keywords (list of strings)."
    )


def image_prompt(description: str, analysis: ProductAnalysis, options: GenerationOptions) -> str:
    style = IMAGE_STYLE_DESCRIPTIONS[options.image_style]
    keywords = ", ".join(analysis.keywords) or "product showcase"
    return (
        f"Create a {style} social media graphic for {description}. "
        f"Include key elements: {keywords}. "
        f"Style: {options.image_style.value}, commercial photography, high quality, "
        "1080x1080 square format, product showcase"
    )


def video_prompt(description: str, options: GenerationOptions) -> str:
    duration = options.video_duration_seconds
    if options.language == Language.KO:
        return (
            f"{description}를 소개하는 {duration}초 프로모션 비디오. "
            "현대적이고 전문적인 스타일, 제품의 핵심 기능과 혜택을 강조"
        )
    if options.language == Language.JA:
        return (
            f"{description}を紹介する{duration}秒のプロモーションビデオ。"
            "モダンでプロフェッショナルなスタイル、主要機能とメリットを強調"
        )
    return (
        f"{duration}-second promotional video introducing {description}. "
        "Modern and professional style, highlighting key features and benefits"
    )


def podcast_script(description: str, analysis: ProductAnalysis, language: Language) -> str:
    features = analysis.features[:2]
    benefits = analysis.benefits[:2]
    keywords = analysis.keywords[:3] or [analysis.category]
    if language == Language.KO:
        return (
            f"안녕하세요, 오늘은 혁신적인 제품 {description}에 대해 소개해드리겠습니다. "
            f"이 제품의 가장 큰 특징은 {'과 '.join(features)}입니다. "
            f"특히 {'과 '.join(benefits)}을 통해 사용자의 일상을 크게 개선할 수 있습니다. "
            f"핵심 키워드는 {', '.join(keywords)}입니다. 감사합니다."
        )
    if language == Language.JA:
        return (
            f"こんにちは、今日は革新的な製品{description}についてご紹介します。"
            f"この製品の最大の特徴は{'と'.join(features)}です。"
            f"特に{'と'.join(benefits)}を通じて、ユーザーの日常を大幅に改善できます。"
            f"核心キーワードは{'、'.join(keywords)}です。ありがとうございました。"
        )
    return (
        f"Hello, today I'll introduce you to the innovative product {description}. "
        f"Its biggest features are {' and '.join(features)}. "
        f"Through {' and '.join(benefits)}, it can greatly improve daily life. "
        f"Key themes: {', '.join(keywords)}. Thank you for listening."
    )


def voice_requirements(options: GenerationOptions) -> str:
    return (
        f"{options.voice_style.value} voice in {options.language.value} language, "
        "clear pronunciation, moderate pace"
    )


def reading_time_minutes(body: str) -> int:
    return max(1, math.ceil(len(body) / 200))


def spoken_duration_seconds(script: str) -> int:
    return max(1, math.ceil(len(script) / 10))
