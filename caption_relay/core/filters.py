"""Clean-up and sanity checks for model-generated translations.

WHY: LLM translators misbehave in a few recurring ways: they sprinkle
audio timestamps ("00:03, 00:04") into the text, wrap the answer in
quotes, or (most often with very short Japanese inputs) return the
system prompt itself translated into the target language instead of a
translation. Showing any of that on a live caption is worse than
showing nothing new.

HOW: strip_timestamps() and strip_quotes() are plain regex cleaners.
detect_translation_denial() checks an output against known prompt
fragments (English, Japanese, Korean), a length-ratio rule for short
inputs, and an identity rule.

RULES:
- Prompt-leak fragments are matched case-insensitively for English,
  literally for Japanese/Korean
- Length rule: input <= 10 chars, output > 5x input and > 30 chars
- Identity rule: output equals stripped input, case-insensitive
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_TIMESTAMP_RUN = re.compile(r"(?:\d{1,2}:\d{2}(?:,\s*)?)+")
_MULTI_SPACE = re.compile(r"\s{2,}")
_EDGE_QUOTES = re.compile(r"^[\"']|[\"']$")

PROMPT_LEAK_EN = (
    "professional translator",
    "translate the following",
    "return only",
    "no explanations",
    "additional content",
    "target language",
    "source language",
    "original meaning",
)

PROMPT_LEAK_JA = (
    "翻訳する必要があります",
    "元のテキストを返さないでください",
    "ターゲット言語",
    "翻訳されたテキストのみ",
    "説明や追加コンテンツなし",
    "元の意味とニュアンス",
    "プロの翻訳者",
)

PROMPT_LEAK_KO = (
    "전문 번역가",
    "원본 텍스트를 반환하지",
    "대상 언어",
    "번역된 텍스트만",
    "설명이나 추가 콘텐츠 없이",
)


def strip_timestamps(text: str) -> str:
    """Remove runs like "00:03" or "00:03, 00:04" and squeeze spaces."""
    return _MULTI_SPACE.sub(" ", _TIMESTAMP_RUN.sub("", text)).strip()


def strip_quotes(text: str) -> str:
    """Drop one quote character at each edge of a stripped answer."""
    return _EDGE_QUOTES.sub("", text.strip())


@dataclass(frozen=True)
class DenialCheck:
    denied: bool
    reason: str = ""


def detect_translation_denial(source: str, output: str) -> DenialCheck:
    """Decide whether output is a leaked prompt rather than a translation."""
    lowered = output.lower()
    for fragment in PROMPT_LEAK_EN:
        if fragment in lowered:
            return DenialCheck(True, 'EN prompt leak: "{}"'.format(fragment))
    for fragment in PROMPT_LEAK_JA:
        if fragment in output:
            return DenialCheck(True, 'JA prompt leak: "{}"'.format(fragment))
    for fragment in PROMPT_LEAK_KO:
        if fragment in output:
            return DenialCheck(True, 'KO prompt leak: "{}"'.format(fragment))

    if len(source) <= 10 and len(output) > len(source) * 5 and len(output) > 30:
        return DenialCheck(
            True,
            "Suspicious length ratio: input={}, output={}".format(
                len(source), len(output)
            ),
        )

    if lowered == source.strip().lower():
        return DenialCheck(True, "Output identical to input")

    return DenialCheck(False)
