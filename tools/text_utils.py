"""Chinese text utilities: name normalization, counting, term splitting."""

import re

# Separators used to cut free text into candidate terms
_TERM_SPLIT_RE = re.compile(r"[，。、 ；：！？,.;:!?\n\t]")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[。！？!?…])|\n+")
_WHITESPACE_RE = re.compile(r"\s+")

_FULLWIDTH_START = 0xFF01
_FULLWIDTH_END = 0xFF5E
_FULLWIDTH_OFFSET = 0xFEE0
_IDEOGRAPHIC_SPACE = 0x3000


def to_halfwidth(text: str) -> str:
    """Map full-width ASCII variants (and the ideographic space) to half-width."""
    chars = []
    for ch in text:
        code = ord(ch)
        if code == _IDEOGRAPHIC_SPACE:
            chars.append(" ")
        elif _FULLWIDTH_START <= code <= _FULLWIDTH_END:
            chars.append(chr(code - _FULLWIDTH_OFFSET))
        else:
            chars.append(ch)
    return "".join(chars)


def normalize_name(name: str) -> str:
    """Canonical form of a character or entity name used as the store key."""
    if not name:
        return ""
    return to_halfwidth(name).strip()


def count_chinese_chars(text: str) -> int:
    """Count Chinese characters (CJK Unified Ideographs) in text.

    Only counts actual Chinese characters, excluding punctuation, spaces, and Latin characters.
    """
    return len(re.findall(r"[\u4e00-\u9fff\u3400-\u4dbf]", text))


def estimate_tokens(char_count: int, tokens_per_char: float = 1.5) -> int:
    """Rough token cost of a prompt; CJK text runs well above one token per character."""
    return int(round(char_count * tokens_per_char))


def split_terms(text: str, min_length: int = 2) -> list[str]:
    """Cut text at punctuation/whitespace into terms of at least `min_length` characters."""
    if not text:
        return []
    return [t.strip() for t in _TERM_SPLIT_RE.split(text) if len(t.strip()) >= min_length]


def split_sentences(text: str) -> list[str]:
    """Split into sentences at Chinese/Latin terminal punctuation and line breaks."""
    if not text:
        return []
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s and s.strip()]


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()
