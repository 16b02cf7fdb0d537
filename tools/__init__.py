"""Tools package: Agent SDK client, JSON parsing and text utilities."""

from tools.agent_sdk_client import AgentSDKClient, PURPOSE_EXTRACTION, PURPOSE_WRITING
from tools.json_parsing import parse_json_object
from tools.text_utils import (
    normalize_name,
    to_halfwidth,
    count_chinese_chars,
    estimate_tokens,
    split_terms,
    split_sentences,
    collapse_whitespace,
)

__all__ = [
    "AgentSDKClient",
    "PURPOSE_EXTRACTION",
    "PURPOSE_WRITING",
    "parse_json_object",
    "normalize_name",
    "to_halfwidth",
    "count_chinese_chars",
    "estimate_tokens",
    "split_terms",
    "split_sentences",
    "collapse_whitespace",
]
