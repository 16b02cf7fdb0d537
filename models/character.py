"""Character profiles and the lightweight cameo table."""

from dataclasses import dataclass, field
from typing import Optional

from models.enums import DEFAULT_STATUS, Lifecycle, RoleTag, TERMINAL_STATUSES

# Placeholder text written when the extractor leaves an enrichment field out.
# Any of these counts as "missing" when a later chapter offers a real value.
PLACEHOLDER_CORE_TRAIT = "待补充"
PLACEHOLDER_SPEECH_STYLE = "待观察"
PLACEHOLDER_DESIRE = "未知"
PLACEHOLDER_HOOK_SUFFIX = "（待描述）"
PLACEHOLDER_LINKS = "关系待明确"
PLACEHOLDER_TRIGGER = "无特定触发"

PLACEHOLDER_VALUES = frozenset({
    PLACEHOLDER_CORE_TRAIT,
    PLACEHOLDER_SPEECH_STYLE,
    PLACEHOLDER_DESIRE,
    PLACEHOLDER_LINKS,
    PLACEHOLDER_TRIGGER,
    "无需触发",
})

ENRICHMENT_FIELDS = (
    "core_trait",
    "speech_style",
    "desire",
    "hook_line",
    "links_to_protagonist",
    "trigger_conditions",
)


def is_placeholder(value: Optional[str]) -> bool:
    """True when an enrichment value carries no real information yet."""
    if value is None:
        return True
    text = value.strip()
    return not text or text in PLACEHOLDER_VALUES or text.endswith(PLACEHOLDER_HOOK_SUFFIX)


def derive_lifecycle(role_tag: RoleTag, return_probability: Optional[float]) -> Lifecycle:
    if role_tag.is_core:
        return Lifecycle.CORE
    if role_tag == RoleTag.MAJOR or (return_probability is not None and return_probability >= 0.7):
        return Lifecycle.ARC_SUPPORT
    if role_tag == RoleTag.SUPPORT or (return_probability is not None and return_probability >= 0.3):
        return Lifecycle.TEMP_SUPPORT
    return Lifecycle.CAMEO


@dataclass
class CharacterProfile:
    """A fully tracked character in one manuscript."""
    name: str
    role_tag: RoleTag = RoleTag.SUPPORT
    status: str = DEFAULT_STATUS
    status_change_chapter: Optional[int] = None
    first_appearance: Optional[int] = None
    last_appearance: Optional[int] = None
    appearance_count: int = 0
    influence_score: Optional[float] = None
    screen_time: Optional[float] = None
    return_probability: Optional[float] = None
    core_trait: str = PLACEHOLDER_CORE_TRAIT
    speech_style: str = PLACEHOLDER_SPEECH_STYLE
    desire: str = PLACEHOLDER_DESIRE
    hook_line: str = ""
    links_to_protagonist: str = PLACEHOLDER_LINKS
    trigger_conditions: str = PLACEHOLDER_TRIGGER

    def __post_init__(self):
        if not self.hook_line:
            self.hook_line = f"{self.name}{PLACEHOLDER_HOOK_SUFFIX}"

    @property
    def lifecycle(self) -> Lifecycle:
        return derive_lifecycle(self.role_tag, self.return_probability)

    @property
    def is_terminated(self) -> bool:
        return self.status.strip().upper() in TERMINAL_STATUSES

    @property
    def importance(self) -> float:
        """Long-term weight used to pick a protagonist when none is tagged."""
        return (self.influence_score or 0.0) + self.appearance_count * 0.5


@dataclass
class CameoRecord:
    """Minimal memory of an insignificant character: name, hook, chapters."""
    name: str
    hook_line: str = ""
    chapters: list[int] = field(default_factory=list)

    @property
    def first_mention(self) -> Optional[int]:
        return min(self.chapters) if self.chapters else None

    @property
    def last_mention(self) -> Optional[int]:
        return max(self.chapters) if self.chapters else None
