"""Base agent class: settings, generation client and prompt templates."""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from config.settings import Settings
from tools.agent_sdk_client import AgentSDKClient

logger = logging.getLogger(__name__)

_PROMPTS_DIR = Path(__file__).parent.parent / "config" / "prompts"


@lru_cache(maxsize=16)
def _read_prompt_file(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


class BaseAgent:
    """Shared plumbing for agents that talk to the generation call."""

    def __init__(
        self,
        llm_client: Optional[AgentSDKClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or Settings()
        self.llm = llm_client or AgentSDKClient(self.settings)

    def _load_prompt(self, template_name: str) -> str:
        """Load `config/prompts/<template_name>.md`, cached after the first read."""
        path = _PROMPTS_DIR / f"{template_name}.md"
        if not path.exists():
            raise FileNotFoundError(f"Prompt template not found: {path}")
        return _read_prompt_file(str(path))

    @staticmethod
    def _extract_section(template: str, section_header: str) -> str:
        """Body of the first '## ' section whose header contains `section_header`."""
        result: list[str] = []
        capturing = False
        for line in template.split("\n"):
            is_header = line.strip().startswith("## ")
            if is_header and capturing:
                break
            if is_header and section_header in line:
                capturing = True
            elif capturing:
                result.append(line)
        return "\n".join(result).strip()

    def _load_sections(self, template_name: str, *headers: str) -> str:
        """Concatenate the named sections of a template, skipping missing ones."""
        template = self._load_prompt(template_name)
        parts = [self._extract_section(template, h) for h in headers]
        return "\n\n".join(p for p in parts if p)
