"""Claude Agent SDK wrapper implementing the generation call."""

import logging
import os
from typing import AsyncIterator, Optional

from claude_agent_sdk import (
    query,
    ClaudeAgentOptions,
    ResultMessage,
    AssistantMessage,
)

from config.settings import Settings
from config.exceptions import LLMError

logger = logging.getLogger(__name__)

# Allow launching Agent SDK even when running inside a Claude Code session.
# The SDK checks for this env var and refuses to start if set.
os.environ.pop("CLAUDECODE", None)

PURPOSE_EXTRACTION = "extraction"
PURPOSE_WRITING = "writing"

_DEFAULT_SYSTEM_PROMPT = "You are a careful assistant for a long-form fiction pipeline."


class AgentSDKClient:
    """Generation call over claude_agent_sdk.query().

    `generate(prompt, purpose)` is the narrow interface the memory engine
    consumes; `purpose` picks the model from settings. Authentication is
    handled automatically by Claude Code CLI.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    def model_for(self, purpose: str) -> str:
        if purpose == PURPOSE_EXTRACTION:
            return self.settings.llm_model_extraction
        return self.settings.llm_model_writing

    def _options(self, purpose: str, system_prompt: Optional[str]) -> ClaudeAgentOptions:
        return ClaudeAgentOptions(
            system_prompt=system_prompt or _DEFAULT_SYSTEM_PROMPT,
            model=self.model_for(purpose),
            max_turns=1,
        )

    async def generate(
        self,
        prompt: str,
        purpose: str = PURPOSE_WRITING,
        system_prompt: Optional[str] = None,
    ) -> str:
        """Run one generation call and return its full text.

        Args:
            prompt: User message content.
            purpose: PURPOSE_EXTRACTION or PURPOSE_WRITING; selects the model.
            system_prompt: System message; a neutral default when omitted.

        Returns:
            The result text, or the first assistant text when no result
            message arrives. Empty when the model said nothing.

        Raises:
            LLMError: If the query fails.
        """
        options = self._options(purpose, system_prompt)
        logger.debug("AgentSDK call: purpose=%s, model=%s, prompt=%d chars", purpose, options.model, len(prompt))

        try:
            result_text = ""
            # Do NOT return/break early from inside the async for loop: query()
            # uses anyio cancel scopes and must be exhausted in the same task.
            async for message in query(prompt=prompt, options=options):
                if isinstance(message, ResultMessage):
                    result_text = message.result or result_text
                    logger.debug(
                        "AgentSDK result: %d chars, cost=$%s",
                        len(result_text),
                        message.total_cost_usd,
                    )
                elif isinstance(message, AssistantMessage):
                    for block in message.content:
                        text = getattr(block, "text", None)
                        if text and not result_text:
                            result_text += text
        except Exception as e:
            raise LLMError(f"Agent SDK query failed: {e}") from e

        if not result_text:
            logger.warning("AgentSDK returned no content")

        return result_text

    async def stream(
        self,
        prompt: str,
        purpose: str = PURPOSE_WRITING,
        system_prompt: Optional[str] = None,
    ) -> AsyncIterator[str]:
        """Yield text chunks as assistant messages arrive.

        Falls back to the final result text when no assistant chunk was seen.
        """
        options = self._options(purpose, system_prompt)
        logger.debug("AgentSDK stream: purpose=%s, model=%s", purpose, options.model)

        emitted = False
        try:
            async for message in query(prompt=prompt, options=options):
                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        text = getattr(block, "text", None)
                        if text:
                            emitted = True
                            yield text
                elif isinstance(message, ResultMessage) and not emitted and message.result:
                    yield message.result
        except Exception as e:
            raise LLMError(f"Agent SDK stream failed: {e}") from e
