"""LLM service for JobLedger.

Provides LangChain/OpenAI integration for the document assistant.
"""

import json
from typing import Dict, Any, Optional, List, Sequence

import structlog
from langchain_openai import ChatOpenAI
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from config.settings import settings
from config.errors import JobLedgerError, ErrorCode

logger = structlog.get_logger()


def _is_rate_limited(error: BaseException) -> bool:
    return isinstance(error, JobLedgerError) and error.code == ErrorCode.LLM_RATE_LIMIT


def history_to_messages(history: Sequence[Dict[str, Any]]) -> List[BaseMessage]:
    """Convert stored conversation turns ({role, content}) to LangChain messages."""
    messages: List[BaseMessage] = []
    for turn in history:
        content = turn.get("content") or ""
        if turn.get("role") == "assistant":
            messages.append(AIMessage(content=content))
        else:
            messages.append(HumanMessage(content=content))
    return messages


class LLMService:
    """Service for LLM operations using LangChain.

    Provides a wrapper around ChatOpenAI with token tracking, rate-limit
    retries and error handling.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        api_key: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_wait_seconds: float = 2.0
    ):
        """Initialize LLMService.

        Args:
            model: Model name (default from settings).
            temperature: Temperature (default from settings).
            api_key: OpenAI API key (default from settings).
            max_retries: Attempts on rate limit (default from settings).
            retry_wait_seconds: Minimum backoff between rate-limited attempts.
        """
        self.model = model or settings.llm_model
        self.temperature = temperature if temperature is not None else settings.llm_temperature
        self.api_key = api_key or settings.openai_api_key
        self.max_retries = max_retries or settings.llm_max_retries
        self.retry_wait_seconds = retry_wait_seconds

        self._client: Optional[ChatOpenAI] = None
        self._total_tokens_used = 0

    @property
    def client(self) -> ChatOpenAI:
        """Get LangChain ChatOpenAI client (lazy initialization)."""
        if self._client is None:
            self._client = ChatOpenAI(
                model=self.model,
                temperature=self.temperature,
                api_key=self.api_key
            )
        return self._client

    @property
    def total_tokens_used(self) -> int:
        """Get total tokens used across all calls."""
        return self._total_tokens_used

    async def generate(
        self,
        messages: List[BaseMessage],
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        """Generate a response from the LLM, retrying on rate limits.

        Args:
            messages: List of LangChain messages.
            max_tokens: Optional max tokens for response.

        Returns:
            Dict with content and token usage.

        Raises:
            JobLedgerError: If the LLM call fails.
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_wait_seconds, min=self.retry_wait_seconds, max=10),
            retry=retry_if_exception(_is_rate_limited),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "llm_retrying",
                        model=self.model,
                        attempt=attempt.retry_state.attempt_number
                    )
                return await self._invoke(messages, max_tokens)

    async def _invoke(
        self,
        messages: List[BaseMessage],
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        try:
            kwargs = {}
            if max_tokens:
                kwargs["max_tokens"] = max_tokens

            response = await self.client.ainvoke(messages, **kwargs)

            tokens_used = 0
            if hasattr(response, "response_metadata"):
                usage = response.response_metadata.get("token_usage", {})
                tokens_used = usage.get("total_tokens", 0)
                self._total_tokens_used += tokens_used

            logger.info(
                "llm_generated",
                model=self.model,
                tokens_used=tokens_used,
                content_length=len(response.content)
            )

            return {
                "content": response.content,
                "tokens_used": tokens_used
            }

        except Exception as e:
            error_msg = str(e)

            if "rate_limit" in error_msg.lower() or "rate limit" in error_msg.lower():
                raise JobLedgerError(
                    code=ErrorCode.LLM_RATE_LIMIT,
                    message="OpenAI rate limit exceeded",
                    details={"original_error": error_msg}
                )
            elif "context_length" in error_msg.lower() or "maximum context" in error_msg.lower():
                raise JobLedgerError(
                    code=ErrorCode.LLM_CONTEXT_TOO_LONG,
                    message="Input too long for model context",
                    details={"original_error": error_msg}
                )
            else:
                raise JobLedgerError(
                    code=ErrorCode.LLM_ERROR,
                    message=f"LLM generation failed: {error_msg}",
                    details={"original_error": error_msg}
                )

    async def generate_with_system_prompt(
        self,
        system_prompt: str,
        user_message: str,
        max_tokens: Optional[int] = None,
        history: Optional[Sequence[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """Generate a response with system prompt and optional prior turns.

        Args:
            system_prompt: System prompt for context.
            user_message: User message/query.
            max_tokens: Optional max tokens for response.
            history: Earlier conversation turns, oldest first.

        Returns:
            Dict with content and token usage.
        """
        messages: List[BaseMessage] = [SystemMessage(content=system_prompt)]
        messages.extend(history_to_messages(history or []))
        messages.append(HumanMessage(content=user_message))
        return await self.generate(messages, max_tokens)

    async def generate_json(
        self,
        system_prompt: str,
        user_message: str,
        max_tokens: Optional[int] = None
    ) -> Dict[str, Any]:
        """Generate a JSON response.

        Adds JSON formatting instructions to the system prompt.

        Returns:
            Dict with parsed JSON content and token usage.

        Raises:
            JobLedgerError: If response is not valid JSON.
        """
        json_prompt = f"""{system_prompt}

IMPORTANT: You MUST respond with valid JSON only. No markdown, no explanation, just JSON."""

        result = await self.generate_with_system_prompt(
            json_prompt,
            user_message,
            max_tokens
        )

        try:
            content = result["content"].strip()

            # Handle markdown code blocks
            if content.startswith("```json"):
                content = content[7:]
            if content.startswith("```"):
                content = content[3:]
            if content.endswith("```"):
                content = content[:-3]

            parsed = json.loads(content.strip())

            return {
                "content": parsed,
                "tokens_used": result["tokens_used"]
            }

        except json.JSONDecodeError as e:
            raise JobLedgerError(
                code=ErrorCode.AI_MALFORMED_RESPONSE,
                message="LLM did not return valid JSON",
                details={
                    "parse_error": str(e),
                    "raw_content": result["content"][:500]
                }
            )

    def create_chat_model(
        self,
        model: Optional[str] = None,
        temperature: Optional[float] = None
    ) -> ChatOpenAI:
        """Create a new ChatOpenAI instance with a different configuration."""
        return ChatOpenAI(
            model=model or self.model,
            temperature=temperature if temperature is not None else self.temperature,
            api_key=self.api_key
        )
