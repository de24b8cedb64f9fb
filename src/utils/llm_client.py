"""
Generation Client with Retry Logic & Error Handling
The engine treats text generation as an opaque collaborator behind the
GenerationService protocol. PydanticAIGenerationService is the production
implementation; tests substitute fakes.
"""
import asyncio
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, Sequence, Type, TypeVar
from loguru import logger
from pydantic import BaseModel
from pydantic_ai import Agent
from src.config import get_settings
from src.models.message import ConversationTurn, format_transcript
from src.utils.errors import GenerationCriticalError, GenerationError

# Type variable for generic agent output
T = TypeVar('T')
M = TypeVar('M', bound=BaseModel)


@dataclass
class GenerationResult:
    text: str
    model: Optional[str] = None


class GenerationService(Protocol):
    """What the engine needs from a language model."""

    async def generate(
        self,
        system_prompt: str,
        messages: Sequence[ConversationTurn],
        temperature: float = 0.7,
        model_id: Optional[str] = None,
    ) -> GenerationResult:
        ...

    async def generate_object(
        self,
        schema: Type[M],
        prompt: str,
        temperature: float = 0.2,
        model_id: Optional[str] = None,
    ) -> M:
        ...


def _classify_error(error_msg: str) -> str:
    if "rate" in error_msg and "limit" in error_msg:
        return "rate_limit"
    if "timeout" in error_msg or "timed out" in error_msg:
        return "timeout"
    if any(code in error_msg for code in ["500", "502", "503", "504"]):
        return "server_error"
    if "authentication" in error_msg or "api key" in error_msg or "401" in error_msg:
        return "auth"
    if "invalid" in error_msg and "request" in error_msg:
        return "invalid_request"
    return "unknown"


async def run_agent_with_retry(
    agent: Agent,
    prompt: str,
    deps: Any = None,
    max_retries: int | None = None,
    model_settings: dict | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Executes an agent with exponential backoff retry logic.

    Args:
        agent: The PydanticAI agent to run
        prompt: The prompt to send to the agent
        deps: Optional dependencies for the agent
        max_retries: Override default retry count from settings
        model_settings: Optional per-run model settings (temperature, ...)
        sleep: Awaitable used between attempts (injectable for tests)

    Returns:
        The agent's output (typed based on agent's output_type)

    Raises:
        GenerationCriticalError: For non-recoverable failures
        GenerationError: After max retries exhausted
    """
    settings = get_settings()
    max_attempts = max_retries or settings.generation_max_retries
    min_wait = settings.retry_min_wait_seconds
    max_wait = settings.retry_max_wait_seconds

    run_kwargs: dict[str, Any] = {}
    if deps is not None:
        run_kwargs["deps"] = deps
    if model_settings:
        run_kwargs["model_settings"] = model_settings

    last_error = None

    for attempt in range(1, max_attempts + 1):
        try:
            logger.debug(f"Generation attempt {attempt}/{max_attempts}")
            result = await agent.run(prompt, **run_kwargs)
            return result.output

        except Exception as e:
            last_error = e
            error_type = _classify_error(str(e).lower())

            if error_type == "auth":
                logger.error(f"🚨 Authentication failure: {e}")
                raise GenerationCriticalError(f"Authentication failed: {e}") from e
            if error_type == "invalid_request":
                logger.error(f"🚨 Invalid request: {e}")
                raise GenerationCriticalError(f"Invalid request: {e}") from e

            logger.warning(f"⚠️ Generation error '{error_type}' (attempt {attempt}/{max_attempts}): {e}")

            if attempt == max_attempts:
                logger.error(f"❌ Max retries ({max_attempts}) exhausted. Last error: {e}")
                raise GenerationError(f"Failed after {max_attempts} attempts: {e}") from e

            # Exponential backoff with 20% jitter
            wait_time = min(min_wait * (2 ** (attempt - 1)), max_wait)
            wait_time = wait_time * (0.8 + 0.4 * random.random())

            logger.info(f"⏳ Retrying in {wait_time:.1f}s... (error: {error_type})")
            await sleep(wait_time)

    raise GenerationError(f"Unexpected retry loop exit. Last error: {last_error}")


class PydanticAIGenerationService:
    """
    GenerationService backed by PydanticAI agents.

    Agents are built per call: the system prompt is dynamic per turn, and
    building lazily keeps imports free of provider credentials.

    Usage:
        >>> service = PydanticAIGenerationService()
        >>> result = await service.generate("You are helpful.", turns)
        >>> print(result.text)
    """

    def __init__(
        self,
        default_model: str | None = None,
        max_retries: int | None = None,
        agent_factory: Callable[..., Agent] = Agent,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.default_model = default_model or settings.default_chat_model
        self.max_retries = max_retries or settings.generation_max_retries
        self._agent_factory = agent_factory
        self._sleep = sleep

    def _build_agent(self, model_id: str, output_type: Any, instructions: str | None = None) -> Agent:
        try:
            return self._agent_factory(model_id, output_type=output_type, instructions=instructions)
        except Exception as e:
            raise GenerationCriticalError(f"Could not initialize model '{model_id}': {e}") from e

    async def generate(
        self,
        system_prompt: str,
        messages: Sequence[ConversationTurn],
        temperature: float = 0.7,
        model_id: Optional[str] = None,
    ) -> GenerationResult:
        model = model_id or self.default_model
        agent = self._build_agent(model, str, instructions=system_prompt)
        transcript = format_transcript(messages)

        text = await run_agent_with_retry(
            agent,
            transcript,
            max_retries=self.max_retries,
            model_settings={"temperature": temperature},
            sleep=self._sleep,
        )
        return GenerationResult(text=text, model=model)

    async def generate_object(
        self,
        schema: Type[M],
        prompt: str,
        temperature: float = 0.2,
        model_id: Optional[str] = None,
    ) -> M:
        model = model_id or get_settings().fast_model
        agent = self._build_agent(model, schema)

        return await run_agent_with_retry(
            agent,
            prompt,
            max_retries=self.max_retries,
            model_settings={"temperature": temperature},
            sleep=self._sleep,
        )
