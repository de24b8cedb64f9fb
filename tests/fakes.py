"""Test doubles shared across suites."""
from typing import Any, Dict, List, Optional, Sequence, Type
from src.models.message import ConversationTurn, MessageRole
from src.utils.errors import GenerationError
from src.utils.llm_client import GenerationResult

NO_CORRECTION_JSON = '{"isCorrection": false, "confidence": 0}'


class FakeGenerationService:
    """
    Scripted GenerationService.

    `replies` are consumed in order (the last one repeats). Correction
    prompts get `correction_reply` so they never eat a scripted reply.
    `objects` maps a schema to the instance (or exception) generate_object returns.
    """

    def __init__(
        self,
        replies: Optional[Sequence[str]] = None,
        objects: Optional[Dict[type, Any]] = None,
        correction_reply: str = NO_CORRECTION_JSON,
        error: Optional[Exception] = None,
    ):
        self.replies: List[str] = list(replies or ["Thanks for sharing. What's the biggest bottleneck today?"])
        self.objects: Dict[type, Any] = dict(objects or {})
        self.correction_reply = correction_reply
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.object_calls: List[Dict[str, Any]] = []

    async def generate(
        self,
        system_prompt: str,
        messages: Sequence[ConversationTurn],
        temperature: float = 0.7,
        model_id: Optional[str] = None,
    ) -> GenerationResult:
        if "correcting information about themselves" in system_prompt:
            return GenerationResult(text=self.correction_reply, model="fake-model")

        self.calls.append({
            "system_prompt": system_prompt,
            "messages": list(messages),
            "temperature": temperature,
            "model_id": model_id,
        })
        if self.error:
            raise self.error
        text = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return GenerationResult(text=text, model=model_id or "fake-model")

    async def generate_object(
        self,
        schema: Type[Any],
        prompt: str,
        temperature: float = 0.2,
        model_id: Optional[str] = None,
    ) -> Any:
        self.object_calls.append({"schema": schema, "prompt": prompt, "temperature": temperature})
        value = self.objects.get(schema)
        if isinstance(value, Exception):
            raise value
        if value is None:
            raise GenerationError(f"No scripted object for {schema.__name__}")
        return value


def turn(role: str, content: str) -> ConversationTurn:
    return ConversationTurn(role=MessageRole(role), content=content)
