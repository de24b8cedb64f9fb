"""
Stage Agent Base
Shared plumbing for the funnel-stage personas: rendering the sanitized
context into a prompt, the generation call and the AgentResult envelope.

Agents only ever see the sanitized context; they never read the record
store themselves.
"""
from typing import Any, Dict, List, Optional, Sequence
from src.config import get_settings
from src.models.agent_response import AgentResult
from src.models.funnel import FunnelStage
from src.models.intelligence import IntelligenceContext
from src.models.message import ConversationTurn, MessageRole
from src.services.tool_executor import ToolExecutor
from src.utils.llm_client import GenerationResult, GenerationService

HARD_RULES = """HARD RULES:
- Never quote ROI figures, percentages or payback periods unless an ROI calculation appears above.
- Never say a meeting is booked, scheduled or confirmed. The user books it themselves from a link.
- Never claim to have emailed anyone or prepared documents.
- Never describe yourself as any other AI model or vendor.
- Only state the user's name, company or role if it appears in the lead profile above.
- If the user asked a direct question, answer it first."""


def render_context(context: Optional[IntelligenceContext]) -> str:
    """Plain-text lead profile. Only fields present in the sanitized context appear."""
    if context is None:
        return "No lead information yet."

    lines: List[str] = []
    if context.name:
        lines.append(f"Name: {context.name}")
    if context.email:
        lines.append(f"Email: {context.email}")

    company = context.company
    if company:
        if company.name:
            lines.append(f"Company: {company.name}")
        if company.domain:
            lines.append(f"Company domain: {company.domain}")
        if company.industry:
            lines.append(f"Industry: {company.industry}")
        if company.size:
            lines.append(f"Company size: {company.size}")
        if company.employee_count:
            lines.append(f"Employees: {company.employee_count}")
        if company.summary:
            lines.append(f"Company summary: {company.summary}")

    person = context.person
    role = context.role or (person.role if person else None)
    if person and person.full_name:
        lines.append(f"Full name: {person.full_name}")
    if role:
        lines.append(f"Role: {role}")
    if person and person.seniority:
        lines.append(f"Seniority: {person.seniority}")

    if context.budget:
        budget = "explicit" if context.budget.has_explicit else "inferred"
        if context.budget.min_usd or context.budget.max_usd:
            budget += f" (${context.budget.min_usd or '?'} - ${context.budget.max_usd or '?'})"
        lines.append(f"Budget signal: {budget}")
    if context.timeline:
        lines.append(f"Timeline urgency: {context.timeline.urgency:.2f}")
    if context.interest_level is not None:
        lines.append(f"Interest level: {context.interest_level:.2f}")
    if context.current_objection:
        lines.append(f"Current objection: {context.current_objection}")
    if context.lead_score is not None:
        lines.append(f"Lead score: {context.lead_score:.0f}/100")
    if context.fit_score:
        lines.append(
            f"Fit: workshop {context.fit_score.workshop:.2f}, consulting {context.fit_score.consulting:.2f}"
        )

    lines.append(f"Identity confirmed by user: {'yes' if context.identity_confirmed else 'no'}")

    if context.facts:
        lines.append("Known facts from earlier conversations:")
        lines.extend(f"- {fact}" for fact in context.facts)

    return "\n".join(lines)


def last_user_message(messages: Sequence[ConversationTurn]) -> str:
    for message in reversed(messages):
        if message.role == MessageRole.USER:
            return message.content
    return ""


class StageAgent:
    """
    One persona in the funnel.

    Subclasses provide `build_system_prompt`; agents that call tools
    override `run` and go through the ToolExecutor.
    """

    name: str = "Stage Agent"
    stage: FunnelStage = FunnelStage.DISCOVERY
    temperature: float = 0.7
    history_window: Optional[int] = None

    def __init__(
        self,
        generation: GenerationService,
        tool_executor: Optional[ToolExecutor] = None,
        model_id: Optional[str] = None,
    ):
        settings = get_settings()
        self.generation = generation
        self.tool_executor = tool_executor or ToolExecutor()
        self.model_id = model_id
        self.persona_name = settings.persona_name
        self._default_window = settings.history_window_size

    def build_system_prompt(
        self,
        messages: Sequence[ConversationTurn],
        context: Optional[IntelligenceContext],
    ) -> str:
        raise NotImplementedError

    def window(self, messages: Sequence[ConversationTurn]) -> List[ConversationTurn]:
        conversation = [m for m in messages if m.role != MessageRole.SYSTEM]
        size = self.history_window or self._default_window
        return conversation[-size:]

    async def generate(
        self,
        system_prompt: str,
        messages: Sequence[ConversationTurn],
        instructions: Optional[str] = None,
    ) -> GenerationResult:
        if instructions:
            system_prompt = f"{system_prompt}\n\n{instructions}"
        return await self.generation.generate(
            system_prompt=system_prompt,
            messages=self.window(messages),
            temperature=self.temperature,
            model_id=self.model_id,
        )

    def result(
        self,
        generated: GenerationResult,
        tools_used: Optional[List[str]] = None,
        **metadata: Any,
    ) -> AgentResult:
        meta: Dict[str, Any] = {"stage": self.stage.value, **metadata}
        return AgentResult(
            output=generated.text,
            agent=self.name,
            model=generated.model,
            tools_used=tools_used or [],
            metadata=meta,
        )

    async def run(
        self,
        messages: Sequence[ConversationTurn],
        context: Optional[IntelligenceContext],
        session_id: str,
        instructions: Optional[str] = None,
    ) -> AgentResult:
        """
        Args:
            messages: Conversation so far, oldest first
            context: Sanitized intelligence context (may be None)
            session_id: Used for tool audit records
            instructions: Extra system instructions, e.g. validator feedback on a regeneration
        """
        generated = await self.generate(self.build_system_prompt(messages, context), messages, instructions)
        return self.result(generated)
