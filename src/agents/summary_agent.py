"""
Summary Agent
Produces a structured recap when the conversation ends (goodbye, forced
exit, or an explicit end trigger).
"""
from typing import List, Optional, Sequence
from loguru import logger
from src.agents.base_agent import StageAgent, render_context
from src.agents.discovery_agent import assess_coverage
from src.models.agent_response import AgentResult
from src.models.exit_signal import ExitIntent
from src.models.funnel import FunnelStage
from src.models.intelligence import IntelligenceContext
from src.models.message import ConversationTurn, format_transcript
from src.models.summary import ConversationSummary
from src.models.tool_result import Product
from src.utils.fallback_responses import EXIT_RESPONSES

SUMMARY_TEMPERATURE = 0.4
TRANSCRIPT_CHAR_LIMIT = 1000


def fallback_summary(context: Optional[IntelligenceContext]) -> ConversationSummary:
    fit = context.fit_score if context else None
    consulting = fit.consulting if fit else 0.0
    workshop = fit.workshop if fit else 0.0
    return ConversationSummary(
        executive_summary="Conversation summary generation failed",
        recommended_solution=Product.CONSULTING if consulting > workshop else Product.WORKSHOP,
    )


def render_summary(summary: ConversationSummary) -> str:
    lines: List[str] = [summary.executive_summary]
    if summary.pain_points:
        lines.append("")
        lines.append("Key pain points:")
        lines.extend(f"- {point}" for point in summary.pain_points)
    if summary.recommended_solution:
        lines.append("")
        rationale = f" - {summary.solution_rationale}" if summary.solution_rationale else ""
        lines.append(f"Recommended: {summary.recommended_solution.value}{rationale}")
    if summary.next_steps:
        lines.append("")
        lines.append(f"Next steps: {summary.next_steps}")
    return "\n".join(lines)


class SummaryAgent(StageAgent):
    name = "Summary Agent"
    stage = FunnelStage.SUMMARY
    temperature = SUMMARY_TEMPERATURE

    def build_system_prompt(
        self,
        messages: Sequence[ConversationTurn],
        context: Optional[IntelligenceContext],
    ) -> str:
        coverage = assess_coverage(messages)
        status = "\n".join(f"{cat}: {'covered' if done else 'not covered'}" for cat, done in coverage.items())
        return f"""You are {self.persona_name} Summary AI - write an executive summary of a discovery conversation.

LEAD INFORMATION:
{render_context(context)}

FULL CONVERSATION:
{format_transcript(messages, max_chars=TRANSCRIPT_CHAR_LIMIT)}

DISCOVERY COVERAGE:
{status}

Create a structured summary the lead can share with stakeholders:
- executive_summary: 2-3 sentences covering what was discussed
- key_findings: goals, current situation, data reality, team readiness, budget signals
- pain_points: prioritized list
- recommended_solution: workshop or consulting
- solution_rationale: why this solution fits
- pricing_ballpark: e.g. $8K-$18K or $80K-$400K+
- next_steps: primary CTA is booking a call

Do not include ROI numbers, percentages or claims that a meeting is booked.
TONE: Professional but conversational."""

    async def run(
        self,
        messages: Sequence[ConversationTurn],
        context: Optional[IntelligenceContext],
        session_id: str,
        instructions: Optional[str] = None,
    ) -> AgentResult:
        prompt = self.build_system_prompt(messages, context)
        if instructions:
            prompt = f"{prompt}\n\n{instructions}"

        try:
            summary = await self.generation.generate_object(
                ConversationSummary,
                prompt,
                temperature=self.temperature,
                model_id=self.model_id,
            )
        except Exception as e:
            logger.error(f"❌ Summary generation failed for {session_id}: {e}")
            summary = fallback_summary(context)

        output = f"{EXIT_RESPONSES[ExitIntent.WRAP_UP]}\n\n{render_summary(summary)}"
        return AgentResult(
            output=output,
            agent=self.name,
            model=self.model_id,
            metadata={"stage": self.stage.value, "summary": summary.model_dump(mode="json")},
        )
