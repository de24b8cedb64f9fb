"""
Discovery Agent
Qualifies the lead through conversation, steering toward whichever of the
six discovery categories has not come up yet.
"""
import re
from typing import Dict, Optional, Sequence
from src.agents.base_agent import HARD_RULES, StageAgent, last_user_message, render_context
from src.models.agent_response import AgentResult
from src.models.funnel import FunnelStage
from src.models.intelligence import IntelligenceContext
from src.models.message import ConversationTurn, user_turns

DISCOVERY_CATEGORIES: Dict[str, re.Pattern] = {
    "goals": re.compile(r"\b(goal|objective|achieve|aim|want to|looking to)\b", re.IGNORECASE),
    "pain": re.compile(r"\b(pain|problem|challenge|struggl\w*|bottleneck|manual|slow|frustrat\w*)\b", re.IGNORECASE),
    "data": re.compile(r"\b(data|crm|spreadsheet|database|warehouse|excel|salesforce|hubspot)\b", re.IGNORECASE),
    "readiness": re.compile(r"\b(team|adopt\w*|training|upskill\w*|ready|change management)\b", re.IGNORECASE),
    "budget": re.compile(r"(\$\s?\d|\b(budget|spend|invest\w*|cost|pricing)\b)", re.IGNORECASE),
    "success": re.compile(r"\b(success|kpi|metric|measure|outcome|results?)\b", re.IGNORECASE),
}

CATEGORY_QUESTIONS = {
    "goals": "what they want AI to achieve for the business",
    "pain": "where the biggest bottleneck or manual work is today",
    "data": "where their data lives and how accessible it is",
    "readiness": "how ready the team is to adopt new tools",
    "budget": "how they think about investment and timing",
    "success": "what success would look like in six months",
}


def assess_coverage(messages: Sequence[ConversationTurn]) -> Dict[str, bool]:
    """Which discovery categories the user has already talked about."""
    text = "\n".join(m.content for m in user_turns(messages))
    return {category: bool(pattern.search(text)) for category, pattern in DISCOVERY_CATEGORIES.items()}


def next_category(coverage: Dict[str, bool]) -> Optional[str]:
    for category, covered in coverage.items():
        if not covered:
            return category
    return None


class DiscoveryAgent(StageAgent):
    name = "Discovery Agent"
    stage = FunnelStage.DISCOVERY

    def build_system_prompt(
        self,
        messages: Sequence[ConversationTurn],
        context: Optional[IntelligenceContext],
    ) -> str:
        coverage = assess_coverage(messages)
        status = "\n".join(f"{cat}: {'covered' if done else 'not covered'}" for cat, done in coverage.items())
        focus = next_category(coverage)
        steer = (
            f"Next, naturally learn {CATEGORY_QUESTIONS[focus]}."
            if focus else
            "All categories are covered. Summarize what you heard and suggest a strategy call."
        )
        confirm = (
            ""
            if context is None or context.identity_confirmed else
            "\nThe user has not confirmed their company or role. Ask lightly before personalizing.\n"
        )

        return f"""You are {self.persona_name} - a consultative AI strategist qualifying a lead.

LEAD PROFILE:
{render_context(context)}
{confirm}
DISCOVERY COVERAGE:
{status}

{steer}

STYLE: Warm, concise, one question at a time. Two or three sentences.

{HARD_RULES}

Respond now to: "{last_user_message(messages)}"
"""

    async def run(
        self,
        messages: Sequence[ConversationTurn],
        context: Optional[IntelligenceContext],
        session_id: str,
        instructions: Optional[str] = None,
    ) -> AgentResult:
        generated = await self.generate(self.build_system_prompt(messages, context), messages, instructions)
        coverage = assess_coverage(messages)
        return self.result(generated, categories_covered=sum(coverage.values()))
