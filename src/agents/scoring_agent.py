"""
Scoring Agent
Deterministic lead score (0-100) and workshop/consulting fit, computed
from the sanitized context and the conversation. No generation call:
the router hands off to the pitch agent right after scoring.
"""
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence
from loguru import logger
from src.agents.base_agent import StageAgent
from src.agents.discovery_agent import assess_coverage
from src.models.agent_response import AgentResult
from src.models.funnel import FunnelStage
from src.models.intelligence import FitScore, IntelligenceContext
from src.models.message import ConversationTurn, user_turns
from src.services.tools import TEAM_SIZE_BY_BUCKET

EXECUTIVE_ROLE = re.compile(r"\b(ceo|cto|cfo|coo|cio|chief|founder|co-founder|owner|president)\b", re.IGNORECASE)
LEADERSHIP_ROLE = re.compile(r"\b(vp|vice president|director|head of)\b", re.IGNORECASE)
MANAGER_ROLE = re.compile(r"\b(manager|lead|supervisor)\b", re.IGNORECASE)

WORKSHOP_SIGNALS = re.compile(r"\b(training|teach\w*|upskill\w*|workshop|educat\w*|learn\w*)\b", re.IGNORECASE)
CONSULTING_SIGNALS = re.compile(r"\b(custom build|implementation|implement|integrat\w*|scale|scaling|build)\b", re.IGNORECASE)

URGENT_TIMELINE = 0.7


@dataclass
class LeadScoreBreakdown:
    role: int
    company: int
    conversation: int
    budget: int

    @property
    def total(self) -> int:
        return min(100, self.role + self.company + self.conversation + self.budget)


def _role_tier(context: Optional[IntelligenceContext]) -> str:
    if context is None:
        return "unknown"
    person = context.person
    seniority = person.seniority if person else None
    role = context.role or (person.role if person else None) or ""

    if seniority == "C-Level" or EXECUTIVE_ROLE.search(role):
        return "executive"
    if seniority in ("VP", "Director") or LEADERSHIP_ROLE.search(role):
        return "leadership"
    if seniority == "Manager" or MANAGER_ROLE.search(role):
        return "manager"
    if role or seniority:
        return "contributor"
    return "unknown"


def _headcount(context: Optional[IntelligenceContext]) -> Optional[int]:
    if context is None or context.company is None:
        return None
    if context.company.employee_count:
        return context.company.employee_count
    return TEAM_SIZE_BY_BUCKET.get(context.company.size or "")


def score_role(context: Optional[IntelligenceContext]) -> int:
    return {"executive": 30, "leadership": 20, "manager": 10, "contributor": 5}.get(_role_tier(context), 0)


def score_company(context: Optional[IntelligenceContext]) -> int:
    headcount = _headcount(context)
    if headcount is None:
        return 0
    if headcount >= 500:
        return 25
    if headcount >= 50:
        return 15
    if headcount >= 10:
        return 10
    return 5


def score_conversation(messages: Sequence[ConversationTurn]) -> int:
    covered = sum(assess_coverage(messages).values())
    if covered >= 6:
        return 25
    if covered >= 4:
        return 15
    if covered >= 2:
        return 10
    if covered == 1:
        return 5
    return 0


def score_budget(context: Optional[IntelligenceContext], messages: Sequence[ConversationTurn]) -> int:
    if context and context.budget and context.budget.has_explicit:
        return 20
    if context and context.timeline and context.timeline.urgency >= URGENT_TIMELINE:
        return 15
    return 5 if user_turns(messages) else 0


def score_lead(context: Optional[IntelligenceContext], messages: Sequence[ConversationTurn]) -> LeadScoreBreakdown:
    return LeadScoreBreakdown(
        role=score_role(context),
        company=score_company(context),
        conversation=score_conversation(messages),
        budget=score_budget(context, messages),
    )


def score_fit(context: Optional[IntelligenceContext], messages: Sequence[ConversationTurn]) -> FitScore:
    """
    Workshop suits managers at mid-size companies asking about training;
    consulting suits executives at large companies asking for custom builds.
    """
    tier = _role_tier(context)
    headcount = _headcount(context)
    text = "\n".join(m.content for m in user_turns(messages))
    budget = context.budget if context else None

    workshop = 0.0
    consulting = 0.0

    if tier in ("manager", "contributor"):
        workshop += 0.3
    if tier in ("executive", "leadership"):
        consulting += 0.3

    if headcount is not None and 50 <= headcount < 500:
        workshop += 0.3
    if headcount is not None and headcount >= 500:
        consulting += 0.3

    if WORKSHOP_SIGNALS.search(text):
        workshop += 0.2
    if CONSULTING_SIGNALS.search(text):
        consulting += 0.2

    if budget and budget.max_usd is not None and budget.max_usd <= 15_000:
        workshop += 0.2
    if budget and budget.min_usd is not None and budget.min_usd >= 50_000:
        consulting += 0.2

    return FitScore(workshop=round(min(workshop, 1.0), 2), consulting=round(min(consulting, 1.0), 2))


class ScoringAgent(StageAgent):
    name = "Scoring Agent"
    stage = FunnelStage.SCORING

    async def run(
        self,
        messages: Sequence[ConversationTurn],
        context: Optional[IntelligenceContext],
        session_id: str,
        instructions: Optional[str] = None,
    ) -> AgentResult:
        breakdown = score_lead(context, messages)
        fit = score_fit(context, messages)
        reasoning: List[str] = [
            f"role {breakdown.role}/30",
            f"company {breakdown.company}/25",
            f"conversation {breakdown.conversation}/25",
            f"budget {breakdown.budget}/20",
        ]

        logger.info(
            f"📊 Lead scored | session={session_id} | score={breakdown.total} | "
            f"workshop={fit.workshop} | consulting={fit.consulting}"
        )

        return AgentResult(
            output=(
                f"Lead Score: {breakdown.total}/100\n"
                f"Workshop Fit: {fit.workshop * 100:.0f}%\n"
                f"Consulting Fit: {fit.consulting * 100:.0f}%\n\n"
                f"{', '.join(reasoning)}"
            ),
            agent=self.name,
            metadata={
                "stage": self.stage.value,
                "lead_score": breakdown.total,
                "fit_score": fit,
                "reasoning": ", ".join(reasoning),
            },
        )
