"""
Pitch Agent
Pitches whichever product fits better, grounded in an ROI projection from
the calculate_roi tool.

`calculate_roi` is only reported as used when the tool succeeded, so a
pitch built on fallback numbers still cannot quote them past validation.
"""
from typing import Any, Dict, Optional, Sequence
from loguru import logger
from src.agents.base_agent import HARD_RULES, StageAgent, last_user_message, render_context
from src.config import get_settings
from src.models.agent_response import AgentResult
from src.models.funnel import FunnelStage
from src.models.intelligence import IntelligenceContext
from src.models.message import ConversationTurn
from src.models.tool_result import Product, RoiEstimate
from src.services import tools
from src.utils.fallback_responses import get_fallback_roi_estimate

DEFAULT_PAIN = "scaling AI adoption and automation"
PRICE_REVEAL_INTEREST = 0.75
DEFAULT_INTEREST = 0.7

NO_CONTEXT_REPLY = (
    "I'd love to help you explore our AI solutions. Can you tell me a bit about "
    "your company and what you're looking to achieve?"
)

PRODUCT_CONFIG: Dict[Product, Dict[str, str]] = {
    Product.WORKSHOP: {
        "name": "AI Acceleration Workshop",
        "price_range": "$8K-$18K",
        "duration": "2-3 days",
        "format": "intensive hands-on",
        "best_for": "teams of 8-40, mid-market & startups",
    },
    Product.CONSULTING: {
        "name": "Custom AI Transformation Program",
        "price_range": "$80K-$400K+",
        "duration": "3-12 months",
        "format": "strategic partnership",
        "best_for": "enterprise & high-growth companies",
    },
}


def select_product(context: IntelligenceContext) -> Product:
    fit = context.fit_score
    workshop = fit.workshop if fit else 0.0
    consulting = fit.consulting if fit else 0.0
    return Product.WORKSHOP if workshop > consulting else Product.CONSULTING


class PitchAgent(StageAgent):
    name = "Pitch Agent"
    stage = FunnelStage.PITCHING
    history_window = 15

    async def _projected_roi(
        self,
        context: IntelligenceContext,
        product: Product,
        session_id: str,
    ) -> tuple[RoiEstimate, bool]:
        team_size = tools.estimate_team_size(context.company)
        current_pain = (context.company.summary if context.company else None) or DEFAULT_PAIN
        inputs = {"team_size": team_size, "current_pain": current_pain, "product": product.value}

        execution = await self.tool_executor.execute(
            tool_name=tools.CALCULATE_ROI,
            session_id=session_id,
            agent=self.name,
            inputs=inputs,
            handler=lambda: tools.calculate_roi(self.generation, team_size, current_pain, product),
            cacheable=True,
        )
        if execution.success and isinstance(execution.data, RoiEstimate):
            return execution.data, True

        logger.warning(f"⚠️ ROI calculation failed, using defaults: {execution.error}")
        return get_fallback_roi_estimate(product), False

    def build_pitch_prompt(
        self,
        messages: Sequence[ConversationTurn],
        context: IntelligenceContext,
        product: Product,
        roi: RoiEstimate,
        roi_calculated: bool,
    ) -> str:
        info = PRODUCT_CONFIG[product]
        fit = context.fit_score
        fit_value = (fit.workshop if product == Product.WORKSHOP else fit.consulting) if fit else 0.0
        interest = context.interest_level if context.interest_level is not None else DEFAULT_INTEREST

        if roi_calculated:
            roi_line = f"ROI projection (calculated): {roi.projected_roi}x in {roi.payback_months} months. {roi.reasoning}"
        else:
            roi_line = "ROI projection: unavailable. Describe value qualitatively; quote no numbers."

        return f"""You are {self.persona_name} - an elite AI sales closer. Pitch the {info['name']} with precision.

LEAD PROFILE:
{render_context(context)}

PRODUCT:
- {info['name']}: {info['duration']}, {info['format']}, best for {info['best_for']}
- Fit score ({product.value}): {fit_value:.2f}
- Interest level: {interest:.2f}
- {roi_line}

PITCH RULES:
- Never mention the other product unless asked
- Use the confirmed company/role context naturally
- Create urgency without sounding salesy
- End with a clear next step (book a call or ask about budget/timeline)

Price guidance: {info['price_range']} - only reveal if interest is above {PRICE_REVEAL_INTEREST} or they ask directly.

{HARD_RULES}

Respond now to: "{last_user_message(messages)}"
"""

    def build_system_prompt(
        self,
        messages: Sequence[ConversationTurn],
        context: Optional[IntelligenceContext],
    ) -> str:
        if context is None:
            return ""
        product = select_product(context)
        return self.build_pitch_prompt(messages, context, product, get_fallback_roi_estimate(product), False)

    async def run(
        self,
        messages: Sequence[ConversationTurn],
        context: Optional[IntelligenceContext],
        session_id: str,
        instructions: Optional[str] = None,
    ) -> AgentResult:
        if context is None:
            return AgentResult(
                output=NO_CONTEXT_REPLY,
                agent=self.name,
                metadata={"stage": FunnelStage.DISCOVERY.value},
            )

        product = select_product(context)
        roi, roi_calculated = await self._projected_roi(context, product, session_id)

        system_prompt = self.build_pitch_prompt(messages, context, product, roi, roi_calculated)
        generated = await self.generate(system_prompt, messages, instructions)

        interest = context.interest_level or 0.0
        metadata: Dict[str, Any] = {
            "product": product.value,
            "pitch_delivered": True,
            "next_stage": (
                FunnelStage.CLOSING if interest > get_settings().closing_interest_threshold else FunnelStage.PITCHING
            ).value,
        }
        if context.fit_score:
            metadata["fit_score"] = context.fit_score
        if roi_calculated:
            metadata["roi"] = roi.model_dump()

        return self.result(
            generated,
            tools_used=[tools.CALCULATE_ROI] if roi_calculated else [],
            **metadata,
        )
