"""
Closer Agent
Handles the last objections and makes booking frictionless. The booking
link always comes from the booking tools, never from the model.
"""
from typing import Any, Dict, List, Optional, Sequence
from loguru import logger
from src.agents.base_agent import HARD_RULES, StageAgent, last_user_message, render_context
from src.models.agent_response import AgentResult
from src.models.funnel import FunnelStage
from src.models.intelligence import IntelligenceContext
from src.models.message import ConversationTurn
from src.services import tools
from src.utils.fallback_responses import get_booking_fallback

WIDGET_TITLE = "Book Your Free Consultation"
WIDGET_DESCRIPTION = "Free 30-minute strategy call, no obligation"

OBJECTION_PLAYBOOK = """COMMON OBJECTIONS:
1. "Too expensive" -> tie the investment to the outcomes they described
2. "Need to think about it" -> ask what specific concern you can address now
3. "Need to talk to my team" -> invite the team to the strategy call, no commitment
4. "Not sure it'll work" -> point to what they experienced in this conversation"""


class CloserAgent(StageAgent):
    name = "Closer Agent"
    stage = FunnelStage.CLOSING

    def build_closing_prompt(
        self,
        messages: Sequence[ConversationTurn],
        context: Optional[IntelligenceContext],
        booking_url: Optional[str],
    ) -> str:
        if booking_url:
            booking = (
                f"BOOKING: A calendar widget with this link is shown to the user: {booking_url}\n"
                "Invite them to pick a time. They book it themselves."
            )
        else:
            booking = f"BOOKING: The calendar is unavailable right now. Say exactly: {get_booking_fallback()}"

        return f"""You are {self.persona_name} - handle objections and close.

LEAD PROFILE:
{render_context(context)}

{OBJECTION_PLAYBOOK}

{booking}

STYLE: Confident, direct, remove friction.

{HARD_RULES}

Respond now to: "{last_user_message(messages)}"
"""

    def build_system_prompt(
        self,
        messages: Sequence[ConversationTurn],
        context: Optional[IntelligenceContext],
    ) -> str:
        return self.build_closing_prompt(messages, context, None)

    async def run(
        self,
        messages: Sequence[ConversationTurn],
        context: Optional[IntelligenceContext],
        session_id: str,
        instructions: Optional[str] = None,
    ) -> AgentResult:
        tools_used: List[str] = []
        metadata: Dict[str, Any] = {}

        link = await self.tool_executor.execute(
            tool_name=tools.GET_BOOKING_LINK,
            session_id=session_id,
            agent=self.name,
            inputs={},
            handler=tools.get_booking_link,
        )
        booking_url = None
        if link.success:
            tools_used.append(tools.GET_BOOKING_LINK)
            booking_url = link.data["url"]
            metadata["booking_url"] = booking_url

            widget = await self.tool_executor.execute(
                tool_name=tools.CREATE_CALENDAR_WIDGET,
                session_id=session_id,
                agent=self.name,
                inputs={"title": WIDGET_TITLE, "description": WIDGET_DESCRIPTION, "url": booking_url},
                handler=lambda: tools.create_calendar_widget(WIDGET_TITLE, WIDGET_DESCRIPTION, booking_url),
            )
            if widget.success:
                tools_used.append(tools.CREATE_CALENDAR_WIDGET)
                metadata["calendar_widget"] = widget.data
        else:
            logger.warning(f"⚠️ Booking link unavailable for {session_id}: {link.error}")

        generated = await self.generate(
            self.build_closing_prompt(messages, context, booking_url),
            messages,
            instructions,
        )
        return self.result(generated, tools_used=tools_used, **metadata)
