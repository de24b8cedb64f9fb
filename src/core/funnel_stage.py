"""
Funnel Stage State Machine
Pure function of the routing trigger and the sanitized context.
"""
from typing import Optional
from src.config import get_settings
from src.models.funnel import FunnelStage, RoutingTrigger
from src.models.intelligence import IntelligenceContext

_TRIGGER_STAGES = {
    RoutingTrigger.CONVERSATION_END: FunnelStage.SUMMARY,
    RoutingTrigger.BOOKING: FunnelStage.CLOSING,
    RoutingTrigger.ADMIN: FunnelStage.PITCHING,
}


def determine_funnel_stage(
    trigger: RoutingTrigger | str,
    context: Optional[IntelligenceContext],
) -> FunnelStage:
    """
    Explicit triggers win; otherwise a fully qualified lead (company size,
    explicit budget, senior buyer) is scored and everyone else stays in
    discovery.
    """
    try:
        trigger = RoutingTrigger(trigger)
    except ValueError:
        trigger = RoutingTrigger.CHAT

    if trigger in _TRIGGER_STAGES:
        return _TRIGGER_STAGES[trigger]

    if context is not None and context.is_fully_qualified:
        return FunnelStage.SCORING

    return FunnelStage.DISCOVERY


def stage_after_scoring(context: Optional[IntelligenceContext]) -> FunnelStage:
    """Scoring hands off once scores exist; the pitch is the next voice the user hears."""
    if context is not None and context.lead_score is not None:
        return FunnelStage.PITCHING
    return FunnelStage.DISCOVERY


def stage_after_pitch(
    stage: FunnelStage,
    context: Optional[IntelligenceContext],
    objection_raised: bool = False,
    closing_interest: float | None = None,
) -> FunnelStage:
    """
    Once the pitch has landed, a fresh objection or strong interest moves
    the turn to the closer. Summary and explicit closing are left alone.
    """
    if stage in (FunnelStage.CLOSING, FunnelStage.SUMMARY):
        return stage
    if context is None or not context.pitch_delivered:
        return stage
    if closing_interest is None:
        closing_interest = get_settings().closing_interest_threshold
    if objection_raised:
        return FunnelStage.CLOSING
    if context.interest_level is not None and context.interest_level > closing_interest:
        return FunnelStage.CLOSING
    return stage
