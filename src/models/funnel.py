from enum import StrEnum


class FunnelStage(StrEnum):
    """Derived each turn; never stored authoritatively by the engine."""
    DISCOVERY = "DISCOVERY"
    SCORING = "SCORING"
    PITCHING = "PITCHING"
    CLOSING = "CLOSING"
    SUMMARY = "SUMMARY"


class RoutingTrigger(StrEnum):
    CHAT = "chat"
    VOICE = "voice"
    BOOKING = "booking"
    ADMIN = "admin"
    CONVERSATION_END = "conversation_end"
