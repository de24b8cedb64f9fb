"""
Agent Tool Catalogue
The handlers stage agents run through the Tool Executor. Only these
tools can authorize ROI figures or booking language in a response.
"""
from typing import Any, Dict, Optional
from src.config import get_settings
from src.models.intelligence import CompanyProfile
from src.models.tool_result import Product, RoiEstimate
from src.utils.llm_client import GenerationService

CALCULATE_ROI = "calculate_roi"
GET_BOOKING_LINK = "get_booking_link"
CREATE_CALENDAR_WIDGET = "create_calendar_widget"

TEAM_SIZE_BY_BUCKET = {
    "1-10": 5,
    "11-50": 25,
    "51-200": 100,
    "201-1000": 500,
    "1000+": 2000,
}
DEFAULT_TEAM_SIZE = 50

ROI_SYSTEM_PROMPT = (
    "You are an expert at calculating ROI for AI consulting and workshops. Provide realistic, "
    "conservative estimates based on team size, current pain points, and the product type. "
    "For workshops, focus on time savings and efficiency gains. For consulting, focus on revenue "
    "impact, cost savings, and strategic value. Return projected ROI as a multiple and payback "
    "period in months."
)


def estimate_team_size(company: Optional[CompanyProfile]) -> int:
    """Exact employee count when known, otherwise the midpoint-ish of the size bucket."""
    if company is None:
        return DEFAULT_TEAM_SIZE
    if company.employee_count:
        return company.employee_count
    return TEAM_SIZE_BY_BUCKET.get(company.size or "", DEFAULT_TEAM_SIZE)


async def calculate_roi(
    generation: GenerationService,
    team_size: int,
    current_pain: str,
    product: Product,
) -> RoiEstimate:
    prompt = (
        f"{ROI_SYSTEM_PROMPT}\n\n"
        f"Calculate realistic ROI for {product} given:\n"
        f"- Team size: {team_size} people\n"
        f"- Current pain: {current_pain}\n\n"
        "Provide conservative, realistic estimates."
    )
    return await generation.generate_object(RoiEstimate, prompt, temperature=0.5)


async def get_booking_link(url: Optional[str] = None) -> Dict[str, Any]:
    booking_url = url or get_settings().booking_url
    return {
        "type": "booking_link",
        "url": booking_url,
        "note": "The user books the slot themselves; no meeting exists until they do.",
    }


async def create_calendar_widget(
    title: str,
    description: Optional[str] = None,
    url: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "type": "calendar_widget",
        "title": title,
        "description": description,
        "url": url or get_settings().booking_url,
        "rendered": True,
    }
