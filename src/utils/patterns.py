"""
Pattern Tables
Every regex the engine matches against user or model text lives here.

Detectors iterate these tables; nothing else in the codebase compiles
conversation-matching patterns of its own.
"""
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Pattern, Sequence
from src.models.exit_signal import ExitIntent
from src.models.validation import IssueType, Severity

_I = re.IGNORECASE


def _compile(patterns: Iterable[str], flags: int = _I) -> tuple[Pattern[str], ...]:
    return tuple(re.compile(p, flags) for p in patterns)


def first_match(patterns: Sequence[Pattern[str]], text: str) -> Optional[re.Match[str]]:
    """Returns the first match of any pattern, scanning in table order."""
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            return match
    return None


def matches_any(patterns: Sequence[Pattern[str]], text: str) -> bool:
    return first_match(patterns, text) is not None


# ============================================
# EXIT INTENT
# ============================================

BOOKING_PATTERNS = _compile([
    # Direct booking language
    r"book\s*(a|an)?\s*(call|meeting|appointment|session|demo|time)",
    r"schedule\s*(a|an)?\s*(call|meeting|appointment|session|demo|time)",
    r"set\s*up\s*(a|an)?\s*(call|meeting|appointment|session)",
    # Availability inquiries
    r"when\s*(are|is)\s*(you|farzad|he)\s*available",
    r"what\s*times?\s*(do you have|work|are available)",
    r"can\s*(we|i)\s*(meet|talk|chat|connect)",
    # Calendar language
    r"calendar",
    r"send\s*(me|over)\s*(your|the)\s*(calendar|availability)",
    # Intent phrases
    r"let'?s\s*(talk|meet|connect|schedule|chat)",
    r"i'?d\s*(like|love|want)\s*to\s*(talk|meet|book|schedule)",
])

WRAP_UP_PATTERNS = _compile([
    # Satisfaction
    r"thank(s|you)?\s*(for|so much|very much)",
    r"that'?s\s*(all|everything|great|perfect|what i needed)",
    r"got\s*(what|everything)\s*(i|we)\s*need",
    r"sounds\s*good",
    r"perfect\s*thanks",
    # Summary requests
    r"can\s*(you|we)\s*summarize",
    r"give\s*(me|us)\s*a\s*summary",
    r"wrap\s*(this|it)\s*up",
    # Ending
    r"i('?m|have to)\s*go(ing)?\s*(now)?",
    r"talk\s*(to you\s*)?(later|soon)",
    r"have\s*a\s*(good|great|nice)\s*(day|one)",
    r"bye",
    r"goodbye",
])

FRUSTRATION_PATTERNS = _compile([
    r"stop",
    r"enough",
    r"annoying",
    r"spam(ming|my)?",
    r"leave\s*me\s*alone",
    r"go\s*away",
    r"shut\s*up",
    # Disinterest
    r"not\s*interested",
    r"don'?t\s*care",
    r"waste\s*(of|my)\s*time",
    # Unsubscribe
    r"unsubscribe",
    r"remove\s*me",
    r"stop\s*contact(ing)?",
    # Strong negative
    r"this\s*is\s*(stupid|dumb|useless)",
    r"i\s*hate\s*this",
])

EXIT_CONFIDENCE = {
    ExitIntent.BOOKING: 0.9,
    ExitIntent.WRAP_UP: 0.8,
    ExitIntent.FRUSTRATION: 0.85,
    ExitIntent.FORCE_EXIT: 0.95,
}

# ============================================
# SENTIMENT MARKERS
# ============================================

POSITIVE_SENTIMENT = re.compile(r"thanks|great|perfect|awesome|love|excellent|amazing|helpful", _I)
INTEREST_SENTIMENT = re.compile(r"interested|want|need|looking for", _I)
STRONG_NEGATIVE_SENTIMENT = re.compile(r"not interested|no thanks|stop|annoying", _I)
MILD_NEGATIVE_SENTIMENT = re.compile(r"don't|can't|won't|shouldn't", _I)

# ============================================
# CORRECTIONS
# ============================================

CORRECTION_PATTERNS = _compile([
    r"that'?s (wrong|incorrect|not right|not correct)",
    r"(no|nope),? (that'?s|it'?s) (not|wrong)",
    r"i'?m (not|don'?t) (a|an|the)",
    r"(my|the) (name|company|role) (is|isn'?t|'?s)",
    r"(actually|correction)",
])

JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

# ============================================
# SELF-STATED SENIORITY
# ============================================

# The user has to be talking about themselves: "I'm the CTO", "as VP of Sales", "my title is Director".
_SELF = r"\b(?:i'?m|i am|as|my (?:role|title|position) is)\s+(?:the\s+|a\s+|an\s+)?(?:co-?)?"

SENIORITY_PATTERNS: tuple[tuple[str, Pattern[str]], ...] = (
    ("VP", re.compile(_SELF + r"(?:svp|evp|vp|vice\s+president)\b", _I)),
    ("C-Level", re.compile(
        _SELF + r"(?:ceo|cto|cfo|coo|cio|cmo|cro|founder|owner|president|chief\s+\w+(?:\s+\w+)?\s+officer)\b",
        _I,
    )),
    ("Director", re.compile(_SELF + r"(?!not\b)(?:\w+\s+)?(?:director|head\s+of)\b", _I)),
)

# ============================================
# RESPONSE POLICY
# ============================================

FABRICATED_ROI_PATTERNS = _compile([
    r"\b(\d{1,3}(?:,\d{3})*(?:\.\d+)?)\s*%\s*(?:ROI|return|savings?|increase|reduction|improvement)",
    r"\b(?:ROI|return|savings?)\s*(?:of|at|around)?\s*\$?\d+",
    r"\bsave\s+(?:up to\s+)?\$?\d{3,}",
    r"\b(?:increase|boost|improve)\s+(?:revenue|profit|sales)\s+(?:by\s+)?\d+",
])

FALSE_BOOKING_PATTERNS = _compile([
    r"\b(?:I'?(?:ve|ll)|I have|I will)\s+(?:booked?|scheduled?|sent?|confirmed?)\s+(?:a|the|your)?\s*(?:meeting|appointment|calendar|invite)",
    r"\b(?:meeting|appointment|call)\s+(?:is\s+)?(?:booked|scheduled|confirmed|set)",
    r"\b(?:sent|sending)\s+(?:a|the|an?)?\s*(?:calendar\s+)?invite",
    r"\byour?\s+(?:meeting|appointment)\s+(?:is|has been)\s+(?:booked|confirmed)",
])

IDENTITY_LEAK_PATTERNS = _compile([
    r"\bI(?:'m| am)\s+(?:Gemini|Google|an? AI|ChatGPT|Claude|Anthropic)",
    r"\b(?:as|being)\s+(?:a|an)\s+(?:AI|language model|LLM)",
    r"\bGemini(?:'s|\s+)(?:capabilities|features|model)",
])

HALLUCINATED_ACTION_PATTERNS = _compile([
    r"\b(?:I'?(?:ve|ll)|I have|I will)\s+(?:emailed?|contacted?|notified?)\s+(?:you|your team|the team)",
    r"\b(?:I'?(?:ve|ll)|I have|I will)\s+(?:created?|generated?|prepared?)\s+(?:a|the|your)?\s*(?:proposal|contract|invoice|report)",
])

# Group layout: "you're the <role> at <company>" -> (role, company); "over at <company>" -> (company,)
# Only the lead-in words ignore case; a company name has to start with a capital.
HALLUCINATED_IDENTITY_PATTERNS = _compile([
    r"\b(?i:you(?:'re| are))\s+(?:(?i:the)\s+)?([^\n.,;:!?]{0,60}?)\s+(?i:at|over at|with)\s+([A-Z][\w&.'-]+(?:\s+[A-Z][\w&.'-]+){0,6})",
    r"\b(?i:over\s+at)\s+([A-Z][\w&.'-]+(?:\s+[A-Z][\w&.'-]+){0,6})\b",
], flags=0)


@dataclass(frozen=True)
class PolicyRule:
    """One declarative response check. At most one issue per rule per response."""
    name: str
    issue_type: IssueType
    severity: Severity
    patterns: tuple[Pattern[str], ...]
    message: str
    suggestion: Optional[str] = None
    exempt_tools: frozenset[str] = field(default_factory=frozenset)

    def applies(self, tools_used: Iterable[str]) -> bool:
        return self.exempt_tools.isdisjoint(tools_used)

    def violated_by(self, response: str, tools_used: Iterable[str]) -> bool:
        return self.applies(tools_used) and matches_any(self.patterns, response)


POLICY_RULES: tuple[PolicyRule, ...] = (
    PolicyRule(
        name="fabricated_roi",
        issue_type=IssueType.FABRICATED_ROI,
        severity=Severity.CRITICAL,
        patterns=FABRICATED_ROI_PATTERNS,
        exempt_tools=frozenset({"calculate_roi"}),
        message="ROI numbers mentioned without using calculate_roi tool",
        suggestion="Use the calculate_roi tool before mentioning any specific numbers",
    ),
    PolicyRule(
        name="false_booking_claim",
        issue_type=IssueType.FALSE_BOOKING_CLAIM,
        severity=Severity.CRITICAL,
        patterns=FALSE_BOOKING_PATTERNS,
        exempt_tools=frozenset({"get_booking_link", "create_calendar_widget"}),
        message="Claims about booking/scheduling without using booking tools",
        suggestion="Use get_booking_link to provide a link, and clarify you cannot book directly",
    ),
    PolicyRule(
        name="identity_leak",
        issue_type=IssueType.IDENTITY_LEAK,
        severity=Severity.ERROR,
        patterns=IDENTITY_LEAK_PATTERNS,
        message="Response reveals the underlying model or vendor",
        suggestion="Respond as the configured persona, not as any other AI assistant",
    ),
    PolicyRule(
        name="hallucinated_action",
        issue_type=IssueType.HALLUCINATED_ACTION,
        severity=Severity.ERROR,
        patterns=HALLUCINATED_ACTION_PATTERNS,
        exempt_tools=frozenset({"draft_follow_up_email", "generate_proposal"}),
        message="Response claims to have performed actions the AI cannot do",
        suggestion="Only claim actions that were actually performed via tools",
    ),
)

# Rules cheap enough for the quick path: only the blocking ones.
CRITICAL_POLICY_RULES = tuple(r for r in POLICY_RULES if r.severity == Severity.CRITICAL)

# ============================================
# DIRECT QUESTIONS
# ============================================

QUESTION_INDICATORS = _compile([
    r"\?$",
    r"^(?:what|who|where|when|why|how|is|are|can|could|would|do|does|did)\b",
    r"\b(?:tell me|explain|clarify)\b",
])

QUESTION_STOPWORDS = frozenset({
    "what", "where", "when", "how", "does", "your", "this", "that", "have", "with",
})

QUESTION_PUNCTUATION = re.compile(r"[?.,!]")

# ============================================
# TRANSIENT INFRASTRUCTURE ERRORS
# ============================================

TRANSIENT_ERROR_MARKERS = (
    "network",
    "timeout",
    "econnreset",
    "enotfound",
    "econnrefused",
    "temporary",
    "rate limit",
    "429",
    "503",
    "502",
)
