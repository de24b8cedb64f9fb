"""
Response Validator
Last line of defence between a generated draft and the user.

Checks every draft against hard business rules:
- No ROI numbers unless calculate_roi actually ran
- No booking claims unless a booking tool actually ran
- No model/vendor identity leaks
- No claimed actions the engine cannot perform
- No personalization about role/company the user never confirmed
- Direct questions answered before discovery continues

Policy violations are returned as issues, never raised.
"""
import re
from typing import Iterable, List, Optional
from loguru import logger
from src.models.validation import (
    IdentityClaims,
    IssueType,
    QuickValidationResult,
    Severity,
    ValidationContext,
    ValidationIssue,
    ValidationResult,
)
from src.utils import patterns
from src.utils.fallback_responses import IDENTITY_CONFIRMATION_MESSAGE


def _normalize(value: str) -> str:
    return re.sub(r"\s+", " ", value.lower()).strip()


def detect_identity_hallucination(
    response: str,
    identity: Optional[IdentityClaims],
) -> Optional[ValidationIssue]:
    """
    Flags "you're the <role> at <company>" style personalization.

    Unconfirmed identity makes any such claim critical. With a confirmed
    identity, a company mismatch is critical; claims the context cannot
    back up (no confirmed company or role) are errors.
    """
    if identity is None:
        return None

    confirmed_company = _normalize(identity.company) if identity.company else None
    confirmed_role = _normalize(identity.role) if identity.role else None

    for pattern in patterns.HALLUCINATED_IDENTITY_PATTERNS:
        match = pattern.search(response)
        if not match:
            continue

        groups = match.groups()
        role_claim = groups[0] if len(groups) >= 2 else None
        company_claim = groups[1] if len(groups) >= 2 else groups[0]
        company_claim = _normalize(company_claim) if company_claim else None
        role_claim = _normalize(role_claim) if role_claim else None

        if not identity.confirmed:
            return ValidationIssue(
                type=IssueType.HALLUCINATED_IDENTITY_FACT,
                severity=Severity.CRITICAL,
                message="Response asserts the user's role/company without user confirmation",
                suggestion="Ask the user to confirm name/company/role before personalizing",
            )

        if not confirmed_company or not company_claim:
            return ValidationIssue(
                type=IssueType.HALLUCINATED_IDENTITY_FACT,
                severity=Severity.ERROR,
                message="Response references a company without a confirmed company in context",
                suggestion="Avoid asserting company; ask a lightweight confirmation question if needed",
            )

        if confirmed_company not in company_claim:
            return ValidationIssue(
                type=IssueType.HALLUCINATED_IDENTITY_FACT,
                severity=Severity.CRITICAL,
                message="Response references a company that does not match confirmed context",
                suggestion="Remove the claim and ask the user to confirm their company",
            )

        if role_claim is not None and (not confirmed_role or confirmed_role not in role_claim):
            return ValidationIssue(
                type=IssueType.HALLUCINATED_IDENTITY_FACT,
                severity=Severity.ERROR,
                message="Response asserts a role that is not confirmed in context",
                suggestion="Avoid asserting role; ask naturally as part of discovery",
            )

    return None


def is_direct_question(message: str) -> bool:
    return patterns.matches_any(patterns.QUESTION_INDICATORS, message.strip())


def extract_key_terms(question: str) -> List[str]:
    """Words longer than three letters, minus question filler."""
    cleaned = patterns.QUESTION_PUNCTUATION.sub("", question.lower())
    return [
        word for word in cleaned.split()
        if len(word) > 3 and word not in patterns.QUESTION_STOPWORDS
    ]


def contains_answer(response: str, question: str) -> bool:
    """Keyword heuristic: at least min(2, n) key terms echo back in the response."""
    key_terms = extract_key_terms(question)
    response_lower = response.lower()
    matched = [term for term in key_terms if term in response_lower]
    return len(matched) >= min(2, len(key_terms))


class ResponseValidator:
    """
    Validates generated drafts against the policy table.

    Stateless: a single instance is safe to share across sessions.

    Usage:
        >>> validator = ResponseValidator()
        >>> result = validator.validate(draft, ValidationContext(agent_name="Pitch Agent", stage="PITCHING"))
        >>> if result.should_block:
        ...     # Regenerate or substitute
    """

    def __init__(self, rules: Iterable[patterns.PolicyRule] = patterns.POLICY_RULES):
        self.rules = tuple(rules)

    def validate(self, response: str, context: ValidationContext) -> ValidationResult:
        issues: List[ValidationIssue] = []

        for rule in self.rules:
            if rule.violated_by(response, context.tools_used):
                issues.append(ValidationIssue(
                    type=rule.issue_type,
                    severity=rule.severity,
                    message=rule.message,
                    suggestion=rule.suggestion,
                ))

        identity_issue = detect_identity_hallucination(response, context.identity)
        if identity_issue:
            issues.append(identity_issue)

        if context.user_question and is_direct_question(context.user_question):
            if not contains_answer(response, context.user_question):
                issues.append(ValidationIssue(
                    type=IssueType.SKIPPED_QUESTION,
                    severity=Severity.WARNING,
                    message="User's direct question may not have been answered first",
                    suggestion="Answer the user's question directly before continuing with discovery",
                ))

        should_block = any(i.severity == Severity.CRITICAL for i in issues)

        if issues:
            logger.warning(
                f"🛡️ Response validation issues | agent={context.agent_name} | stage={context.stage} | "
                f"count={len(issues)} | block={should_block} | "
                f"issues={[(i.type.value, i.severity.value) for i in issues]}"
            )

        corrected = None
        if should_block and any(i.type == IssueType.HALLUCINATED_IDENTITY_FACT for i in issues):
            corrected = IDENTITY_CONFIRMATION_MESSAGE

        return ValidationResult(
            is_valid=not issues,
            issues=issues,
            should_block=should_block,
            corrected_response=corrected,
        )

    def quick_validate(
        self,
        response: str,
        tools_used: Iterable[str],
        identity: Optional[IdentityClaims] = None,
    ) -> QuickValidationResult:
        """Critical checks only, for latency-sensitive paths."""
        tools = list(tools_used)
        for rule in patterns.CRITICAL_POLICY_RULES:
            if rule.violated_by(response, tools):
                return QuickValidationResult(has_critical_issue=True, issue=rule.issue_type)

        identity_issue = detect_identity_hallucination(response, identity)
        if identity_issue and identity_issue.severity == Severity.CRITICAL:
            return QuickValidationResult(has_critical_issue=True, issue=identity_issue.type)

        return QuickValidationResult(has_critical_issue=False)

    @staticmethod
    def sanitize_response(response: str) -> str:
        """Last-resort patch for identity leaks. Prefer regeneration."""
        sanitized = response
        for pattern in patterns.IDENTITY_LEAK_PATTERNS:
            sanitized = pattern.sub("I", sanitized)
        return sanitized

    @staticmethod
    def generate_validation_report(result: ValidationResult, context: ValidationContext) -> str:
        if result.is_valid:
            return f"Response validated: Agent={context.agent_name}, Stage={context.stage}"

        issue_lines = "\n".join(
            f"  - [{i.severity.value.upper()}] {i.type.value}: {i.message}"
            for i in result.issues
        )
        return (
            f"Response validation failed: Agent={context.agent_name}, Stage={context.stage}\n"
            f"Issues:\n{issue_lines}\n"
            f"ShouldBlock: {result.should_block}"
        )
