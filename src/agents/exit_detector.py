"""
Exit Intent Detector
Reads the latest user turn for signals that the conversation should end:

- BOOKING: user wants to schedule a call
- WRAP_UP: user is satisfied and ready to end
- FRUSTRATION: user is annoyed or wants to leave
- FORCE_EXIT: repeated frustration inside the cooldown window
"""
import threading
import time
from typing import Callable, Dict, Optional, Sequence
from loguru import logger
from src.config import get_settings
from src.models.exit_signal import ExitAttemptState, ExitDetectionResult, ExitIntent, SentimentTrend
from src.models.message import ConversationTurn, MessageRole, user_turns
from src.utils import patterns
from src.utils.fallback_responses import EXIT_RESPONSES, SUGGESTED_EXIT_RESPONSES

RECENT_TURN_WINDOW = 5
SENTIMENT_WINDOW = 10
SENTIMENT_TREND_THRESHOLD = 0.15

_REASONS = {
    ExitIntent.BOOKING: "User wants to book a meeting",
    ExitIntent.WRAP_UP: "User is satisfied and ready to end",
    ExitIntent.FRUSTRATION: "User is showing signs of frustration",
    ExitIntent.FORCE_EXIT: "Multiple exit attempts detected",
}


def _result(intent: ExitIntent) -> ExitDetectionResult:
    return ExitDetectionResult(
        intent=intent,
        confidence=patterns.EXIT_CONFIDENCE[intent],
        should_force_exit=intent == ExitIntent.FORCE_EXIT,
        reason=_REASONS[intent],
        suggested_response=SUGGESTED_EXIT_RESPONSES[intent],
    )


class ExitIntentTracker:
    """
    Session-keyed exit detection.

    Frustration attempts are counted per session: a second frustrated turn
    within the cooldown window forces a graceful exit. A turn after the
    window restarts the count at one. Sessions idle for longer than
    `state_ttl_seconds` are evicted by the next detection call after that
    period elapses.

    Usage:
        >>> tracker = ExitIntentTracker()
        >>> tracker.reset("sess-1")
        >>> result = tracker.detect_exit_intent(turns, session_id="sess-1")
        >>> if result.should_force_exit: ...
    """

    def __init__(
        self,
        cooldown_seconds: float | None = None,
        force_threshold: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        state_ttl_seconds: float | None = None,
    ):
        settings = get_settings()
        self.cooldown_seconds = cooldown_seconds if cooldown_seconds is not None else settings.exit_cooldown_seconds
        self.force_threshold = force_threshold or settings.exit_force_threshold
        self.state_ttl_seconds = (
            state_ttl_seconds if state_ttl_seconds is not None else settings.exit_state_ttl_seconds
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._states: Dict[str, ExitAttemptState] = {}
        self._last_sweep = clock()

    @property
    def tracked_sessions(self) -> int:
        with self._lock:
            return len(self._states)

    def reset(self, session_id: str = "default") -> None:
        """Call when a session starts."""
        with self._lock:
            self._states.pop(session_id, None)

    reset_exit_tracker = reset

    def get_exit_attempts(self, session_id: str = "default") -> int:
        with self._lock:
            state = self._states.get(session_id)
            return state.attempts if state else 0

    def prune(self, older_than: float | None = None, now: float | None = None) -> int:
        """
        Evicts sessions whose last frustrated turn is older than `older_than` seconds.

        Returns:
            Number of sessions evicted
        """
        ttl = older_than if older_than is not None else self.state_ttl_seconds
        current = now if now is not None else self._clock()
        with self._lock:
            self._last_sweep = current
            stale = [
                sid for sid, state in self._states.items()
                if state.last_attempt_at is None or current - state.last_attempt_at > ttl
            ]
            for sid in stale:
                del self._states[sid]
        if stale:
            logger.debug(f"Pruned {len(stale)} stale exit-tracker sessions")
        return len(stale)

    def _sweep_if_due(self, now: float) -> None:
        """At most one prune per TTL period, piggybacked on detection calls."""
        if now - self._last_sweep >= self.state_ttl_seconds:
            self.prune(now=now)

    def _record_frustration(self, session_id: str, now: float) -> int:
        with self._lock:
            state = self._states.setdefault(session_id, ExitAttemptState())
            if state.last_attempt_at is None or now - state.last_attempt_at > self.cooldown_seconds:
                state.attempts = 1
            else:
                state.attempts += 1
            state.last_attempt_at = now
            return state.attempts

    def detect_exit_intent(
        self,
        messages: Sequence[ConversationTurn],
        session_id: str = "default",
        now: float | None = None,
    ) -> ExitDetectionResult:
        """
        Classifies the latest user turn among the last five turns.
        Booking wins over wrap-up, which wins over frustration.
        """
        current = now if now is not None else self._clock()
        self._sweep_if_due(current)

        recent_users = user_turns(messages[-RECENT_TURN_WINDOW:])
        if not recent_users:
            return ExitDetectionResult()

        text = recent_users[-1].content

        if patterns.matches_any(patterns.BOOKING_PATTERNS, text):
            return _result(ExitIntent.BOOKING)

        if patterns.matches_any(patterns.WRAP_UP_PATTERNS, text):
            return _result(ExitIntent.WRAP_UP)

        if patterns.matches_any(patterns.FRUSTRATION_PATTERNS, text):
            attempts = self._record_frustration(session_id, current)
            if attempts >= self.force_threshold:
                logger.warning(f"🚪 Forcing exit for session {session_id} after {attempts} attempts")
                return _result(ExitIntent.FORCE_EXIT)
            return _result(ExitIntent.FRUSTRATION)

        return ExitDetectionResult()

    def should_force_end(
        self,
        messages: Sequence[ConversationTurn],
        session_id: str = "default",
        now: float | None = None,
    ) -> bool:
        result = self.detect_exit_intent(messages, session_id=session_id, now=now)
        return result.should_force_exit or self.get_exit_attempts(session_id) >= self.force_threshold


def get_exit_response(intent: Optional[ExitIntent]) -> str:
    """Closing line for an exit intent; empty when there is none."""
    if intent is None:
        return ""
    return EXIT_RESPONSES.get(intent, "")


def _score_turn(text: str) -> float:
    score = 0.5
    if patterns.POSITIVE_SENTIMENT.search(text):
        score += 0.2
    if patterns.INTEREST_SENTIMENT.search(text):
        score += 0.1
    if patterns.STRONG_NEGATIVE_SENTIMENT.search(text):
        score -= 0.3
    if patterns.MILD_NEGATIVE_SENTIMENT.search(text):
        score -= 0.1
    return max(0.0, min(1.0, score))


def analyze_sentiment_trend(messages: Sequence[ConversationTurn]) -> SentimentTrend:
    """Keyword sentiment over the last ten user turns, first half vs second half."""
    recent = [m for m in messages if m.role == MessageRole.USER][-SENTIMENT_WINDOW:]
    if len(recent) < 3:
        return SentimentTrend(trend="stable", average_sentiment=0.5)

    scores = [_score_turn(m.content.lower()) for m in recent]
    average = sum(scores) / len(scores)

    midpoint = len(scores) // 2
    first_half = sum(scores[:midpoint]) / midpoint
    second_half = sum(scores[midpoint:]) / (len(scores) - midpoint)

    trend = "stable"
    if second_half - first_half > SENTIMENT_TREND_THRESHOLD:
        trend = "improving"
    elif first_half - second_half > SENTIMENT_TREND_THRESHOLD:
        trend = "declining"

    return SentimentTrend(trend=trend, average_sentiment=average)


# Process-wide tracker; state inside is still keyed by session.
exit_tracker = ExitIntentTracker()


def detect_exit_intent(
    messages: Sequence[ConversationTurn],
    session_id: str = "default",
    now: float | None = None,
) -> ExitDetectionResult:
    return exit_tracker.detect_exit_intent(messages, session_id=session_id, now=now)


def reset_exit_tracker(session_id: str = "default") -> None:
    exit_tracker.reset(session_id)


def get_exit_attempts(session_id: str = "default") -> int:
    return exit_tracker.get_exit_attempts(session_id)


def should_force_end(messages: Sequence[ConversationTurn], session_id: str = "default") -> bool:
    return exit_tracker.should_force_end(messages, session_id=session_id)
