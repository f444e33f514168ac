from __future__ import annotations

from enum import StrEnum

PASS_MARKER = "STATUS: PASS"
FAIL_MARKER = "STATUS: FAIL"
WARNINGS_MARKER = "PASS_WITH_WARNINGS"


class ReviewOutcome(StrEnum):
    PASS = "PASS"
    PASS_WITH_WARNINGS = "PASS_WITH_WARNINGS"
    FAIL = "FAIL"
    PENDING = "PENDING"

    @property
    def passed(self) -> bool:
        return self in {ReviewOutcome.PASS, ReviewOutcome.PASS_WITH_WARNINGS}


def _has_warnings(text: str) -> bool:
    if WARNINGS_MARKER in text:
        return True
    # Loose match on the reviewer's "Warnings (non-blocking)" section heading.
    return "Warnings" in text and "Non-blocking" in text


def classify_review(text: str | None, review_signal_present: bool) -> ReviewOutcome:
    """Classify a review artifact by its ``STATUS:`` line.

    ``text`` is ``None`` when the artifact does not exist or could not be read.
    Anything inconclusive, including a half-written file, is ``PENDING``.
    """
    if not review_signal_present or text is None:
        return ReviewOutcome.PENDING
    if PASS_MARKER in text:
        if _has_warnings(text):
            return ReviewOutcome.PASS_WITH_WARNINGS
        return ReviewOutcome.PASS
    if FAIL_MARKER in text:
        return ReviewOutcome.FAIL
    return ReviewOutcome.PENDING
