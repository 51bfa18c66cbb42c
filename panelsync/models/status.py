"""
Panelsync
Status vocabularies.

Two namespaces are kept apart:
    - StudyStatus: the provider's wording, as returned by the Prolific API
    - VariationStatus / TestStatus: what we store locally

translate_study_status() is the only bridge between them, so a change in
provider wording never reaches stored rows.
"""

from __future__ import annotations

from enum import Enum


class StudyStatus(str, Enum):
    """Study lifecycle states reported by the panel provider."""

    UNPUBLISHED = "UNPUBLISHED"
    SCHEDULED = "SCHEDULED"
    ACTIVE = "ACTIVE"
    AWAITING_REVIEW = "AWAITING REVIEW"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"

    @classmethod
    def parse(cls, raw: str | None) -> StudyStatus | None:
        """Return the matching member, or None for anything unrecognised."""
        if not raw:
            return None
        normalized = str(raw).strip().upper().replace("_", " ")
        for member in cls:
            if member.value == normalized:
                return member
        return None


class VariationStatus(str, Enum):
    """Local mirror of a variation's study state (``prolific_status``)."""

    PENDING = "pending"
    ACTIVE = "active"
    NEEDS_REVIEW = "needs review"
    COMPLETE = "complete"

    @property
    def rank(self) -> int:
        return _VARIATION_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self is VariationStatus.COMPLETE

    @classmethod
    def from_stored(cls, value: str | None) -> VariationStatus:
        """Read a stored ``prolific_status``; NULL and unknown values are pending."""
        if not value:
            return cls.PENDING
        for member in cls:
            if member.value == value:
                return member
        return cls.PENDING


_VARIATION_RANK = {
    VariationStatus.PENDING: 0,
    VariationStatus.ACTIVE: 1,
    VariationStatus.NEEDS_REVIEW: 2,
    VariationStatus.COMPLETE: 3,
}


class TestStatus(str, Enum):
    """Test lifecycle. Reconciliation only ever writes COMPLETE."""

    __test__ = False  # keep pytest from collecting this as a test class

    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETE = "complete"


VARIATION_TYPES = ("a", "b", "c")

_STUDY_TO_VARIATION = {
    StudyStatus.COMPLETED: VariationStatus.COMPLETE,
    StudyStatus.AWAITING_REVIEW: VariationStatus.NEEDS_REVIEW,
    StudyStatus.ACTIVE: VariationStatus.ACTIVE,
}


def translate_study_status(raw: str | StudyStatus | None) -> VariationStatus:
    """Map provider wording onto the local vocabulary.

    Unknown, missing, unpublished, scheduled and paused studies all map to
    PENDING, which never counts as finished.
    """
    status = raw if isinstance(raw, StudyStatus) else StudyStatus.parse(raw)
    if status is None:
        return VariationStatus.PENDING
    return _STUDY_TO_VARIATION.get(status, VariationStatus.PENDING)


def can_transition(current: VariationStatus, new: VariationStatus) -> bool:
    """True only for strictly forward moves; complete is terminal."""
    return new.rank > current.rank
