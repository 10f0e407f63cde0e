"""Deterministic identity matching.

Given the identifying hints for a person, the clinic profiles that already
exist for that kind of person and the keys each global identity was created
with, decide which global identity (if any) the hints refer to. The
function is pure: callers load candidates, this module only decides.

Rules, in priority order:

``phone``
    exact (normalized) phone match
``email``
    exact (normalized, case-insensitive) email match
``phone_or_email+dob``
    phone or email match together with an exact date of birth match; used to
    settle a conflict where the phone and email rules point at different people

Within a rule the earliest candidate (created_at, id) wins, so repeated calls
over the same data always return the same identity. When phone and email point
at different identities and date of birth cannot separate them, the decision is
"no match" rather than a guess.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable

from app.services.federation.types import MatchHints, normalize_email, normalize_phone

RULE_PHONE = "phone"
RULE_EMAIL = "email"
RULE_CONTACT_AND_DOB = "phone_or_email+dob"

_EPOCH = datetime.min


@dataclass(frozen=True)
class MatchCandidate:
    profile_id: int | None
    global_person_id: int
    phone: str | None = None
    email: str | None = None
    date_of_birth: date | None = None
    created_at: datetime | None = None

    @classmethod
    def from_profile(cls, profile) -> "MatchCandidate":
        return cls(
            profile_id=profile.id,
            global_person_id=profile.global_person_id,
            phone=profile.phone,
            email=profile.email,
            date_of_birth=profile.date_of_birth,
            created_at=profile.created_at,
        )

    @classmethod
    def from_global_person(cls, person) -> "MatchCandidate":
        return cls(
            profile_id=None,
            global_person_id=person.id,
            phone=person.match_phone,
            email=person.match_email,
            date_of_birth=person.match_date_of_birth,
            created_at=person.created_at,
        )

    def sort_key(self) -> tuple[datetime, int, int]:
        created = self.created_at or _EPOCH
        if created.tzinfo is not None:
            created = created.replace(tzinfo=None)
        # Identity-level keys sort after profiles created in the same instant.
        if self.profile_id is None:
            return (created, 1, self.global_person_id)
        return (created, 0, self.profile_id)


@dataclass(frozen=True)
class MatchDecision:
    global_person_id: int | None
    rule: str | None = None
    ambiguous: bool = False
    conflicting_ids: tuple[int, ...] = field(default_factory=tuple)

    @property
    def matched(self) -> bool:
        return self.global_person_id is not None


NO_MATCH = MatchDecision(global_person_id=None)


def _first_by(candidates: list[MatchCandidate], predicate) -> MatchCandidate | None:
    for candidate in candidates:
        if predicate(candidate):
            return candidate
    return None


def decide_match(hints: MatchHints, candidates: Iterable[MatchCandidate]) -> MatchDecision:
    ordered = sorted(candidates, key=MatchCandidate.sort_key)
    if not ordered or hints.is_empty:
        return NO_MATCH

    def phone_matches(candidate: MatchCandidate) -> bool:
        return hints.phone is not None and normalize_phone(candidate.phone) == hints.phone

    def email_matches(candidate: MatchCandidate) -> bool:
        return hints.email is not None and normalize_email(candidate.email) == hints.email

    by_phone = _first_by(ordered, phone_matches)
    by_email = _first_by(ordered, email_matches)

    if by_phone and by_email and by_phone.global_person_id != by_email.global_person_id:
        conflicting = (by_phone.global_person_id, by_email.global_person_id)
        if hints.date_of_birth is None:
            return MatchDecision(None, ambiguous=True, conflicting_ids=conflicting)
        dob_ids: list[int] = []
        for candidate in ordered:
            if not (phone_matches(candidate) or email_matches(candidate)):
                continue
            if candidate.date_of_birth != hints.date_of_birth:
                continue
            if candidate.global_person_id not in dob_ids:
                dob_ids.append(candidate.global_person_id)
        if len(dob_ids) == 1:
            return MatchDecision(dob_ids[0], rule=RULE_CONTACT_AND_DOB, conflicting_ids=conflicting)
        return MatchDecision(None, ambiguous=True, conflicting_ids=conflicting)

    if by_phone:
        return MatchDecision(by_phone.global_person_id, rule=RULE_PHONE)
    if by_email:
        return MatchDecision(by_email.global_person_id, rule=RULE_EMAIL)
    return NO_MATCH
