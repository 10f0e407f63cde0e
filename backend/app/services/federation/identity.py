from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.clinic_profile import ClinicDoctor, ClinicPatient
from app.models.global_identity import GlobalDoctor, GlobalPatient
from app.models.user import User
from app.services.federation.errors import NotFound
from app.services.federation.matching import MatchCandidate, decide_match
from app.services.federation.types import MatchHints, PersonKind

logger = logging.getLogger(__name__)

RULE_LOGIN_ACCOUNT = "login_account"

GLOBAL_MODELS = {
    PersonKind.doctor: GlobalDoctor,
    PersonKind.patient: GlobalPatient,
}
PROFILE_MODELS = {
    PersonKind.doctor: ClinicDoctor,
    PersonKind.patient: ClinicPatient,
}
_PROFILE_GLOBAL_FK = {
    PersonKind.doctor: ClinicDoctor.global_doctor_id,
    PersonKind.patient: ClinicPatient.global_patient_id,
}

GlobalPerson = GlobalDoctor | GlobalPatient


@dataclass(frozen=True)
class IdentityResolution:
    person: GlobalPerson
    created: bool = False
    rule: str | None = None


def load_match_candidates(
    session: Session,
    kind: PersonKind,
    hints: MatchHints,
    login_account_id: int | None = None,
) -> list[MatchCandidate]:
    """Profiles and global identities sharing a phone or email with the hints."""
    profile_model = PROFILE_MODELS[kind]
    global_model = GLOBAL_MODELS[kind]
    profile_conditions = []
    global_conditions = []
    if hints.phone:
        profile_conditions.append(profile_model.phone == hints.phone)
        global_conditions.append(global_model.match_phone == hints.phone)
    if hints.email:
        profile_conditions.append(profile_model.email == hints.email)
        global_conditions.append(global_model.match_email == hints.email)
    if not profile_conditions:
        return []

    profile_stmt = (
        select(profile_model)
        .join(global_model, global_model.id == _PROFILE_GLOBAL_FK[kind])
        .where(or_(*profile_conditions))
        .order_by(profile_model.created_at.asc(), profile_model.id.asc())
    )
    global_stmt = (
        select(global_model)
        .where(or_(*global_conditions))
        .order_by(global_model.created_at.asc(), global_model.id.asc())
    )
    if login_account_id is not None:
        same_login = or_(global_model.user_id.is_(None), global_model.user_id == login_account_id)
        profile_stmt = profile_stmt.where(same_login)
        global_stmt = global_stmt.where(same_login)

    candidates = [
        MatchCandidate.from_profile(profile) for profile in session.scalars(profile_stmt).unique()
    ]
    candidates.extend(
        MatchCandidate.from_global_person(person)
        for person in session.scalars(global_stmt).unique()
    )
    return candidates


def find_global_person(
    session: Session,
    kind: PersonKind,
    login_account_id: int | None = None,
    hints: MatchHints | None = None,
) -> IdentityResolution | None:
    """Look up an existing global identity without creating anything."""
    hints = hints or MatchHints()
    global_model = GLOBAL_MODELS[kind]

    if login_account_id is not None:
        if session.get(User, login_account_id) is None:
            raise NotFound("User", login_account_id)
        existing = session.scalar(
            select(global_model).where(global_model.user_id == login_account_id)
        )
        if existing is not None:
            return IdentityResolution(existing, rule=RULE_LOGIN_ACCOUNT)

    decision = decide_match(
        hints, load_match_candidates(session, kind, hints, login_account_id=login_account_id)
    )
    if decision.ambiguous:
        logger.warning(
            "Ambiguous identity match; treating as no match",
            extra={
                "kind": kind.value,
                "conflicting_global_ids": list(decision.conflicting_ids),
            },
        )
    if not decision.matched:
        return None
    person = session.get(global_model, decision.global_person_id)
    if person is None:
        return None
    return IdentityResolution(person, rule=decision.rule)


def _create_global_person(
    session: Session,
    kind: PersonKind,
    login_account_id: int | None,
    hints: MatchHints,
) -> IdentityResolution:
    global_model = GLOBAL_MODELS[kind]
    person = global_model(
        user_id=login_account_id,
        match_phone=hints.phone,
        match_email=hints.email,
        match_date_of_birth=hints.date_of_birth,
    )
    try:
        with session.begin_nested():
            session.add(person)
    except IntegrityError:
        if login_account_id is None:
            raise
        existing = session.scalar(
            select(global_model).where(global_model.user_id == login_account_id)
        )
        if existing is None:
            raise
        logger.info(
            "Global identity already created concurrently; using existing record",
            extra={"kind": kind.value, "user_id": login_account_id, "global_id": existing.id},
        )
        return IdentityResolution(existing, rule=RULE_LOGIN_ACCOUNT)
    logger.info(
        "Global identity created",
        extra={"kind": kind.value, "user_id": login_account_id, "global_id": person.id},
    )
    return IdentityResolution(person, created=True)


def resolve_global_person(
    session: Session,
    kind: PersonKind,
    login_account_id: int | None = None,
    hints: MatchHints | None = None,
) -> IdentityResolution:
    hints = hints or MatchHints()
    found = find_global_person(session, kind, login_account_id=login_account_id, hints=hints)
    if found is not None:
        return found
    return _create_global_person(session, kind, login_account_id, hints)


def resolve_or_create_global_person(
    session: Session,
    kind: PersonKind,
    login_account_id: int | None = None,
    hints: MatchHints | None = None,
) -> GlobalPerson:
    return resolve_global_person(
        session, kind, login_account_id=login_account_id, hints=hints
    ).person
