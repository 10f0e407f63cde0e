from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import get_rollout_gate, require_admin
from app.models.user import User
from app.services.federation.audit import audit
from app.services.federation.ledger import errored_reason_counts, summarize_ledger
from app.services.federation.rollout import RolloutGate

router = APIRouter(prefix="/federation", tags=["federation"])


@router.get("/rollout")
def get_rollout(
    _admin: User = Depends(require_admin),
    gate: RolloutGate = Depends(get_rollout_gate),
):
    return gate.describe()


@router.get("/audit")
def get_audit(
    clinic_id: int | None = Query(default=None),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_admin),
):
    report = audit(db, clinic_id=clinic_id)
    return {
        **report.as_dict(),
        "ledger": summarize_ledger(db),
        "ledger_errors": errored_reason_counts(db),
    }
