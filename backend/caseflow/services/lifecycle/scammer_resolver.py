"""
Scammer Resolver

Identity resolution for reported bad actors.

Matching rule: an existing profile is the same scammer when ANY single
non-empty identifier (phone, email, payment handle, bank account, routing
code) equals the reported one, compared case-insensitively. When several
profiles match on different identifiers the oldest profile wins, so the
choice is deterministic and no duplicate is created.

The resolver is the only writer of a profile's case set and counters.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from uuid import uuid4

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ...models.db_models import ScammerProfileDB, ScammerStatus, utcnow
from ...models.intake import ScammerDetails, SCAMMER_IDENTIFIER_FIELDS
from ...models.principal import Principal
from .errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

# Profile fields filled from later reports when still empty
_PROFILE_FIELDS = ("name",) + SCAMMER_IDENTIFIER_FIELDS + ("address",)


@dataclass
class ResolveResult:
    scammer_id: str
    is_new: bool
    linked: bool  # False when the case was already linked (retry)


class ScammerResolver:
    """Resolves reported identifiers to a single ScammerProfile."""

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    def find_match(self, details: ScammerDetails) -> Optional[ScammerProfileDB]:
        """Oldest profile sharing at least one identifier, or None."""
        identifiers = details.identifiers()
        if not identifiers:
            return None
        clauses = [
            func.lower(getattr(ScammerProfileDB, field)) == value.lower()
            for field, value in identifiers.items()
        ]
        return (
            self.db.query(ScammerProfileDB)
            .filter(or_(*clauses))
            .order_by(ScammerProfileDB.created_at, ScammerProfileDB.id)
            .with_for_update()
            .first()
        )

    def resolve(
        self,
        identifiers: Union[ScammerDetails, Dict[str, Any]],
        case_id: str,
        amount: float = 0.0,
    ) -> ResolveResult:
        """
        Link `case_id` to the matching profile, or create one.

        Idempotent: resolving the same identifiers for the same case again
        returns the same profile and leaves counters unchanged.
        Writes are flushed, not committed.
        """
        details = identifiers if isinstance(identifiers, ScammerDetails) else ScammerDetails.model_validate(identifiers)
        if not details.has_identifiers():
            raise ValidationError(
                "At least one scammer identifier is required "
                "(phone, email, payment handle, bank account or routing code)"
            )

        now = utcnow()
        profile = self.find_match(details)

        if profile is None:
            profile = ScammerProfileDB(
                id=str(uuid4()),
                case_ids=[case_id],
                case_count=1,
                total_amount=float(amount or 0.0),
                status=ScammerStatus.ACTIVE,
                first_seen=now,
                last_seen=now,
                created_at=now,
                **{f: getattr(details, f) for f in _PROFILE_FIELDS},
            )
            self.db.add(profile)
            self.db.flush()
            logger.info(f"Created scammer profile {profile.id} for case {case_id} ({', '.join(details.identifiers())})")
            return ResolveResult(scammer_id=profile.id, is_new=True, linked=True)

        linked = case_id not in (profile.case_ids or [])
        if linked:
            # Reassign so the JSON column is detected as changed
            profile.case_ids = list(profile.case_ids or []) + [case_id]
            profile.case_count = len(profile.case_ids)
            profile.total_amount = (profile.total_amount or 0.0) + float(amount or 0.0)
        for field in _PROFILE_FIELDS:
            if not getattr(profile, field) and getattr(details, field):
                setattr(profile, field, getattr(details, field))
        profile.last_seen = now
        self.db.flush()

        if linked:
            logger.info(f"Linked case {case_id} to scammer profile {profile.id} (cases={profile.case_count})")
        else:
            logger.info(f"Case {case_id} already linked to scammer profile {profile.id}")
        return ResolveResult(scammer_id=profile.id, is_new=False, linked=linked)

    # =========================================================================
    # ADMINISTRATION
    # =========================================================================

    def get(self, scammer_id: str) -> ScammerProfileDB:
        profile = self.db.query(ScammerProfileDB).filter(ScammerProfileDB.id == scammer_id).first()
        if profile is None:
            raise NotFound(f"Scammer profile {scammer_id} not found")
        return profile

    def update_status(self, scammer_id: str, status: Union[ScammerStatus, str], actor: Principal) -> ScammerProfileDB:
        """Set the investigation status of a profile. Committed by the caller."""
        try:
            new_status = ScammerStatus(status)
        except ValueError as exc:
            raise ValidationError(
                f"Invalid scammer status: {status}",
                details={"allowed": [s.value for s in ScammerStatus]},
            ) from exc
        profile = self.get(scammer_id)
        old_status = profile.status
        profile.status = new_status
        self.db.flush()
        logger.info(
            f"Scammer {scammer_id} status {old_status.value} -> {new_status.value} "
            f"by {actor.role.value}:{actor.id}"
        )
        return profile

    def list_profiles(
        self,
        status: Optional[ScammerStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Dict[str, Any]:
        query = self.db.query(ScammerProfileDB)
        if status is not None:
            query = query.filter(ScammerProfileDB.status == status)
        total = query.count()
        items = (
            query.order_by(ScammerProfileDB.last_seen.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return {"items": [profile_to_dict(p) for p in items], "total": total, "skip": skip, "limit": limit}

    def search(self, query_text: str, limit: int = 20) -> List[ScammerProfileDB]:
        """Substring search over name and identifiers."""
        needle = (query_text or "").strip().lower()
        if not needle:
            raise ValidationError("Search query must not be empty")
        pattern = f"%{needle}%"
        columns = [
            ScammerProfileDB.name, ScammerProfileDB.phone, ScammerProfileDB.email,
            ScammerProfileDB.payment_handle, ScammerProfileDB.bank_account,
        ]
        return (
            self.db.query(ScammerProfileDB)
            .filter(or_(*[func.lower(c).like(pattern) for c in columns]))
            .order_by(ScammerProfileDB.case_count.desc(), ScammerProfileDB.created_at)
            .limit(limit)
            .all()
        )


def profile_to_dict(profile: ScammerProfileDB) -> Dict[str, Any]:
    """Serializable view of a scammer profile."""
    return {
        "id": profile.id,
        "name": profile.name,
        "phone": profile.phone,
        "email": profile.email,
        "payment_handle": profile.payment_handle,
        "bank_account": profile.bank_account,
        "routing_code": profile.routing_code,
        "address": profile.address,
        "case_ids": list(profile.case_ids or []),
        "case_count": profile.case_count,
        "total_amount": profile.total_amount,
        "status": profile.status.value,
        "first_seen": profile.first_seen.isoformat() if profile.first_seen else None,
        "last_seen": profile.last_seen.isoformat() if profile.last_seen else None,
    }
