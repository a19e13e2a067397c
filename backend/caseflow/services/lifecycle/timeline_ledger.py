"""
Timeline Ledger

Append-only per-case record of stage activity. The single source of truth
for "what happened when" on a case.

Core Principles:
1. The ledger records. It never decides which transitions are legal.
2. Append-only: entries are never deleted and their stage/status never change.
3. At most one COMPLETED entry per (case, stage, revision). PENDING and FAILED
   entries may coexist with a later COMPLETED one.
4. Case status is derivable from the ledger alone (derive_status).
5. One-entry-per-stage views are read-time projections, never mutations.
"""
import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models.db_models import CaseStage, EntryStatus, TimelineEntryDB, utcnow
from ...models.principal import Principal
from .errors import DuplicateStage, NotFound
from .stages import STAGE_ORDER, get_stage_config, stage_label

logger = logging.getLogger(__name__)


class TimelineLedger:
    """
    Append/read interface over the case_timeline table.

    Writes are flushed, never committed; the calling service owns the
    transaction so a stage transition lands all-or-nothing.
    """

    def __init__(self, db: Session):
        self.db = db

    # =========================================================================
    # WRITES
    # =========================================================================

    def append(
        self,
        case_id: str,
        stage: CaseStage,
        status: EntryStatus,
        description: str,
        actor: Principal,
        metadata: Optional[Dict[str, Any]] = None,
        revision: int = 0,
    ) -> TimelineEntryDB:
        """
        Append one entry.

        Raises DuplicateStage when completing a stage that already has a
        completed entry for this revision. The explicit check covers the
        common case; the partial unique index covers a concurrent writer
        that slipped past it, in which case the session is rolled back.
        """
        if status == EntryStatus.COMPLETED and self.has_completed(case_id, stage, revision):
            raise DuplicateStage(
                f"Stage {stage.value} is already completed for this case",
                details={"case_id": case_id, "stage": stage.value, "revision": revision},
            )

        entry = TimelineEntryDB(
            id=str(uuid4()),
            case_id=case_id,
            sequence=self._next_sequence(case_id),
            revision=revision,
            stage=stage,
            label=stage_label(stage),
            status=status,
            description=description,
            completed_at=utcnow() if status == EntryStatus.COMPLETED else None,
            actor_id=actor.id,
            actor_role=actor.role,
            actor_name=actor.display_name,
            entry_metadata=dict(metadata or {}),
        )
        self.db.add(entry)
        try:
            self.db.flush()  # Get ID and hit the unique index without committing
        except IntegrityError as exc:
            self.db.rollback()
            raise DuplicateStage(
                f"Stage {stage.value} was completed concurrently",
                details={"case_id": case_id, "stage": stage.value, "revision": revision},
            ) from exc

        logger.info(
            f"Timeline {case_id}: {stage.value} -> {status.value} "
            f"by {actor.role.value}:{actor.id} (rev {revision}, seq {entry.sequence})"
        )
        return entry

    def attach_metadata(self, entry_id: str, key: str, value: Any) -> TimelineEntryDB:
        """
        Attach trailing metadata to an existing entry.

        Only adds/replaces `key` inside entry_metadata; stage, status and
        timestamps are untouched.
        """
        entry = self.db.query(TimelineEntryDB).filter(TimelineEntryDB.id == entry_id).first()
        if entry is None:
            raise NotFound(f"Timeline entry {entry_id} not found")
        # Reassign so the JSON column is detected as changed
        entry.entry_metadata = {**(entry.entry_metadata or {}), key: value}
        self.db.flush()
        return entry

    def _next_sequence(self, case_id: str) -> int:
        current = (
            self.db.query(func.max(TimelineEntryDB.sequence))
            .filter(TimelineEntryDB.case_id == case_id)
            .scalar()
        )
        return (current or 0) + 1

    # =========================================================================
    # READS
    # =========================================================================

    def read(self, case_id: str) -> List[TimelineEntryDB]:
        """All entries for a case, in creation order."""
        return (
            self.db.query(TimelineEntryDB)
            .filter(TimelineEntryDB.case_id == case_id)
            .order_by(TimelineEntryDB.sequence, TimelineEntryDB.created_at)
            .all()
        )

    def has_completed(self, case_id: str, stage: CaseStage, revision: int) -> bool:
        return (
            self.db.query(TimelineEntryDB.id)
            .filter(
                TimelineEntryDB.case_id == case_id,
                TimelineEntryDB.stage == stage,
                TimelineEntryDB.revision == revision,
                TimelineEntryDB.status == EntryStatus.COMPLETED,
            )
            .first()
            is not None
        )

    def completed_entry(self, case_id: str, stage: CaseStage, revision: int) -> Optional[TimelineEntryDB]:
        return (
            self.db.query(TimelineEntryDB)
            .filter(
                TimelineEntryDB.case_id == case_id,
                TimelineEntryDB.stage == stage,
                TimelineEntryDB.revision == revision,
                TimelineEntryDB.status == EntryStatus.COMPLETED,
            )
            .first()
        )

    def derive_status(self, case_id: str, revision: int) -> Optional[CaseStage]:
        """Stage of the most recently completed entry in the given revision."""
        latest = (
            self.db.query(TimelineEntryDB)
            .filter(
                TimelineEntryDB.case_id == case_id,
                TimelineEntryDB.revision == revision,
                TimelineEntryDB.status == EntryStatus.COMPLETED,
            )
            .order_by(TimelineEntryDB.sequence.desc())
            .first()
        )
        return latest.stage if latest else None

    def ordered_projection(self, case_id: str, revision: int) -> List[Dict[str, Any]]:
        """
        One item per stage in canonical order for the given revision.

        For each stage: the completed entry if present, otherwise the latest
        pending/failed entry, otherwise a synthesized pending placeholder.
        `rejected` appears right after `report_submitted` only when it was
        recorded in this revision.
        """
        entries = [e for e in self.read(case_id) if e.revision == revision]

        chosen: Dict[CaseStage, TimelineEntryDB] = {}
        for entry in entries:
            current = chosen.get(entry.stage)
            if current is not None and current.status == EntryStatus.COMPLETED:
                continue
            # Later entries win unless a completed one is already chosen
            chosen[entry.stage] = entry

        stages = list(STAGE_ORDER)
        if CaseStage.REJECTED in chosen:
            stages.insert(1, CaseStage.REJECTED)

        projection = []
        for stage in stages:
            entry = chosen.get(stage)
            if entry is not None:
                item = entry_to_dict(entry)
                item["placeholder"] = False
            else:
                config = get_stage_config(stage)
                item = {
                    "id": None,
                    "stage": stage.value,
                    "label": config.get("label", stage.value),
                    "status": EntryStatus.PENDING.value,
                    "description": config.get("description", ""),
                    "completed_at": None,
                    "actor": None,
                    "metadata": {},
                    "revision": revision,
                    "created_at": None,
                    "placeholder": True,
                }
            item["icon"] = get_stage_config(stage).get("icon", "📄")
            projection.append(item)
        return projection


def entry_to_dict(entry: TimelineEntryDB) -> Dict[str, Any]:
    """Serializable view of a timeline entry."""
    return {
        "id": entry.id,
        "stage": entry.stage.value,
        "label": entry.label,
        "status": entry.status.value,
        "description": entry.description,
        "completed_at": entry.completed_at.isoformat() if entry.completed_at else None,
        "actor": Principal(entry.actor_id, entry.actor_role, entry.actor_name).to_dict(),
        "metadata": entry.entry_metadata or {},
        "revision": entry.revision,
        "sequence": entry.sequence,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
