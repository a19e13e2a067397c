"""Authenticated actor passed into every lifecycle operation."""
from dataclasses import dataclass

from .db_models import ActorRole


@dataclass(frozen=True)
class Principal:
    id: str
    role: ActorRole
    display_name: str

    def to_dict(self) -> dict:
        return {"id": self.id, "role": self.role.value, "display_name": self.display_name}


# Actor recorded for automatic (cascade) transitions
SYSTEM_PRINCIPAL = Principal(id="system", role=ActorRole.SYSTEM, display_name="Case Automation")
