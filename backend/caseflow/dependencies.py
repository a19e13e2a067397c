"""FastAPI dependencies wiring the case service to the request session."""
from fastapi import Depends
from sqlalchemy.orm import Session

from .database import get_db
from .services.lifecycle import CaseService
from .services.mailer import build_mailer


def get_mailer():
    """Outbound mail transport for the configured environment."""
    return build_mailer()


def get_case_service(db: Session = Depends(get_db), mailer=Depends(get_mailer)) -> CaseService:
    return CaseService(db, mailer=mailer)
