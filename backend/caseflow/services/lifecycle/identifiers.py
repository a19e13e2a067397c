"""Human-readable identifiers for cases and legal documents."""
import random
import string
from datetime import datetime
from typing import Optional

CASE_CODE_PREFIX = "FRD"
_CODE_ALPHABET = string.digits + string.ascii_uppercase  # base36, upper case


def _millis_tail(now: datetime) -> str:
    return str(int(now.timestamp() * 1000))[-6:]


def generate_case_code(now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> str:
    """FRD-<last 6 digits of the ms timestamp>-<4 base36 characters>."""
    now = now or datetime.now()
    rng = rng or random
    suffix = "".join(rng.choice(_CODE_ALPHABET) for _ in range(4))
    return f"{CASE_CODE_PREFIX}-{_millis_tail(now)}-{suffix}"


def generate_document_number(now: Optional[datetime] = None) -> str:
    """91CRPC/<YYYYMMDD>/<last 6 digits of the ms timestamp>."""
    now = now or datetime.now()
    return f"91CRPC/{now.strftime('%Y%m%d')}/{_millis_tail(now)}"
