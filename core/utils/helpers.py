"""
Small parsing and arithmetic helpers shared by the pipeline stages
"""
import re
import uuid
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

DOTTED_DATE_PATTERN = re.compile(r'(\d{2}\.\d{2}\.\d{4})')

# Invoice date layouts seen from upstream extraction, German dotted form first
INVOICE_DATE_FORMATS = (
    '%d.%m.%Y',
    '%Y-%m-%d',
    '%d/%m/%Y',
    '%Y/%m/%d',
    '%d-%m-%Y',
    '%B %d, %Y',
    '%d %B %Y',
)


def generate_memory_id(prefix: str = "MEM") -> str:
    """
    Generate a memory entry ID such as MEM-20240102093000-1a2b3c4d

    Args:
        prefix: Prefix for the ID

    Returns:
        Unique memory ID
    """
    timestamp = datetime.utcnow().strftime('%Y%m%d%H%M%S')
    return f"{prefix}-{timestamp}-{uuid.uuid4().hex[:8]}"


def parse_date(date_str: Optional[str]) -> Optional[datetime]:
    """
    Parse an invoice date in any of INVOICE_DATE_FORMATS

    Returns:
        Datetime object, or None when no format fits
    """
    if not date_str:
        return None

    for fmt in INVOICE_DATE_FORMATS:
        try:
            return datetime.strptime(date_str.strip(), fmt)
        except ValueError:
            continue

    return None


def days_between(first: datetime, second: datetime) -> float:
    """Absolute distance between two timestamps in fractional days"""
    return abs((first - second).total_seconds()) / 86400.0


def find_first_date(text: str) -> Optional[str]:
    """Return the first DD.MM.YYYY date found in text"""
    match = DOTTED_DATE_PATTERN.search(text or '')
    return match.group(1) if match else None


def round_money(amount: float) -> float:
    """Round a monetary amount to cents, half-up"""
    return float(Decimal(str(amount)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP))


def clamp(value: float, lower: float = 0.0, upper: float = 1.0) -> float:
    """Clamp a value into [lower, upper]"""
    return max(lower, min(upper, value))
