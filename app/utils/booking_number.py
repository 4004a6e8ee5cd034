"""Booking reference number generation."""

import logging
import random
import string
from datetime import UTC, date, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ReferenceGenerationError

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "BK"
REFERENCE_ALPHABET = string.ascii_uppercase + string.digits
REFERENCE_SUFFIX_LENGTH = 4
MAX_REFERENCE_ATTEMPTS = 10


def generate_reference_number(today: date | None = None) -> str:
    """Generate a booking reference number.

    Args:
        today: Date to embed, defaults to the current UTC date

    Returns:
        str: Reference like 'BK-260210-A3F2'
    """
    today = today or datetime.now(UTC).date()
    suffix = "".join(random.choices(REFERENCE_ALPHABET, k=REFERENCE_SUFFIX_LENGTH))
    return f"{REFERENCE_PREFIX}-{today:%y%m%d}-{suffix}"


async def generate_unique_reference_number(db: AsyncSession) -> str:
    """Generate a reference number not used by any existing booking.

    Args:
        db: Database session for uniqueness check

    Returns:
        str: Unused reference number

    Raises:
        ReferenceGenerationError: If every attempt collided
    """
    from app.repositories.booking_repository import booking_repository

    for _ in range(MAX_REFERENCE_ATTEMPTS):
        reference_number = generate_reference_number()
        if not await booking_repository.reference_number_exists(db, reference_number):
            return reference_number

    logger.error(f"No free booking reference after {MAX_REFERENCE_ATTEMPTS} attempts")
    raise ReferenceGenerationError()
