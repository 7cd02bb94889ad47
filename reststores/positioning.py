"""
Repositioning for reststores.

Stores with positioning enabled keep records in a caller-controlled
order. After every write the pipeline asks this module how (and whether)
to move the written record, then delegates the move to the persistence
backend's reposition operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .context import Placement

if TYPE_CHECKING:
    from .persistence.base import PersistenceBackend

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RepositionDecision:
    """What the backend should do with a written record."""

    placement: Placement
    before_id: Any = None


def decide_placement(
    *,
    put_before: Any = None,
    put_default_position: Placement | str | None = None,
    existing: bool,
) -> RepositionDecision | None:
    """
    Decide where a record goes. Evaluated in order:

    1. put_before set        -> before that record (new or existing)
    2. put_default_position  -> "start" or "end" (new or existing)
    3. new record            -> end
    4. existing record       -> None (position untouched)
    """
    if put_before is not None:
        return RepositionDecision(Placement.BEFORE, put_before)
    if put_default_position is not None:
        return RepositionDecision(Placement(put_default_position))
    if not existing:
        return RepositionDecision(Placement.END)
    return None


async def reposition(
    backend: PersistenceBackend,
    record: dict[str, Any],
    *,
    put_before: Any = None,
    put_default_position: Placement | str | None = None,
    existing: bool,
) -> RepositionDecision | None:
    """
    Apply the placement decision through the backend.

    Returns the decision taken (None when the record was left alone).
    """
    decision = decide_placement(
        put_before=put_before,
        put_default_position=put_default_position,
        existing=existing,
    )
    if decision is None:
        logger.debug("Existing record without placement directive: position untouched")
        return None

    await backend.reposition(record, decision.placement, decision.before_id)
    return decision
