"""
Permission gate for reststores.

A store's `check_permissions(ctx, verb)` is the single extension point.
It runs once per pipeline, and only for remote calls: direct API calls are
always granted. By the time it runs for get/put/delete, `ctx.doc` holds the
fetched record, so implementations can make data-dependent decisions.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .errors import ForbiddenError

if TYPE_CHECKING:
    from .context import RequestContext, Verb
    from .store import Store

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PermissionResult:
    """Outcome of a permission check."""

    granted: bool
    message: str | None = None

    @classmethod
    def allow(cls) -> PermissionResult:
        return cls(True)

    @classmethod
    def deny(cls, message: str | None = None) -> PermissionResult:
        return cls(False, message)


GRANTED = PermissionResult.allow()


def _coerce(result: Any) -> PermissionResult:
    """Accept PermissionResult, a bare bool, or a (granted, message) pair."""
    if isinstance(result, PermissionResult):
        return result
    if isinstance(result, tuple):
        granted, message = (tuple(result) + (None,))[:2]
        return PermissionResult(bool(granted), message)
    return PermissionResult(bool(result))


async def enforce_permissions(store: Store, ctx: RequestContext, verb: Verb) -> PermissionResult:
    """
    Run the store's permission gate for remote calls.

    Raises:
        ForbiddenError: The gate denied access
    """
    if not ctx.remote:
        return GRANTED

    outcome = store.check_permissions(ctx, verb)
    if inspect.isawaitable(outcome):
        outcome = await outcome
    result = _coerce(outcome)

    if not result.granted:
        logger.info(
            f"Permission denied on {store.name}.{verb.value} "
            f"(request {ctx.short_id}): {result.message or 'no message'}"
        )
        raise ForbiddenError(result.message)
    return result
