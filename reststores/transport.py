"""
Transport Binding Protocol for reststores.

A transport binding sits between a wire protocol and the store pipeline.
Ingress: it translates an inbound request into a RequestContext with
remote=True and calls Store.handle_remote(). Egress: the store calls
back `send(ctx, verb, data, status)` to transmit the outcome.

Mapping an error kind to a wire status is the binding's job; the store
only suggests success statuses.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .context import RequestContext, Verb

logger = logging.getLogger(__name__)

# Value of `status` passed to send() for failures
ERROR = "error"


@runtime_checkable
class TransportBinding(Protocol):
    """
    Egress half of a transport.

    `status` is an int for successful outcomes and the string "error"
    when `data` is a formatted failure; bindings needing the original
    exception read it from `error` (None on success).
    """

    async def send(
        self,
        ctx: RequestContext,
        verb: Verb,
        data: Any,
        status: int | str,
        error: BaseException | None = None,
    ) -> None:
        ...


@dataclass
class SentResponse:
    """One call to RecordingTransport.send()."""

    verb: Verb
    data: Any
    status: int | str
    error: BaseException | None = None
    request_id: str = ""


@dataclass
class RecordingTransport:
    """
    Transport that keeps everything it is asked to send.

    Useful for tests and for in-process callers that still want the
    remote code path (handle flags, permissions, echo flags).
    """

    sent: list[SentResponse] = field(default_factory=list)

    async def send(
        self,
        ctx: RequestContext,
        verb: Verb,
        data: Any,
        status: int | str,
        error: BaseException | None = None,
    ) -> None:
        response = SentResponse(
            verb=verb,
            data=data,
            status=status,
            error=error,
            request_id=ctx.short_id,
        )
        self.sent.append(response)
        ctx.response = response
        logger.debug(f"Recorded {verb.value} response with status {status}")

    @property
    def last(self) -> SentResponse | None:
        return self.sent[-1] if self.sent else None

    def clear(self) -> None:
        self.sent.clear()
