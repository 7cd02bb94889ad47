"""
Tests for the permission gate.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from reststores.context import RequestContext, Verb
from reststores.errors import ForbiddenError
from reststores.permissions import GRANTED, PermissionResult, enforce_permissions


def make_store(result):
    store = MagicMock()
    store.name = "people"
    store.check_permissions = MagicMock(return_value=result)
    return store


class TestEnforcePermissions:
    """Tests for enforce_permissions()."""

    @pytest.mark.asyncio
    async def test_local_calls_are_granted_without_asking(self):
        store = make_store(False)

        result = await enforce_permissions(store, RequestContext(remote=False), Verb.GET)

        assert result is GRANTED
        store.check_permissions.assert_not_called()

    @pytest.mark.asyncio
    async def test_remote_grant(self):
        store = make_store(PermissionResult.allow())
        ctx = RequestContext(remote=True)

        result = await enforce_permissions(store, ctx, Verb.PUT)

        assert result.granted
        store.check_permissions.assert_called_once_with(ctx, Verb.PUT)

    @pytest.mark.asyncio
    async def test_remote_denial_carries_message(self):
        store = make_store(PermissionResult.deny("Not your record"))

        with pytest.raises(ForbiddenError) as exc_info:
            await enforce_permissions(store, RequestContext(remote=True), Verb.DELETE)

        assert exc_info.value.message == "Not your record"

    @pytest.mark.asyncio
    async def test_denial_without_message_uses_default(self):
        store = make_store(False)

        with pytest.raises(ForbiddenError) as exc_info:
            await enforce_permissions(store, RequestContext(remote=True), Verb.GET)

        assert exc_info.value.message == "Forbidden"

    @pytest.mark.asyncio
    async def test_tuple_result(self):
        store = make_store((False, "Read only"))

        with pytest.raises(ForbiddenError, match="Read only"):
            await enforce_permissions(store, RequestContext(remote=True), Verb.POST)

    @pytest.mark.asyncio
    async def test_async_check(self):
        store = MagicMock()
        store.name = "people"
        store.check_permissions = AsyncMock(return_value=True)

        result = await enforce_permissions(store, RequestContext(remote=True), Verb.GET)

        assert result.granted
        store.check_permissions.assert_awaited_once()
