"""
Tests for board channel authentication.
"""

import pytest
from fastapi import WebSocketDisconnect

from clawkpit.services.caller import CredentialKind
from clawkpit.utils.websocket_auth import authenticate_websocket, require_websocket_auth
from tests.factories import create_api_token, create_session_token


class FakeWebSocket:
    def __init__(self, query_params=None, headers=None):
        self.query_params = query_params or {}
        self.headers = headers or {}
        self.closed_with = None

    async def close(self, code: int):
        self.closed_with = code


@pytest.mark.asyncio
async def test_token_query_param(db_session, test_user):
    token = await create_session_token(db_session, test_user)

    caller = await authenticate_websocket(FakeWebSocket(query_params={"token": token}), db_session)

    assert caller.user_id == test_user.id
    assert caller.kind == CredentialKind.SESSION


@pytest.mark.asyncio
async def test_api_key_header(db_session, test_user):
    key = await create_api_token(db_session, test_user)

    caller = await authenticate_websocket(FakeWebSocket(headers={"X-API-Key": key}), db_session)

    assert caller.kind == CredentialKind.API_KEY


@pytest.mark.asyncio
async def test_missing_or_bad_credentials_close_with_policy_violation(db_session):
    assert await authenticate_websocket(FakeWebSocket(), db_session) is None

    websocket = FakeWebSocket(query_params={"token": "nope"})
    with pytest.raises(WebSocketDisconnect):
        await require_websocket_auth(websocket, db_session)
    assert websocket.closed_with == 1008
