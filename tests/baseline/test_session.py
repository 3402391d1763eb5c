"""Tests for walink.engine.session: close classification and event routing."""

import asyncio
from types import SimpleNamespace

import pytest

from walink.engine.errors import HandleConstructionFailed
from walink.engine.primitives import CloseReason
from walink.engine.protocols import SESSION_EVENTS
from walink.engine.session import (
    Closed,
    Opened,
    PairingChallenged,
    SessionHandle,
    classifyClose,
    statusCodeOf,
)

from tests.conftest import FakeFactory, FakeSession, ServiceError


def make_handle(store, cycle=3, suffix="@s.whatsapp.net"):
    session = FakeSession()
    delivered = []
    handle = SessionHandle(cycle, session, store, delivered.append, suffix)
    handle.attach()
    return handle, session, delivered


class TestStatusCode:
    def test_plain_int(self):
        assert statusCodeOf(515) == 515

    def test_attribute(self):
        assert statusCodeOf(ServiceError(401)) == 401

    def test_nested_output(self):
        error = RuntimeError("stream errored")
        error.output = SimpleNamespace(statusCode=408)
        assert statusCodeOf(error) == 408

    def test_snake_case(self):
        assert statusCodeOf(SimpleNamespace(status_code=515)) == 515

    @pytest.mark.parametrize("value", [None, True, "401", RuntimeError("x")])
    def test_no_code(self, value):
        assert statusCodeOf(value) is None


class TestClassifyClose:
    @pytest.mark.parametrize(
        "code, reason",
        [
            (401, CloseReason.REMOTE_SESSION_REVOKED),
            (408, CloseReason.TRANSIENT_NETWORK_LOSS),
            (515, CloseReason.REMOTE_RESTART_REQUESTED),
            (428, CloseReason.UNCLASSIFIED),
            (None, CloseReason.UNCLASSIFIED),
        ],
    )
    def test_mapping(self, code, reason):
        assert classifyClose(ServiceError(code) if code else None) == (reason, code)


class TestRouting:
    def test_open(self, store):
        handle, session, delivered = make_handle(store)
        session.fire("statusChanged", "connecting")
        session.open()
        assert delivered == [Opened(3)]

    def test_close_carries_reason(self, store):
        handle, session, delivered = make_handle(store)
        session.closeWith(ServiceError(401, "logged out"))

        assert delivered == [Closed(3, CloseReason.REMOTE_SESSION_REVOKED, 401, "logged out")]

    def test_pairing(self, store):
        handle, session, delivered = make_handle(store)
        session.challenge("2@abc,def")
        assert delivered == [PairingChallenged(3, "2@abc,def")]

    def test_message_preview_truncated(self, store, log_capture):
        handle, session, delivered = make_handle(store)
        session.fire("messageReceived", "15552345678@s.whatsapp.net", "x" * 80)

        output = log_capture.getvalue()
        assert "x" * 50 + "..." in output
        assert "x" * 51 not in output
        assert delivered == []

    def test_connection_error_logged(self, store, log_capture):
        handle, session, delivered = make_handle(store)
        session.fire("connectionError", RuntimeError("tls handshake"))
        assert "tls handshake" in log_capture.getvalue()

    def test_credentials_persisted(self, store):
        handle, session, delivered = make_handle(store)
        session.fire("credentialsUpdated", {"creds.json": {"registered": True}})
        assert [p.name for p in store.records()] == ["creds.json"]

    def test_credentials_without_payload(self, store):
        handle, session, delivered = make_handle(store)
        session.fire("credentialsUpdated")
        assert store.records() == []


class TestOutbound:
    def test_address(self, store):
        handle, *_ = make_handle(store)
        assert handle.address("15552345678") == "15552345678@s.whatsapp.net"
        assert handle.address("1234@g.us") == "1234@g.us"

    @pytest.mark.asyncio
    async def test_close_once_and_swallow_errors(self, store):
        handle, session, _ = make_handle(store)
        session.closeError = RuntimeError("already closed")

        await handle.close(1)
        await handle.close(1)

        assert session.closes == 1
        assert handle.closed

    @pytest.mark.asyncio
    async def test_close_timeout(self, store, log_capture):
        handle, session, _ = make_handle(store)

        async def hang():
            await asyncio.sleep(3600)

        session.close = hang
        await handle.close(0.01)

        assert "timed out" in log_capture.getvalue()

    @pytest.mark.asyncio
    async def test_logout_timeout(self, store, log_capture):
        handle, session, _ = make_handle(store)

        async def hang():
            await asyncio.sleep(3600)

        session.logout = hang
        await asyncio.wait_for(handle.logout(0.01), 5)

        assert "Logout timed out" in log_capture.getvalue()

    @pytest.mark.asyncio
    async def test_credentials_written_off_loop(self, store):
        handle, session, _ = make_handle(store)
        session.fire("credentialsUpdated", {"creds.json": {"v": 1}})
        session.fire("credentialsUpdated", {"creds.json": {"v": 2}})
        await handle.flush()

        assert b'"v":2' in (store.path / "creds.json").read_bytes().replace(b" ", b"")

    @pytest.mark.asyncio
    async def test_close_flushes_pending_writes(self, store):
        handle, session, _ = make_handle(store)
        session.fire("credentialsUpdated", {"creds.json": {"registered": True}})
        await handle.close(1)

        assert store.hasCredentials()

    def test_closed_handle_ignores_credentials(self, store):
        handle, session, _ = make_handle(store)
        handle.closed = True
        session.fire("credentialsUpdated", {"creds.json": {"registered": True}})

        assert not store.path.exists()

    @pytest.mark.asyncio
    async def test_logout_best_effort(self, store):
        handle, session, _ = make_handle(store)
        session.logoutError = RuntimeError("connection closed")
        await handle.logout()
        assert session.logouts == 1


class TestOpen:
    @pytest.mark.asyncio
    async def test_open_passes_session_options(self, store, config):
        factory = FakeFactory()
        delivered = []
        handle = await SessionHandle.open(1, factory, config, store, delivered.append)

        assert handle.session is factory.session
        assert factory.calls == [config.sessionOptions()]
        assert set(factory.session.callbacks) == set(SESSION_EVENTS)
        assert set(factory.session.callbacks) == {
            "credentialsUpdated",
            "statusChanged",
            "pairingChallenge",
            "messageReceived",
            "connectionError",
        }

    @pytest.mark.asyncio
    async def test_open_failure_wrapped(self, store, config):
        factory = FakeFactory(failures=1)
        with pytest.raises(HandleConstructionFailed) as exc:
            await SessionHandle.open(1, factory, config, store, lambda e: None)

        assert isinstance(exc.value.__cause__, ConnectionError)
