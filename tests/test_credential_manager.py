"""
Tests for the CredentialManager.

Tests cover:
- Cache short-circuit (memory and credential store)
- Strategy order: silent host session, prompt, device code
- Cancellation and failure mapping
- Best-effort persistence
- Sign-out and the non-mutating is_authenticated() check
- Serialized acquisition under concurrent callers
"""

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from ado_tools.credentials import (
    TOKEN_SECRET_KEY,
    AccessToken,
    AuthMethod,
    CredentialManager,
    InMemoryStorage,
    TokenSource,
)
from ado_tools.errors import AuthenticationCancelledError, AuthenticationError
from pydantic import SecretStr


def _token(value="fresh-token", minutes=60, source=TokenSource.HOST_SESSION) -> AccessToken:
    return AccessToken(
        access_token=SecretStr(value),
        expires_on=datetime.now(UTC) + timedelta(minutes=minutes),
        source=source,
    )


def _host(silent=None, interactive=None) -> MagicMock:
    host = MagicMock()

    async def get_session(create_if_none=False):
        return interactive if create_if_none else silent

    host.get_session = AsyncMock(side_effect=get_session)
    host.sign_out = AsyncMock()
    return host


def _device(token=None, error=None) -> MagicMock:
    device = MagicMock()
    device.acquire = AsyncMock(return_value=token, side_effect=error)
    return device


def _prompter(method=AuthMethod.DEVICE_CODE) -> MagicMock:
    prompter = MagicMock()
    prompter.choose_method = AsyncMock(return_value=method)
    prompter.show_device_code = AsyncMock()
    return prompter


def _manager(storage=None, host=None, device=None, prompter=None) -> CredentialManager:
    return CredentialManager(
        storage=storage if storage is not None else InMemoryStorage(),
        host_session=host or _host(),
        device_code=device or _device(),
        prompter=prompter,
    )


class TestCacheShortCircuit:
    @pytest.mark.asyncio
    async def test_valid_cached_token_needs_no_acquisition(self):
        host = _host(silent=_token("first"))
        device = _device(_token("device"))
        manager = _manager(host=host, device=device, prompter=_prompter())

        assert await manager.get_token() == "first"
        for _ in range(3):
            assert await manager.get_token() == "first"

        assert host.get_session.await_count == 1
        device.acquire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_valid_stored_token_is_used(self):
        storage = InMemoryStorage({TOKEN_SECRET_KEY: _token("stored").to_secret()})
        host = _host(silent=_token("host"))
        manager = _manager(storage=storage, host=host)

        assert await manager.get_token() == "stored"
        host.get_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_token_inside_expiry_buffer_is_replaced(self):
        storage = InMemoryStorage({TOKEN_SECRET_KEY: _token("stale", minutes=4).to_secret()})
        manager = _manager(storage=storage, host=_host(silent=_token("renewed")))

        assert await manager.get_token() == "renewed"

    @pytest.mark.asyncio
    async def test_unreadable_stored_token_is_ignored(self):
        storage = InMemoryStorage({TOKEN_SECRET_KEY: "{not json"})
        manager = _manager(storage=storage, host=_host(silent=_token("renewed")))

        assert await manager.get_token() == "renewed"

    @pytest.mark.asyncio
    async def test_invalidate_cache_forces_new_token(self):
        storage = InMemoryStorage()
        host = _host(silent=_token("first"))
        manager = _manager(storage=storage, host=host)
        await manager.get_token()
        assert storage.load(TOKEN_SECRET_KEY) is not None

        manager.invalidate_cache()
        host.get_session.side_effect = None
        host.get_session.return_value = _token("second")

        assert await manager.get_token() == "second"
        assert AccessToken.from_secret(storage.load(TOKEN_SECRET_KEY)).get_secret_value() == "second"

    @pytest.mark.asyncio
    async def test_invalidate_cache_removes_stored_token(self):
        storage = InMemoryStorage({TOKEN_SECRET_KEY: _token("revoked").to_secret()})
        manager = _manager(storage=storage, host=_host(silent=_token("renewed")))
        assert await manager.get_token() == "revoked"

        manager.invalidate_cache()

        assert storage.load(TOKEN_SECRET_KEY) is None
        assert await manager.get_token() == "renewed"

    def test_invalidate_cache_survives_store_errors(self):
        storage = MagicMock()
        storage.delete.side_effect = OSError("permission denied")
        _manager(storage=storage).invalidate_cache()


class TestAcquisitionOrder:
    @pytest.mark.asyncio
    async def test_silent_host_session_first(self):
        prompter = _prompter()
        manager = _manager(host=_host(silent=_token("host")), prompter=prompter)

        assert await manager.get_token() == "host"
        prompter.choose_method.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_prompt_then_device_code(self):
        prompter = _prompter(AuthMethod.DEVICE_CODE)
        device = _device(_token("device", source=TokenSource.DEVICE_CODE))
        manager = _manager(host=_host(), device=device, prompter=prompter)

        assert await manager.get_token() == "device"
        prompter.choose_method.assert_awaited_once()
        assert device.acquire.await_args.kwargs["on_verification"] == prompter.show_device_code

    @pytest.mark.asyncio
    async def test_prompt_then_interactive_host_session(self):
        prompter = _prompter(AuthMethod.HOST_SESSION)
        host = _host(silent=None, interactive=_token("interactive"))
        device = _device()
        manager = _manager(host=host, device=device, prompter=prompter)

        assert await manager.get_token() == "interactive"
        device.acquire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_explicit_device_code_skips_prompt(self):
        prompter = _prompter()
        host = _host()
        device = _device(_token("device"))
        manager = _manager(host=host, device=device, prompter=prompter)

        assert await manager.get_token_device_code() == "device"
        prompter.choose_method.assert_not_awaited()
        host.get_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_explicit_device_code_still_uses_cache(self):
        device = _device(_token("device"))
        manager = _manager(host=_host(silent=_token("host")), device=device)
        await manager.get_token()

        assert await manager.get_token_device_code() == "host"
        device.acquire.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_explicit_host_session(self):
        manager = _manager(host=_host(interactive=_token("interactive")))
        assert await manager.get_token_host_session() == "interactive"

    @pytest.mark.asyncio
    async def test_get_auth_headers(self):
        manager = _manager(host=_host(silent=_token("abc")))
        headers = await manager.get_auth_headers()
        assert headers == {"Authorization": "Bearer abc", "Content-Type": "application/json"}


class TestAcquisitionFailures:
    @pytest.mark.asyncio
    async def test_cancelled_choice(self):
        manager = _manager(host=_host(), prompter=_prompter(method=None))
        with pytest.raises(AuthenticationCancelledError, match="cancelled"):
            await manager.get_token()

    @pytest.mark.asyncio
    async def test_non_interactive_without_session(self):
        prompter = _prompter()
        manager = _manager(host=_host(), prompter=prompter)
        with pytest.raises(AuthenticationError):
            await manager.get_token(interactive=False)
        prompter.choose_method.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_prompter(self):
        manager = _manager(host=_host())
        with pytest.raises(AuthenticationError):
            await manager.get_token()

    @pytest.mark.asyncio
    async def test_provider_failure_is_wrapped(self):
        device = _device(error=OSError("connection reset"))
        manager = _manager(host=_host(), device=device, prompter=_prompter())
        with pytest.raises(AuthenticationError, match="Authentication failed: connection reset"):
            await manager.get_token()

    @pytest.mark.asyncio
    async def test_cancelled_device_flow_stays_cancelled(self):
        device = _device(error=AuthenticationCancelledError("Device code sign-in cancelled by user"))
        manager = _manager(host=_host(), device=device, prompter=_prompter())
        with pytest.raises(AuthenticationCancelledError):
            await manager.get_token()

    @pytest.mark.asyncio
    async def test_failed_silent_lookup_falls_through(self):
        host = _host()
        host.get_session.side_effect = RuntimeError("boom")
        manager = _manager(host=host, device=_device(_token("device")), prompter=_prompter())
        assert await manager.get_token() == "device"


class TestPersistence:
    @pytest.mark.asyncio
    async def test_acquired_token_is_persisted(self):
        storage = InMemoryStorage()
        manager = _manager(storage=storage, host=_host(silent=_token("abc")))
        await manager.get_token()

        stored = AccessToken.from_secret(storage.load(TOKEN_SECRET_KEY))
        assert stored.get_secret_value() == "abc"

    @pytest.mark.asyncio
    async def test_store_failure_does_not_fail_the_call(self):
        storage = MagicMock()
        storage.load.return_value = None
        storage.save.side_effect = OSError("disk full")
        manager = _manager(storage=storage, host=_host(silent=_token("abc")))

        assert await manager.get_token() == "abc"
        assert await manager.get_token() == "abc"

    @pytest.mark.asyncio
    async def test_tokens_never_logged(self, caplog):
        caplog.set_level(logging.DEBUG)
        storage = MagicMock()
        storage.load.return_value = None
        storage.save.side_effect = OSError("disk full")
        device = _device(_token("secret-device-token"))
        manager = _manager(storage=storage, host=_host(), device=device, prompter=_prompter())

        await manager.get_token()

        assert "secret-device-token" not in caplog.text


class TestSignOut:
    @pytest.mark.asyncio
    async def test_sign_out_clears_everything(self):
        storage = InMemoryStorage()
        host = _host(silent=_token("abc"))
        device = _device()
        manager = _manager(storage=storage, host=host, device=device)
        await manager.get_token()

        await manager.sign_out()

        assert storage.load(TOKEN_SECRET_KEY) is None
        device.clear_accounts.assert_called_once()
        host.sign_out.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sign_out_is_idempotent_and_swallows_errors(self):
        storage = MagicMock()
        storage.delete.side_effect = OSError("permission denied")
        device = _device()
        device.clear_accounts.side_effect = RuntimeError("boom")
        host = _host()
        host.sign_out.side_effect = RuntimeError("boom")
        manager = _manager(storage=storage, host=host, device=device)

        await manager.sign_out()
        await manager.sign_out()


class TestIsAuthenticated:
    @pytest.mark.asyncio
    async def test_valid_cache(self):
        storage = InMemoryStorage({TOKEN_SECRET_KEY: _token().to_secret()})
        host = _host()
        manager = _manager(storage=storage, host=host)

        assert await manager.is_authenticated()
        host.get_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_checks_host_session_silently(self):
        host = _host(silent=_token())
        manager = _manager(host=host)

        assert await manager.is_authenticated()
        host.get_session.assert_awaited_once_with(create_if_none=False)

    @pytest.mark.asyncio
    async def test_never_starts_device_code(self):
        device = _device(_token())
        prompter = _prompter()
        manager = _manager(host=_host(), device=device, prompter=prompter)

        assert not await manager.is_authenticated()
        device.acquire.assert_not_awaited()
        prompter.choose_method.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_check_does_not_cache(self):
        storage = InMemoryStorage()
        manager = _manager(storage=storage, host=_host(silent=_token()))

        await manager.is_authenticated()

        assert storage.load(TOKEN_SECRET_KEY) is None


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_callers_prompt_once(self):
        release = asyncio.Event()
        prompter = _prompter()

        async def slow_acquire(on_verification=None):
            await release.wait()
            return _token("device")

        device = MagicMock()
        device.acquire = AsyncMock(side_effect=slow_acquire)
        manager = _manager(host=_host(), device=device, prompter=prompter)

        callers = [asyncio.create_task(manager.get_token()) for _ in range(5)]
        await asyncio.sleep(0.01)
        release.set()
        results = await asyncio.gather(*callers)

        assert results == ["device"] * 5
        assert prompter.choose_method.await_count == 1
        assert device.acquire.await_count == 1
