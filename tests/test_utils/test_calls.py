"""Tests for the timeout and retry helpers."""

from __future__ import annotations

import asyncio

import pytest

from doauth.errors.doauth_errors import DOAuthError, ValidationError
from doauth.errors.external_errors import ExternalTimeoutError, NetworkError
from doauth.utils.calls import call_with_timeout, retry_async
from doauth.utils.crypto import new_bearer_token, new_object_id, object_id_bytes


class Flaky:
    def __init__(self, errors: list[DOAuthError], result: str = "done") -> None:
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestCallWithTimeout:
    async def test_returns_result(self) -> None:
        async def quick() -> int:
            return 7

        assert await call_with_timeout(quick(), timeout=1, operation="quick") == 7

    async def test_deadline(self) -> None:
        with pytest.raises(ExternalTimeoutError) as exc_info:
            await call_with_timeout(asyncio.sleep(1), timeout=0.01, operation="slow call")
        assert exc_info.value.operation == "slow call"
        assert exc_info.value.status_code == 504
        assert exc_info.value.retryable


class TestRetryAsync:
    async def test_success_first_try(self) -> None:
        func = Flaky([])
        assert await retry_async(func, attempts=3, backoff=0, operation="op") == "done"
        assert func.calls == 1

    async def test_retries_retryable(self) -> None:
        func = Flaky([NetworkError("down"), NetworkError("down")])
        seen: list[str] = []

        async def before(exc: DOAuthError) -> None:
            seen.append(exc.code)

        result = await retry_async(func, attempts=3, backoff=0, operation="op", before_retry=before)
        assert result == "done"
        assert func.calls == 3
        assert seen == ["network-error", "network-error"]

    async def test_gives_up_after_attempts(self) -> None:
        func = Flaky([NetworkError("a"), NetworkError("b"), NetworkError("c")])
        with pytest.raises(NetworkError, match="b"):
            await retry_async(func, attempts=2, backoff=0, operation="op")
        assert func.calls == 2

    async def test_non_retryable_propagates_immediately(self) -> None:
        func = Flaky([ValidationError("bad input")])
        with pytest.raises(ValidationError):
            await retry_async(func, attempts=5, backoff=0, operation="op")
        assert func.calls == 1

    async def test_zero_attempts(self) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            await retry_async(Flaky([]), attempts=0, backoff=0, operation="op")

    async def test_backoff_doubles(self, monkeypatch: pytest.MonkeyPatch) -> None:
        delays: list[float] = []

        async def fake_sleep(delay: float) -> None:
            delays.append(delay)

        monkeypatch.setattr("doauth.utils.calls.asyncio.sleep", fake_sleep)
        func = Flaky([NetworkError("x"), NetworkError("y")])
        await retry_async(func, attempts=3, backoff=0.5, operation="op")
        assert delays == [0.5, 1.0]


def test_identifiers() -> None:
    oid = new_object_id()
    assert oid.startswith("0x")
    assert len(object_id_bytes(oid)) == 32
    assert new_object_id() != oid
    assert len(new_bearer_token()) == 64
