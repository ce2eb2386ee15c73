"""Shared test fixtures for the py-doauth test suite."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from doauth.blobstore.memory import MemoryBlobStore
from doauth.config.settings import (
    AppConfig,
    BlobStoreConfig,
    CacheConfig,
    CacheEngine,
    DatabaseConfig,
    DatabaseEngine,
    DecryptConfig,
    KeyServerConfig,
)
from doauth.crypto.keys import generate_private_key, private_key_to_address
from doauth.engine.client import DOAuthEngine
from doauth.keyserver.local import LocalKeyServer
from doauth.ledger.clock import ManualClock

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from doauth.errors.doauth_errors import DOAuthError
    from doauth.keyserver.artifact import DecryptionAuthorization
    from doauth.keyserver.client import EncryptedObject
    from doauth.session.credential import SessionCredential

MASTER_KEY = "11" * 32


class CountingOracle:
    """Decrypt oracle double: a local key server plus call counters.

    Errors queued in ``failures`` are raised by the next decrypt calls.
    """

    def __init__(self, config: KeyServerConfig) -> None:
        self.inner = LocalKeyServer(config)
        self.encrypts = 0
        self.decrypts = 0
        self.resets = 0
        self.failures: list[DOAuthError] = []

    async def connect(self) -> None:
        await self.inner.connect()

    async def close(self) -> None:
        await self.inner.close()

    async def encrypt(self, identity: bytes, plaintext: bytes) -> EncryptedObject:
        self.encrypts += 1
        return await self.inner.encrypt(identity, plaintext)

    async def decrypt(
        self,
        ciphertext: bytes,
        artifact: DecryptionAuthorization,
        credential: SessionCredential,
    ) -> bytes:
        self.decrypts += 1
        if self.failures:
            raise self.failures.pop(0)
        return await self.inner.decrypt(ciphertext, artifact, credential)

    async def reset(self) -> None:  # noqa: ASYNC910
        self.resets += 1


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    """Test config: file-backed SQLite ledger, memory cache, no backoff."""
    return AppConfig(
        debug=True,
        db=DatabaseConfig(
            engine=DatabaseEngine.SQLITE,
            dsn=f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        ),
        cache=CacheConfig(engine=CacheEngine.MEMORY),
        blob=BlobStoreConfig(read_after_write_delay_seconds=0.0),
        keyserver=KeyServerConfig(master_key=MASTER_KEY, threshold=2),
        decrypt=DecryptConfig(max_attempts=2, backoff_seconds=0.0),
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
def oracle(app_config: AppConfig) -> CountingOracle:
    return CountingOracle(app_config.keyserver)


@pytest.fixture
async def engine(app_config, clock, blob_store, oracle) -> AsyncIterator[DOAuthEngine]:
    """Initialized engine wired to the manual clock and counting doubles."""
    eng = DOAuthEngine(app_config, clock=clock, blob_store=blob_store, oracle=oracle)
    await eng.initialize()
    yield eng
    await eng.close()


# ---------------------------------------------------------------------------
# Keys and addresses
# ---------------------------------------------------------------------------


@pytest.fixture
def owner_key() -> bytes:
    return generate_private_key()


@pytest.fixture
def owner(owner_key: bytes) -> str:
    return private_key_to_address(owner_key)


@pytest.fixture
def service_key() -> bytes:
    return generate_private_key()


@pytest.fixture
def service_addr(service_key: bytes) -> str:
    return private_key_to_address(service_key)


@pytest.fixture
def stranger_key() -> bytes:
    return generate_private_key()


@pytest.fixture
def stranger(stranger_key: bytes) -> str:
    return private_key_to_address(stranger_key)


@pytest.fixture
def signed_credential(engine: DOAuthEngine) -> Callable[..., SessionCredential]:
    """Factory: a credential for the key's address, signed by that key."""

    def _make(
        private_key: bytes, *, ttl_min: int | None = None, grant_id: str | None = None
    ) -> SessionCredential:
        credential = engine.new_session_credential(
            private_key_to_address(private_key), ttl_min=ttl_min, grant_id=grant_id
        )
        credential.sign(private_key)
        return credential

    return _make
