"""DOAuthEngine: central engine owning the ledger, collaborators and services."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from doauth.config.settings import CacheEngine
from doauth.errors.doauth_errors import DOAuthError
from doauth.session.credential import SessionCredential
from doauth.utils.calls import retry_async

if TYPE_CHECKING:
    from collections.abc import Sequence

    from prometheus_client import CollectorRegistry

    from doauth.blobstore.client import BlobStore, BlobStoreClient
    from doauth.cache.client import CacheClient
    from doauth.config.settings import AppConfig
    from doauth.datastore.store import LedgerStore
    from doauth.engine.services.access_decision import AccessDecisionEngine
    from doauth.engine.services.allow_list_service import AllowListService
    from doauth.engine.services.content_service import ContentService
    from doauth.engine.services.decryption_gate import DecryptionGate, DecryptResult
    from doauth.engine.services.grant_service import GrantService
    from doauth.engine.services.service_registry import ServiceRegistry
    from doauth.engine.services.vault_service import VaultService
    from doauth.keyserver.client import DecryptOracle, KeyServerClient
    from doauth.keyserver.identity import IdentityStrategy
    from doauth.ledger.client import Ledger
    from doauth.ledger.clock import Clock
    from doauth.metrics.collector import EngineMetrics

logger = logging.getLogger(__name__)

# Error messages
_ERR_NOT_INITIALIZED = "Engine not initialized. Call initialize() first."


@dataclass(frozen=True)
class DecryptOutcome:
    """Per-item result of :meth:`DOAuthEngine.decrypt_many`."""

    vault_id: str
    item_id: str
    result: DecryptResult | None = None
    error: DOAuthError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class DOAuthEngine:
    """Central engine that owns all services and infrastructure.

    Collaborators can be injected for tests: a ``clock`` for ledger time, a
    ``blob_store`` backend and a decrypt ``oracle`` backend. Anything not
    injected is built from configuration. Engine metrics register into
    ``metrics_registry`` when given, so the HTTP layer can expose them.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        clock: Clock | None = None,
        blob_store: BlobStore | None = None,
        oracle: DecryptOracle | None = None,
        metrics_registry: CollectorRegistry | None = None,
    ) -> None:
        self._config = config
        self._metrics_registry = metrics_registry
        self._clock = clock
        self._blob_backend = blob_store
        self._oracle_backend = oracle
        self._initialized = False

        # Infrastructure components
        self._store: LedgerStore | None = None
        self._ledger: Ledger | None = None
        self._cache: CacheClient | None = None
        self._blob_store: BlobStoreClient | None = None
        self._keyserver: KeyServerClient | None = None
        self._identity: IdentityStrategy | None = None
        self._metrics: EngineMetrics | None = None

        # Services
        self._vault_service: VaultService | None = None
        self._allow_list_service: AllowListService | None = None
        self._service_registry: ServiceRegistry | None = None
        self._grant_service: GrantService | None = None
        self._decision_engine: AccessDecisionEngine | None = None
        self._content_service: ContentService | None = None
        self._gate: DecryptionGate | None = None

    async def initialize(self) -> None:
        """Open the ledger store, connect collaborators and start services.

        Raises:
            RuntimeError: If already initialized.
        """
        if self._initialized:
            msg = "Engine already initialized"
            raise RuntimeError(msg)

        from doauth.blobstore.client import BlobStoreClient
        from doauth.cache.client import CacheClient
        from doauth.datastore.store import LedgerStore
        from doauth.engine.services.access_decision import AccessDecisionEngine
        from doauth.engine.services.allow_list_service import AllowListService
        from doauth.engine.services.content_service import ContentService
        from doauth.engine.services.decryption_gate import DecryptionGate
        from doauth.engine.services.grant_service import GrantService
        from doauth.engine.services.service_registry import ServiceRegistry
        from doauth.engine.services.vault_service import VaultService
        from doauth.keyserver.client import KeyServerClient
        from doauth.keyserver.identity import identity_strategy_from_config
        from doauth.ledger.client import Ledger
        from doauth.ledger.clock import SystemClock
        from doauth.metrics.collector import EngineMetrics, MetricsCollector

        # Ledger
        self._store = LedgerStore(self._config.db)
        await self._store.start()
        self._ledger = Ledger(self._store, self._clock or SystemClock())

        # Ciphertext cache (optional)
        if self._config.cache.engine != CacheEngine.DISABLED:
            self._cache = CacheClient(self._config.cache)
            await self._cache.connect()

        if self._config.metrics.enabled:
            self._metrics = EngineMetrics(MetricsCollector(self._metrics_registry))
        self._identity = identity_strategy_from_config(self._config.identity)

        # Services
        self._vault_service = VaultService(self)
        self._allow_list_service = AllowListService(self)
        self._service_registry = ServiceRegistry(self)
        self._grant_service = GrantService(self)
        self._decision_engine = AccessDecisionEngine(self)
        self._content_service = ContentService(self)
        self._gate = DecryptionGate(self, cache=self._cache)

        # External collaborators
        self._blob_store = BlobStoreClient(self._config.blob, backend=self._blob_backend)
        await self._blob_store.connect()
        self._keyserver = KeyServerClient(
            self._config.keyserver,
            approver=self._gate.approve_artifact,
            backend=self._oracle_backend,
        )
        await self._keyserver.connect()

        self._initialized = True
        logger.info(
            "DOAuth engine initialized (identity=%s, blob=%s, keyserver=%s)",
            self._identity.scheme,
            self._config.blob.engine,
            self._config.keyserver.engine,
        )

    async def close(self) -> None:
        """Gracefully shut down all services and connections (idempotent)."""
        if not self._initialized:
            return

        self._gate = None
        self._content_service = None
        self._decision_engine = None
        self._grant_service = None
        self._service_registry = None
        self._allow_list_service = None
        self._vault_service = None
        self._metrics = None

        if self._keyserver is not None:
            await self._keyserver.close()
            self._keyserver = None
        if self._blob_store is not None:
            await self._blob_store.close()
            self._blob_store = None
        if self._cache is not None:
            await self._cache.close()
            self._cache = None

        self._ledger = None
        if self._store is not None:
            await self._store.stop()
            self._store = None

        self._initialized = False
        logger.info("DOAuth engine closed")

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def store(self) -> LedgerStore:
        if self._store is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._store

    @property
    def ledger(self) -> Ledger:
        if self._ledger is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._ledger

    @property
    def cache(self) -> CacheClient | None:
        """Ciphertext cache (None when disabled)."""
        return self._cache

    @property
    def blob_store(self) -> BlobStoreClient:
        if self._blob_store is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._blob_store

    @property
    def keyserver(self) -> KeyServerClient:
        if self._keyserver is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._keyserver

    @property
    def identity(self) -> IdentityStrategy:
        if self._identity is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._identity

    @property
    def metrics(self) -> EngineMetrics | None:
        """Engine metrics (None if disabled or not initialized)."""
        return self._metrics

    @property
    def vault_service(self) -> VaultService:
        if self._vault_service is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._vault_service

    @property
    def allow_list_service(self) -> AllowListService:
        if self._allow_list_service is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._allow_list_service

    @property
    def service_registry(self) -> ServiceRegistry:
        if self._service_registry is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._service_registry

    @property
    def grant_service(self) -> GrantService:
        if self._grant_service is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._grant_service

    @property
    def decision_engine(self) -> AccessDecisionEngine:
        if self._decision_engine is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._decision_engine

    @property
    def content_service(self) -> ContentService:
        if self._content_service is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._content_service

    @property
    def gate(self) -> DecryptionGate:
        if self._gate is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._gate

    # ------------------------------------------------------------------
    # Session credentials and the decrypt path
    # ------------------------------------------------------------------

    def new_session_credential(
        self, address: str, *, ttl_min: int | None = None, grant_id: str | None = None
    ) -> SessionCredential:
        """Start an unsigned credential stamped with current ledger time."""
        session = self._config.session
        return SessionCredential.create(
            address,
            session.package_id,
            session.default_ttl_minutes if ttl_min is None else ttl_min,
            now_ms=self.ledger.now(),
            grant_id=grant_id,
            max_ttl_min=session.max_ttl_minutes,
        )

    async def fetch_user_data(
        self, access_token: str | SessionCredential, vault_id: str, item_id: str
    ) -> DecryptResult:
        """Decrypt one item for the holder of *access_token*.

        Retryable failures are retried up to ``decrypt.max_attempts`` times
        with exponential backoff; the key-server connection is reset between
        attempts. Denials and credential errors are never retried.
        """
        credential = (
            SessionCredential.import_(access_token)
            if isinstance(access_token, str)
            else access_token
        )
        decrypt = self._config.decrypt

        async def _attempt() -> DecryptResult:
            return await self.gate.decrypt(
                item_id=item_id,
                vault_id=vault_id,
                credential=credential,
                requester_address=credential.address,
            )

        return await retry_async(
            _attempt,
            attempts=decrypt.max_attempts,
            backoff=decrypt.backoff_seconds,
            operation=f"decrypt item {item_id}",
            before_retry=self._before_decrypt_retry,
        )

    async def decrypt_many(
        self,
        access_token: str | SessionCredential,
        targets: Sequence[tuple[str, str]],
    ) -> list[DecryptOutcome]:
        """Decrypt several ``(vault_id, item_id)`` pairs concurrently.

        At most ``decrypt.concurrency`` items are in flight at once. Taxonomy
        errors are reported per item; anything else propagates.
        """
        credential = (
            SessionCredential.import_(access_token)
            if isinstance(access_token, str)
            else access_token
        )
        semaphore = asyncio.Semaphore(self._config.decrypt.concurrency)

        async def _one(vault_id: str, item_id: str) -> DecryptOutcome:
            async with semaphore:
                try:
                    result = await self.fetch_user_data(credential, vault_id, item_id)
                except DOAuthError as exc:
                    return DecryptOutcome(vault_id=vault_id, item_id=item_id, error=exc)
            return DecryptOutcome(vault_id=vault_id, item_id=item_id, result=result)

        return list(await asyncio.gather(*(_one(v, i) for v, i in targets)))

    async def _before_decrypt_retry(self, exc: DOAuthError) -> None:
        if self._metrics is not None:
            self._metrics.record_retry(exc.code)
        await self.keyserver.reset()

    # ------------------------------------------------------------------
    # Health and stats
    # ------------------------------------------------------------------

    async def refresh_stats(self) -> dict[str, int]:
        """Count ledger records and publish them to the stats gauge."""
        from doauth.engine.models import Item, OAuthGrant, OAuthService, Vault

        counts: dict[str, int] = {}
        async with self.ledger.view() as view:
            for name, model in (
                ("vaults", Vault),
                ("items", Item),
                ("services", OAuthService),
                ("grants", OAuthGrant),
            ):
                counts[name] = int(await view.scalar(select(func.count()).select_from(model)) or 0)
        if self._metrics is not None:
            for name, count in counts.items():
                self._metrics.set_count(name, count)
        return counts

    async def health_check(self) -> dict[str, str]:
        """Component statuses: 'ok', 'error', 'disabled' or 'not_initialized'."""
        status = {
            "engine": "ok" if self._initialized else "not_initialized",
            "ledger": "unknown",
            "cache": "unknown",
            "blob_store": "unknown",
            "keyserver": "unknown",
        }
        if not self._initialized:
            return status

        status["ledger"] = "ok" if self._store and self._store.is_running else "error"
        if self._config.cache.engine == CacheEngine.DISABLED:
            status["cache"] = "disabled"
        else:
            status["cache"] = "ok" if self._cache and self._cache.is_connected else "error"
        blob_ok = self._blob_store is not None and self._blob_store.is_connected
        status["blob_store"] = "ok" if blob_ok else "error"
        status["keyserver"] = "ok" if self._keyserver and self._keyserver.is_connected else "error"
        return status
