"""Session store — ABC + key-value-backed implementation."""

from __future__ import annotations

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from weakref import WeakValueDictionary

from pydantic import ValidationError

from chain_agent.engine.models import Chain, Message, Session, now_ts
from chain_agent.errors import SessionNotFound, StoreError
from chain_agent.storage.kv import KVStore

logger = logging.getLogger(__name__)

SESSION_TTL_SECONDS = 24 * 60 * 60
MAX_MESSAGES_PER_SESSION = 50


class SessionStore(ABC):
    """Async session persistence interface.

    Missing and expired sessions both surface as ``SessionNotFound``.
    Read-modify-write cycles on one session (a turn, a wallet binding)
    hold ``lock(session_id)``.
    """

    max_messages: int = MAX_MESSAGES_PER_SESSION

    def __init__(self) -> None:
        self._locks: WeakValueDictionary[str, asyncio.Lock] = WeakValueDictionary()

    def lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    @abstractmethod
    async def create(
        self,
        wallet_address: str | None = None,
        chain: Chain | None = None,
        session_id: str | None = None,
    ) -> Session: ...

    @abstractmethod
    async def get(self, session_id: str) -> Session: ...

    @abstractmethod
    async def save(self, session: Session) -> None: ...

    @abstractmethod
    async def append_message(self, session_id: str, message: Message) -> None: ...

    @abstractmethod
    async def touch_ttl(self, session_id: str) -> None: ...

    @abstractmethod
    async def delete(self, session_id: str) -> None: ...


class KVSessionStore(SessionStore):
    """Stores each session as one JSON document at ``session:{id}``."""

    def __init__(
        self,
        kv: KVStore,
        ttl: float = SESSION_TTL_SECONDS,
        max_messages: int = MAX_MESSAGES_PER_SESSION,
    ) -> None:
        super().__init__()
        self._kv = kv
        self._ttl = ttl
        self.max_messages = max_messages

    @staticmethod
    def _key(session_id: str) -> str:
        return f"session:{session_id}"

    async def create(
        self,
        wallet_address: str | None = None,
        chain: Chain | None = None,
        session_id: str | None = None,
    ) -> Session:
        session = Session(
            session_id=session_id or str(uuid.uuid4()),
            wallet_address=wallet_address,
            chain=chain,
        )
        await self.save(session)
        logger.info("Created session %s (wallet=%s)", session.session_id, wallet_address)
        return session

    async def get(self, session_id: str) -> Session:
        record = await self._kv.get(self._key(session_id))
        if record is None:
            raise SessionNotFound(session_id)
        try:
            return Session.model_validate(record)
        except ValidationError as exc:
            raise StoreError(f"Corrupt session record {session_id}: {exc}") from exc

    async def save(self, session: Session) -> None:
        if len(session.messages) > self.max_messages:
            del session.messages[: len(session.messages) - self.max_messages]
        session.updated_at = now_ts()
        await self._kv.put(self._key(session.session_id), session.to_record(), ttl=self._ttl)

    async def append_message(self, session_id: str, message: Message) -> None:
        session = await self.get(session_id)
        session.append(message, self.max_messages)
        await self.save(session)

    async def touch_ttl(self, session_id: str) -> None:
        if not await self._kv.touch(self._key(session_id), self._ttl):
            raise SessionNotFound(session_id)

    async def delete(self, session_id: str) -> None:
        await self._kv.delete(self._key(session_id))
