import asyncio
from collections import deque
from contextlib import asynccontextmanager
from typing import Dict, Iterable, List, Optional
from salescredit.core.config import settings


class ConversationBuffer:
    """Fixed-size ring buffer of conversation turns, oldest first."""

    def __init__(self, turns: Optional[Iterable[str]] = None, max_turns: Optional[int] = None):
        self.max_turns = settings.conversation_max_turns if max_turns is None else max_turns
        self._turns = deque(maxlen=max(self.max_turns, 0))
        for turn in turns or []:
            self.append(turn)

    def append(self, turn: str):
        turn = (turn or "").strip()
        if turn and self.max_turns > 0:
            self._turns.append(turn)

    def turns(self) -> List[str]:
        return list(self._turns)

    def __len__(self):
        return len(self._turns)


class KeyedLocks:
    """Per-key asyncio locks: holders of one key run one at a time, other keys run in parallel."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]

    def __contains__(self, key: str):
        return key in self._locks


conversation_locks = KeyedLocks()
submission_locks = KeyedLocks()
