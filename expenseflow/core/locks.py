import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

class ExpenseLockRegistry:
    """
    Per-expense asyncio locks for decision operations.

    Expenses are independent units of concurrency: two decisions on the same
    expense run one after the other inside this process, decisions on
    different expenses never wait for each other. Across processes the
    row lock and the expense version counter take over.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._holders: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, expense_id: int) -> AsyncIterator[None]:
        # No await between lookup and registration, so this is atomic on the loop
        lock = self._locks.setdefault(expense_id, asyncio.Lock())
        self._holders[expense_id] = self._holders.get(expense_id, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._holders[expense_id] -= 1
            if self._holders[expense_id] == 0:
                del self._holders[expense_id]
                del self._locks[expense_id]

    def __len__(self) -> int:
        return len(self._locks)


expense_locks = ExpenseLockRegistry()
