"""Double-check-insert-adopt: the optimistic write protocol for unique rows.

There are no locks and no cross-statement transactions. A writer that wants a
unique row (a space's chat link, a chat membership) does this:

1. read the row; if it already exists, adopt it and discard speculative work;
2. otherwise insert it;
3. if the insert raises ``ConflictError`` another writer won in between: read
   once more, adopt the winner's row and discard speculative work.

The loser never overwrites the winner and never surfaces the conflict.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from backend.errors import ConflictError
from backend.observability import record_conflict

logger = logging.getLogger("luna.adoption")

Reader = Callable[[], Awaitable[Optional[dict]]]
Inserter = Callable[[], Awaitable[dict]]
Discarder = Callable[[], Awaitable[Any]]


@dataclass
class Adopted:
    row: dict
    created: bool


async def double_check_insert_adopt(
    read_existing: Reader,
    insert: Inserter,
    discard: Discarder | None = None,
) -> Adopted:
    existing = await read_existing()
    if existing is not None:
        if discard is not None:
            await discard()
        return Adopted(row=existing, created=False)

    try:
        row = await insert()
    except ConflictError as exc:
        record_conflict(exc.table)
        winner = await read_existing()
        if discard is not None:
            await discard()
        if winner is None:
            # The winning row vanished again (a concurrent delete); nothing to adopt.
            raise
        logger.info("Lost insert race on %s, adopted existing row %s", exc.table, winner.get("id"))
        return Adopted(row=winner, created=False)
    return Adopted(row=row, created=True)
