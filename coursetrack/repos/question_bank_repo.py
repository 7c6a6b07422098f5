"""Directory of question banks known to this service.

Duplication checks every bank a copied quiz refers to before writing
anything.  Banks are registered by an admin (PUT
/v1/admin/question-banks/{id}) as the question-bank collaborator creates
them; registering the same id twice is a no-op.
"""

from __future__ import annotations

import datetime
from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from coursetrack.db.tables import QuestionBankRow


class QuestionBankDirectory(Protocol):
    async def exists(self, bank_id: UUID) -> bool: ...
    async def register(self, bank_id: UUID) -> None: ...


class InMemoryQuestionBankDirectory:
    def __init__(self) -> None:
        self._banks: set[UUID] = set()

    def clear(self) -> None:
        self._banks.clear()

    async def exists(self, bank_id: UUID) -> bool:
        return bank_id in self._banks

    async def register(self, bank_id: UUID) -> None:
        self._banks.add(bank_id)


class PgQuestionBankDirectory:
    """Satisfies the QuestionBankDirectory Protocol using the question_banks table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def exists(self, bank_id: UUID) -> bool:
        stmt = select(QuestionBankRow.id).where(QuestionBankRow.id == bank_id)
        return (await self._session.execute(stmt)).scalar_one_or_none() is not None

    async def register(self, bank_id: UUID) -> None:
        now = int(datetime.datetime.now(datetime.UTC).timestamp())
        stmt = (
            insert(QuestionBankRow)
            .values(id=bank_id, registered_at=now)
            .on_conflict_do_nothing(index_elements=[QuestionBankRow.id])
        )
        await self._session.execute(stmt)
