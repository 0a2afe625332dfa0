from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from studentplan.db.models import KeyValueEntry


class KeyValueRepo:
    """Durable byte storage by key. Callers own the transaction (commit)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> bytes | None:
        stmt = select(KeyValueEntry.value).where(KeyValueEntry.key == key)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set(self, key: str, value: bytes) -> None:
        now = datetime.now().isoformat()
        stmt = sqlite_insert(KeyValueEntry).values(key=key, value=value, updated_at=now).on_conflict_do_update(
            index_elements=["key"],
            set_={"value": value, "updated_at": now},
        )
        await self.session.execute(stmt)

    async def remove(self, key: str) -> None:
        await self.session.execute(delete(KeyValueEntry).where(KeyValueEntry.key == key))
