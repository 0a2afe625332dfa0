import json
import logging
import time
from dataclasses import asdict

from sqlalchemy.ext.asyncio import AsyncSession

from studentplan.db.repos.kv_repo import KeyValueRepo
from studentplan.plan.classify import normalize_text
from studentplan.plan.models import CustomEvent, CustomEventType

logger = logging.getLogger(__name__)

CUSTOM_EVENTS_KEY = "custom_events_json"


def new_custom_event_id() -> int:
    return int(time.time() * 1000)


def _encode(events: list[CustomEvent]) -> bytes:
    payload = []
    for event in events:
        data = asdict(event)
        data["event_type"] = event.event_type.value
        payload.append(data)
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def _decode(raw: bytes) -> list[CustomEvent]:
    try:
        payload = json.loads(raw)
    except (ValueError, UnicodeDecodeError):
        logger.warning("Stored custom events are not valid JSON; ignoring them.")
        return []
    if not isinstance(payload, list):
        return []

    events = []
    for item in payload:
        try:
            events.append(
                CustomEvent(
                    id=int(item["id"]),
                    subject_name=str(item.get("subject_name", "")),
                    event_type=CustomEventType(item.get("event_type", CustomEventType.TEST.value)),
                    date=str(item.get("date", "")),
                    start_time=str(item.get("start_time", "")),
                    end_time=str(item.get("end_time", "")),
                    notes=str(item.get("notes", "")),
                    is_auto_time=bool(item.get("is_auto_time", False)),
                )
            )
        except (KeyError, TypeError, ValueError, AttributeError):
            logger.warning("Skipping malformed custom event: %r", item)
    return events


class CustomEventRepo:
    """User-created exams/passes/tests, stored as one JSON list in the key-value store."""

    def __init__(self, session: AsyncSession):
        self.kv = KeyValueRepo(session)

    async def load_all(self) -> list[CustomEvent]:
        raw = await self.kv.get(CUSTOM_EVENTS_KEY)
        if raw is None:
            return []
        return sorted(_decode(raw), key=lambda event: (event.date, event.start_time))

    async def save_all(self, events: list[CustomEvent]) -> None:
        await self.kv.set(CUSTOM_EVENTS_KEY, _encode(events))

    async def add(self, event: CustomEvent) -> None:
        events = await self.load_all()
        events.append(event)
        await self.save_all(events)

    async def update(self, event: CustomEvent) -> bool:
        events = await self.load_all()
        for index, existing in enumerate(events):
            if existing.id == event.id:
                events[index] = event
                await self.save_all(events)
                return True
        return False

    async def delete(self, event_id: int) -> None:
        events = await self.load_all()
        await self.save_all([event for event in events if event.id != event_id])

    async def get_by_id(self, event_id: int) -> CustomEvent | None:
        for event in await self.load_all():
            if event.id == event_id:
                return event
        return None

    async def count(self) -> int:
        return len(await self.load_all())

    async def list_for_date(self, date: str) -> list[CustomEvent]:
        return [event for event in await self.load_all() if event.date == date]

    async def list_for_range(self, start: str, end: str) -> list[CustomEvent]:
        return [event for event in await self.load_all() if event.date and start <= event.date <= end]

    async def saved_subject_names(self) -> list[str]:
        names = {event.subject_name.strip() for event in await self.load_all()}
        names.discard("")
        return sorted(names, key=lambda name: (normalize_text(name), name.casefold()))

    async def clear_all(self) -> None:
        await self.kv.remove(CUSTOM_EVENTS_KEY)
