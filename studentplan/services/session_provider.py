from typing import Optional, Protocol

from studentplan.config import settings as env_settings


class SessionProvider(Protocol):
    @property
    def album_id(self) -> Optional[str]: ...


class EnvSessionProvider:
    """Album number taken from settings (ALBUM_ID); None when unset."""

    @property
    def album_id(self) -> Optional[str]:
        return env_settings.ALBUM_ID


class StaticSessionProvider:
    def __init__(self, album_id: Optional[str]):
        self._album_id = (album_id or "").strip() or None

    @property
    def album_id(self) -> Optional[str]:
        return self._album_id
