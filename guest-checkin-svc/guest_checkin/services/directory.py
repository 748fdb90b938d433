from __future__ import annotations
from typing import Mapping, Protocol
from urllib.parse import quote

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import Invite

class GuestDirectory(Protocol):
    async def lookup_display_name(self, code: str) -> str | None: ...


class SqlGuestDirectory:
    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def lookup_display_name(self, code: str) -> str | None:
        async with self._session_maker() as db:
            name = (await db.execute(select(Invite.guest_name).where(Invite.id == code))).scalar_one_or_none()
        return (name or "").strip() or None


class HttpGuestDirectory:
    def __init__(self, base_url: str, *, timeout: float = 2.0, transport: httpx.AsyncBaseTransport | None = None):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def lookup_display_name(self, code: str) -> str | None:
        """Return guest_name or None."""
        url = f"{self._base_url}/invites/{quote(code, safe='')}"
        async with httpx.AsyncClient(transport=self._transport) as client:
            r = await client.get(url, timeout=self._timeout)
            if r.status_code == 200:
                return (r.json().get("guest_name") or "").strip() or None
            return None


class StaticGuestDirectory:
    def __init__(self, names: Mapping[str, str]):
        self._names = {k.lower(): v for k, v in names.items()}

    async def lookup_display_name(self, code: str) -> str | None:
        return self._names.get(code.lower())
