import time
from typing import Callable, Optional

import aiohttp

from .api import SpotifyClient
from .auth import TokenManager
from .config import SpotifySettings
from .tools import SpotifyTools


class SpotifyServices:
    """
    Wires one shared aiohttp session into the token manager, API client and
    tool layer. Must be created inside a running event loop.
    """

    def __init__(self, settings: SpotifySettings, session: Optional[aiohttp.ClientSession] = None,
                 clock: Callable[[], float] = time.time):
        self.settings = settings
        self._owns_session = session is None
        self.session = session or aiohttp.ClientSession()
        self.tokens = TokenManager(self.session, settings, clock=clock)
        self.client = SpotifyClient(self.session, self.tokens, settings)
        self.tools = SpotifyTools(self.client, self.tokens, settings)

    async def close(self) -> None:
        if self._owns_session and not self.session.closed:
            await self.session.close()

    async def __aenter__(self) -> "SpotifyServices":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
