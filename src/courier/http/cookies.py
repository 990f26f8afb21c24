"""Cookie jar backed by ``aiohttp.CookieJar``."""

from __future__ import annotations

import logging
from http.cookies import CookieError, SimpleCookie
from typing import Optional

import aiohttp
from yarl import URL

logger = logging.getLogger(__name__)


class AiohttpCookieJar:
    """
    Cookie jar for the ``cookie_jar`` option.

    Domain, path, expiry and secure matching are done by aiohttp.

    Example:
        jar = AiohttpCookieJar()
        client = Client(cookie_jar=jar)
        await client.get("https://example.com/login")
        print(await jar.get_cookie_string("https://example.com/"))
    """

    def __init__(self, *, unsafe: bool = False) -> None:
        """
        Initialize the jar.

        Args:
            unsafe: Accept cookies from IP-address hosts
        """
        self._unsafe = unsafe
        self._jar: Optional[aiohttp.CookieJar] = None

    @property
    def jar(self) -> aiohttp.CookieJar:
        # aiohttp binds the jar to the running loop on creation
        if self._jar is None:
            self._jar = aiohttp.CookieJar(unsafe=self._unsafe)
        return self._jar

    def __len__(self) -> int:
        return len(self.jar)

    async def get_cookie_string(self, url: str) -> str:
        cookies = self.jar.filter_cookies(URL(url))
        return "; ".join(f"{morsel.key}={morsel.value}" for morsel in cookies.values())

    async def set_cookie(self, raw_cookie: str, url: str) -> None:
        """
        Store one ``set-cookie`` header value.

        Raises:
            ValueError: If the header cannot be parsed
        """
        cookie: SimpleCookie = SimpleCookie()
        try:
            cookie.load(raw_cookie)
        except CookieError as e:
            raise ValueError(f"Invalid cookie: {raw_cookie!r}") from e
        if not cookie:
            raise ValueError(f"Invalid cookie: {raw_cookie!r}")
        self.jar.update_cookies(cookie, URL(url))
        logger.debug(f"Stored cookie {', '.join(cookie.keys())} from {url}")

    def clear(self) -> None:
        if self._jar is not None:
            self._jar.clear()
