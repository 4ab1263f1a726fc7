"""Registry visibility probe for published package versions.

After ``cargo publish`` returns, the new version may not yet be resolvable
by consumers. Publishing a dependent package before its dependency is
visible makes the registry reject it, so the publisher waits here until the
registry API reports the version.

The probe never raises for individual request failures: a non-200 answer or
a client error simply means "not visible yet". Only the overall deadline is
an error (:class:`TimeoutExceededError`).
"""

from __future__ import annotations

import asyncio
import logging
import time

import aiohttp
from aiolimiter import AsyncLimiter

from release_pipeline.config import (
    DEFAULT_PROPAGATION_INTERVAL,
    DEFAULT_PROPAGATION_TIMEOUT,
    REGISTRY_REQUEST_TIMEOUT,
    REGISTRY_USER_AGENT,
)
from release_pipeline.exceptions import TimeoutExceededError

logger = logging.getLogger(__name__)


class RegistryClient:
    r"""Asynchronous client for the registry's version metadata endpoint.

    Parameters
    ----------
    api_url : str
        Base URL of the crates API, e.g. ``https://crates.io/api/v1/crates``.
    user_agent : str, optional
        Sent with every request; crates.io rejects anonymous clients.
    request_timeout : float, optional
        Timeout for a single HTTP request.

    Examples
    --------
    >>> client = RegistryClient("https://crates.io/api/v1/crates")
    >>> # await client.wait_until_visible("valu3", "2.3.0")
    """

    def __init__(
        self,
        api_url: str,
        *,
        user_agent: str = REGISTRY_USER_AGENT,
        request_timeout: float = REGISTRY_REQUEST_TIMEOUT,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.user_agent = user_agent
        self.request_timeout = request_timeout

    def version_url(self, name: str, version: str) -> str:
        return f"{self.api_url}/{name}/{version}"

    async def version_visible(
        self, session: aiohttp.ClientSession, name: str, version: str
    ) -> bool:
        """Return True when the registry answers 200 for ``name@version``."""
        url = self.version_url(name, version)
        try:
            async with session.get(
                url,
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
                timeout=aiohttp.ClientTimeout(total=self.request_timeout),
            ) as response:
                status = response.status
                if status == 200:
                    return True
                if status != 404:
                    logger.debug("Registry answered %d for %s", status, url)
                return False
        except aiohttp.ClientError as e:
            logger.debug("Registry request failed for %s: %s", url, e)
            return False
        except asyncio.TimeoutError:
            logger.debug("Registry request timed out for %s", url)
            return False

    async def wait_until_visible(
        self,
        name: str,
        version: str,
        *,
        timeout: float = DEFAULT_PROPAGATION_TIMEOUT,
        interval: float = DEFAULT_PROPAGATION_INTERVAL,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        """Poll until ``name@version`` is visible or ``timeout`` elapses.

        Raises
        ------
        TimeoutExceededError
            If the version is still not visible when the deadline passes.
        """
        if session is None:
            async with aiohttp.ClientSession() as owned:
                await self._poll(owned, name, version, timeout, interval)
        else:
            await self._poll(session, name, version, timeout, interval)

    async def _poll(
        self,
        session: aiohttp.ClientSession,
        name: str,
        version: str,
        timeout: float,
        interval: float,
    ) -> None:
        limiter = AsyncLimiter(1, max(interval, 0.001))
        deadline = time.monotonic() + timeout
        attempts = 0
        while True:
            async with limiter:
                attempts += 1
                if await self.version_visible(session, name, version):
                    logger.info(
                        "%s %s is visible in the registry (after %d checks)",
                        name,
                        version,
                        attempts,
                    )
                    return
            if time.monotonic() >= deadline:
                raise TimeoutExceededError(
                    f"{name} {version} not visible in the registry after {timeout:g}s",
                    context={"unit": name, "version": version, "attempts": attempts},
                )
            logger.info("Waiting for %s %s to appear in the registry", name, version)


__all__ = ["RegistryClient"]
