"""
Proxy Session Manager - Shared outbound HTTP session
Keeps one curl_cffi session alive for the process and rebuilds it on demand.
"""
import asyncio
import logging
from typing import Optional, Dict
from curl_cffi.const import CurlOpt
from curl_cffi.requests import AsyncSession
from config import ProxyConfig

logger = logging.getLogger(__name__)


class SessionFactory:
    """
    Owns the one outbound session shared by the engine, the player sync and
    the playlist passthrough. A rebuilt session keeps the browser
    impersonation, the cookies and the configured DNS order.
    """

    def __init__(
        self,
        impersonate: str = "chrome120",
        dns_order: str = "verbatim",
        timeout: float = ProxyConfig.TOTAL_TIMEOUT,
        retire_grace: Optional[float] = None
    ):
        self.impersonate = impersonate
        self.dns_order = dns_order
        self.timeout = timeout
        # a request on a retired session ends within one timeout
        self.retire_grace = timeout if retire_grace is None else retire_grace
        self.cookie_jar: Dict[str, str] = {}
        self._current_session: Optional[AsyncSession] = None
        self._recreate_lock = asyncio.Lock()
        self._retiring: Dict[asyncio.Task, AsyncSession] = {}

    async def create_session(self) -> AsyncSession:
        """
        Create a new session, restoring cookies from the previous one.
        """
        session = AsyncSession(
            impersonate=self.impersonate,
            headers=self._build_headers(),
            timeout=self.timeout,
            curl_options={CurlOpt.IPRESOLVE: ProxyConfig.ip_resolve_option(self.dns_order)}
        )

        for name, value in self.cookie_jar.items():
            session.cookies.set(name, value)

        self._current_session = session
        return session

    def _build_headers(self) -> Dict[str, str]:
        return {
            "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            "Accept-Language": "en-US,en;q=0.9",
        }

    async def get_session(self) -> AsyncSession:
        """Shared session, created lazily"""
        if self._current_session is None:
            return await self.create_session()
        return self._current_session

    async def recreate_session(self, failed: Optional[AsyncSession] = None) -> AsyncSession:
        """
        Replace ``failed`` after a transport error. Callers that report an
        already-replaced session get the current one. The retired session is
        closed after ``retire_grace`` so requests still on it can finish.
        """
        current = self._current_session
        if failed is not None and failed is not current:
            return await self.get_session()

        async with self._recreate_lock:
            if self._current_session is not current:
                return self._current_session

            if current:
                self.cookie_jar = dict(current.cookies)

            logger.info("[Session] Recreating session with preserved cookies...")
            session = await self.create_session()

        if current:
            task = asyncio.create_task(self._close_later(current))
            self._retiring[task] = current
            task.add_done_callback(lambda done: self._retiring.pop(done, None))
        return session

    async def _close_later(self, session: AsyncSession):
        await asyncio.sleep(self.retire_grace)
        await session.close()

    async def close(self):
        for task, session in list(self._retiring.items()):
            task.cancel()
            await session.close()
        self._retiring.clear()

        if self._current_session:
            await self._current_session.close()
            self._current_session = None
