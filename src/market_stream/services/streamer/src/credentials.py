"""Credential providers for the upstream stream token."""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Mapping, Optional, Protocol, Tuple

from .errors import CredentialError, UnsupportedAccountError


logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    """Anything that can hand out a bearer token for an account selector."""

    async def get_credential(self, account: str) -> str:
        ...


class StaticCredentialProvider:
    """Serves fixed tokens, e.g. an API key read from the environment."""

    def __init__(self, tokens: Mapping[str, str]):
        self._tokens: Dict[str, str] = dict(tokens)

    async def get_credential(self, account: str) -> str:
        token = self._tokens.get(account)
        if token is None:
            raise UnsupportedAccountError(f"No credentials found for account type: {account}")
        if not token:
            raise CredentialError(f"Empty credential configured for account type: {account}")
        return token


@dataclass(frozen=True)
class _CachedToken:
    token: str
    expires_at: float


# fetch(account) -> (token, ttl_seconds); a ttl of None means use the default
TokenFetcher = Callable[[str], Awaitable[Tuple[str, Optional[float]]]]


class CachedCredentialProvider:
    """
    Get-or-compute token cache with expiry.

    Tokens are fetched through ``fetch`` on a miss or once the stored expiry
    has passed. Concurrent callers share one fetch per account; unsupported
    accounts are never cached and never retried here.
    """

    def __init__(
        self,
        fetch: TokenFetcher,
        default_ttl_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self._fetch = fetch
        self._default_ttl = default_ttl_seconds
        self._clock = clock
        self._cache: Dict[str, _CachedToken] = {}
        self._lock = asyncio.Lock()

    async def get_credential(self, account: str) -> str:
        cached = self._cache.get(account)
        if cached and self._clock() < cached.expires_at:
            return cached.token

        async with self._lock:
            # Another caller may have refreshed it while we waited
            cached = self._cache.get(account)
            if cached and self._clock() < cached.expires_at:
                return cached.token

            logger.info(f"Fetching credential for account type: {account}")
            token, ttl = await self._fetch(account)
            if not token:
                raise CredentialError(f"Empty credential returned for account type: {account}")

            ttl = self._default_ttl if ttl is None else ttl
            self._cache[account] = _CachedToken(token=token, expires_at=self._clock() + ttl)
            return token

    def invalidate(self, account: Optional[str] = None) -> None:
        """Drop one cached token, or all of them."""
        if account is None:
            self._cache.clear()
        else:
            self._cache.pop(account, None)


def mask_token(token: str, visible_chars: int = 4) -> str:
    """Mask a token, showing only its last few characters."""
    if not token or len(token) <= visible_chars:
        return "****"
    return "*" * (len(token) - visible_chars) + token[-visible_chars:]
