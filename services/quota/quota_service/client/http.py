"""
ABOUTME: Async HTTP client for the quota service API
ABOUTME: Retries connection failures only, so a debit is never sent twice
"""

from typing import Optional, Type

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from quota_service.client.responses import Err, QuotaResponse, T, decode
from quota_service.db.models import (
    AlphaCodeResponse,
    ChargeResult,
    DeductResult,
    GemStatus,
    PurgeResult,
    ResetResult,
    TokenStatus,
    TrackResult,
)
from quota_service.utils.logging import logger


class QuotaClient:
    """
    Client for one authenticated user

    Every method returns ``Ok`` or ``Err``; transport failures become
    ``Err(status_code=0)`` instead of raising.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "QuotaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.ConnectTimeout)),
        reraise=True,
    )
    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        return await self._http.request(method, path, **kwargs)

    async def _call(
        self, method: str, path: str, model: Type[T], **kwargs
    ) -> QuotaResponse[T]:
        try:
            response = await self._send(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(
                f"Quota service unreachable: {type(e).__name__}",
                extra={"method": method, "path": path},
            )
            return Err(message="Quota service unavailable")
        return decode(response, model)

    # Gems

    async def get_gem_status(self) -> QuotaResponse[GemStatus]:
        return await self._call("GET", "/gems/status", GemStatus)

    async def deduct_gems(self, amount: int) -> QuotaResponse[DeductResult]:
        """Insufficient gems come back as Err(400) with ``remaining_gems`` in the body"""
        return await self._call("POST", "/gems/deduct", DeductResult, json={"gems_to_deduct": amount})

    async def reset_gems(self) -> QuotaResponse[ResetResult]:
        return await self._call("POST", "/gems/reset", ResetResult, json={})

    async def charge_interaction(
        self, input_tokens: int, output_tokens: int
    ) -> QuotaResponse[ChargeResult]:
        return await self._call(
            "POST",
            "/gems/charge",
            ChargeResult,
            json={"input_tokens": input_tokens, "output_tokens": output_tokens},
        )

    # Tokens

    async def track_tokens(self, tokens: int) -> QuotaResponse[TrackResult]:
        return await self._call("POST", "/tokens/track", TrackResult, json={"tokens_to_add": tokens})

    async def get_token_status(self) -> QuotaResponse[TokenStatus]:
        return await self._call("GET", "/tokens/status", TokenStatus)

    # Alpha / account

    async def validate_alpha_code(self, code: str) -> QuotaResponse[AlphaCodeResponse]:
        return await self._call("POST", "/validate-alpha-code", AlphaCodeResponse, json={"code": code})

    async def purge_quota(self) -> QuotaResponse[PurgeResult]:
        return await self._call("DELETE", "/quota", PurgeResult)
