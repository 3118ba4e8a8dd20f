"""Per-request retry loop binding account selection to upstream dispatch.

Each inbound call walks the pool at most once per account. Rate limits
(HTTP 429) and local failures (bad credentials, transport errors while
sending or reading) burn an attempt and rotate; every other upstream error
goes back to the caller unchanged.
"""

from collections.abc import Mapping
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING

import httpx
import orjson
from starlette.responses import Response
from structlog import get_logger

from codex_multi_proxy.auth.jwt import extract_account_id
from codex_multi_proxy.auth.oauth.token_exchange import OAuthConfig
from codex_multi_proxy.exceptions import (
    AccountsExhaustedError,
    CredentialStoreError,
    NoAccountsConfiguredError,
)
from codex_multi_proxy.request.headers import build_codex_headers, rewrite_url
from codex_multi_proxy.request.response_handler import (
    STREAM_EXCLUDED_HEADERS,
    passthrough_or_convert,
)
from codex_multi_proxy.request.transformer import (
    get_model_family,
    parse_request_body,
    transform_request_body,
)
from codex_multi_proxy.rotation.accounts import (
    CooldownReason,
    ManagedAccount,
    format_wait_time,
)
from codex_multi_proxy.rotation.host_auth import HostCredential, save_host_credential
from codex_multi_proxy.rotation.pool import AccountPool
from codex_multi_proxy.rotation.rate_limits import (
    is_rate_limit_status,
    parse_retry_after_ms,
    usage_limit_message,
)
from codex_multi_proxy.rotation.tokens import (
    TokenRefreshFailure,
    TokenRefreshSuccess,
    is_expired,
    refresh,
)
from codex_multi_proxy.services.instructions import (
    InstructionsProvider,
    NullInstructionsProvider,
)
from codex_multi_proxy.services.notifier import Notifier, NullNotifier


if TYPE_CHECKING:
    from codex_multi_proxy.config.settings import Settings

logger = get_logger(__name__)

RATE_LIMIT_NOTICE = "Rate limit reached. Switching accounts."


def oauth_config_from_settings(settings: "Settings") -> OAuthConfig:
    return OAuthConfig(
        authorize_url=settings.oauth.authorize_url,
        token_url=settings.oauth.token_url,
        client_id=settings.oauth.client_id,
        redirect_uri=settings.oauth.redirect_uri,
        scope=settings.oauth.scope,
        timeout=settings.oauth.timeout_seconds,
    )


def exhausted_message(account_count: int, wait_ms: int) -> str:
    if account_count == 0:
        return NoAccountsConfiguredError().message
    wait_label = format_wait_time(wait_ms) if wait_ms > 0 else "a bit"
    return (
        f"All {account_count} account(s) are rate-limited. Try again in "
        f"{wait_label} or add another account with `codex-multi-proxy auth add`."
    )


class RequestOrchestrator:
    """Runs one inbound Codex call against the account pool.

    The pool lock is held only while account state is read or changed;
    token refresh and upstream dispatch run outside it.
    """

    def __init__(
        self,
        pool: AccountPool,
        http_client: httpx.AsyncClient,
        settings: "Settings",
        *,
        notifier: Notifier | None = None,
        instructions: InstructionsProvider | None = None,
        host_credential: HostCredential | None = None,
        host_auth_path: Path | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            pool: Shared account pool session
            http_client: Client used for upstream dispatch and token refresh
            settings: Application settings
            notifier: Sink for user-facing rotation messages
            instructions: Source of per-model-family instructions
            host_credential: Credential the host handed in, kept in sync on refresh
            host_auth_path: Where the host credential is written back
        """
        self.pool = pool
        self.http_client = http_client
        self.settings = settings
        self.notifier = notifier or NullNotifier()
        self.instructions = instructions or NullInstructionsProvider()
        self.host_credential = host_credential
        self.host_auth_path = host_auth_path
        self.oauth_config = oauth_config_from_settings(settings)

    @property
    def upstream_url(self) -> str:
        return rewrite_url(f"{self.settings.codex.base_url.rstrip('/')}/responses")

    async def handle(
        self, raw_body: bytes | None, inbound_headers: Mapping[str, str] | None = None
    ) -> Response:
        """Forward one call, rotating accounts on rate limits and auth failures.

        Raises:
            NoAccountsConfiguredError: The pool is empty
            AccountsExhaustedError: Every account was tried or is blocked
        """
        parsed = parse_request_body(raw_body)
        request_settings = self.settings.request
        body = transform_request_body(
            parsed.body,
            "",
            reasoning_effort=request_settings.reasoning_effort,
            reasoning_summary=request_settings.reasoning_summary,
            text_verbosity=request_settings.text_verbosity,
            include=request_settings.include,
        )
        body["instructions"] = await self.instructions.fetch(
            get_model_family(body["model"])
        )
        content = orjson.dumps(body)

        account_count = self.pool.account_count
        budget = max(1, account_count)
        attempted: set[int] = set()

        while len(attempted) < budget:
            async with self.pool.lock:
                previous_active = self.pool.active_index
                account = self.pool.current_or_next()
                if self.pool.active_index != previous_active:
                    self.pool.save()
                if account is None or account.index in attempted:
                    break
                attempted.add(account.index)
                needs_refresh = is_expired(account)
                refresh_token = account.refresh_token

            if needs_refresh and not await self._refresh_account(account, refresh_token):
                continue

            async with self.pool.lock:
                account_id = account.account_id or extract_account_id(
                    account.access_token
                )
                if not account_id:
                    logger.warning("account_identity_missing", index=account.index)
                    self._cool_down(
                        account,
                        self.settings.rotation.auth_failure_cooldown_ms,
                        CooldownReason.AUTH_FAILURE,
                    )
                    continue
                account.account_id = account_id
                access_token = account.access_token or ""
                self._notify_switch(account, account_count)

            headers = build_codex_headers(
                inbound_headers, account_id, access_token, parsed.prompt_cache_key
            )
            request = self.http_client.build_request(
                "POST", self.upstream_url, headers=headers, content=content
            )
            try:
                upstream = await self.http_client.send(request, stream=True)
            except httpx.TransportError as e:
                await self._network_failure(account, e, "dispatch")
                continue

            logger.debug(
                "upstream_response",
                index=account.index,
                status_code=upstream.status_code,
            )

            if is_rate_limit_status(upstream.status_code):
                await self._handle_rate_limit(account, upstream)
                continue

            try:
                if not upstream.is_success:
                    return await self._error_response(upstream)
                return await passthrough_or_convert(
                    upstream,
                    parsed.wants_stream,
                    on_stream_error=partial(self._stream_failure, account),
                )
            except httpx.TransportError as e:
                await self._network_failure(account, e, "body")
                continue

        async with self.pool.lock:
            wait_ms = self.pool.min_wait_time()
            count = self.pool.account_count
        logger.warning(
            "accounts_exhausted",
            account_count=count,
            attempted=sorted(attempted),
            wait_ms=wait_ms,
        )
        if count == 0:
            raise NoAccountsConfiguredError()
        raise AccountsExhaustedError(
            exhausted_message(count, wait_ms), retry_after_ms=wait_ms
        )

    async def _refresh_account(self, account: ManagedAccount, refresh_token: str) -> bool:
        result = await refresh(
            refresh_token,
            config=self.oauth_config,
            client=self.http_client,
            max_attempts=self.settings.oauth.refresh_attempts,
        )

        async with self.pool.lock:
            if isinstance(result, TokenRefreshFailure):
                logger.warning(
                    "account_refresh_failed",
                    index=account.index,
                    reason=result.reason,
                    invalid_grant=result.invalid_grant,
                )
                self._cool_down(
                    account,
                    self.settings.rotation.auth_failure_cooldown_ms,
                    CooldownReason.AUTH_FAILURE,
                )
                return False

            self.pool.update_from_tokens(
                account, result.access, result.refresh, result.expires
            )
            self.pool.save()
            self._sync_host_credential(refresh_token, result)
        return True

    def _sync_host_credential(
        self, previous_refresh: str, tokens: TokenRefreshSuccess
    ) -> None:
        host = self.host_credential
        if host is None or host.refresh != previous_refresh:
            return
        host.refresh = tokens.refresh
        host.access = tokens.access
        host.expires = tokens.expires
        if self.host_auth_path is None:
            return
        try:
            save_host_credential(host, self.host_auth_path)
        except CredentialStoreError as e:
            logger.error("host_credential_sync_failed", error=str(e))

    def _cool_down(
        self, account: ManagedAccount, cooldown_ms: int, reason: CooldownReason
    ) -> None:
        self.pool.mark_cooling_down(account, cooldown_ms, reason)
        self.pool.save()

    def _notify_switch(self, account: ManagedAccount, account_count: int) -> None:
        if account_count <= 1 or not self.pool.should_notify(account.index):
            return
        self.notifier.notify(
            f"Using {account.label} ({account.index + 1}/{account_count})", "info"
        )
        self.pool.mark_notified(account.index)

    async def _network_failure(
        self, account: ManagedAccount, error: httpx.TransportError, stage: str
    ) -> None:
        """Cool an account down after a transport error or timeout."""
        logger.warning(
            "upstream_transport_failed",
            index=account.index,
            stage=stage,
            error=str(error),
            timeout=isinstance(error, httpx.TimeoutException),
        )
        async with self.pool.lock:
            self._cool_down(
                account,
                self.settings.rotation.network_error_cooldown_ms,
                CooldownReason.NETWORK_ERROR,
            )

    async def _stream_failure(
        self, account: ManagedAccount, error: httpx.TransportError
    ) -> None:
        await self._network_failure(account, error, "stream")

    async def _handle_rate_limit(
        self, account: ManagedAccount, upstream: httpx.Response
    ) -> None:
        # Headers alone decide the block; the body only feeds the log message
        retry_after_ms = parse_retry_after_ms(
            upstream.headers, default_ms=self.settings.rotation.default_retry_after_ms
        )
        async with self.pool.lock:
            self.pool.mark_rate_limited(account, retry_after_ms)
            self.pool.advance_past(account)
            self.pool.save()
            if self.pool.account_count > 1 and self.pool.should_notify(account.index):
                self.notifier.notify(RATE_LIMIT_NOTICE, "warning")
                self.pool.mark_notified(account.index)

        try:
            body = await upstream.aread()
        except httpx.TransportError as e:
            logger.debug("rate_limit_body_unread", index=account.index, error=str(e))
            return
        finally:
            await upstream.aclose()

        message = usage_limit_message(upstream.status_code, body, upstream.headers)
        if message:
            logger.info("usage_limit_reached", index=account.index, detail=message)

    async def _error_response(self, upstream: httpx.Response) -> Response:
        """Return a non-rate-limit upstream error unchanged."""
        try:
            body = await upstream.aread()
        finally:
            await upstream.aclose()

        message = usage_limit_message(upstream.status_code, body, upstream.headers)
        logger.warning(
            "upstream_error",
            status_code=upstream.status_code,
            detail=message,
            content_preview=body[:200].decode("utf-8", errors="replace"),
        )
        headers = {
            k: v
            for k, v in upstream.headers.items()
            if k.lower() not in STREAM_EXCLUDED_HEADERS
        }
        return Response(content=body, status_code=upstream.status_code, headers=headers)
