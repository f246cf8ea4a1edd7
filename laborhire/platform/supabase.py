"""
Supabase adapter for the ``Backend`` protocol.

Wraps the async supabase client. PostgREST, auth, storage and function
errors are re-raised as ``BackendError`` carrying the PostgREST error code
when there is one, so callers only ever branch on ``BackendError.code``.
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from postgrest.exceptions import APIError
from supabase import AsyncClient, acreate_client

from laborhire.config import ClientSettings, get_settings
from laborhire.platform.base import (
    AuthCallback,
    AuthSession,
    AuthUser,
    BackendError,
    Binding,
    ChangeCallback,
    ChangeEvent,
    Eq,
    Filter,
    In,
    IsNull,
    Or,
    Subscription,
)
from laborhire.types import parse_datetime

logger = logging.getLogger(__name__)


def _api_error(exc: APIError) -> BackendError:
    return BackendError(exc.message or str(exc), code=exc.code, details=exc.details)


def _to_session(raw: Any) -> Optional[AuthSession]:
    if raw is None:
        return None
    user = raw.user
    return AuthSession(
        access_token=raw.access_token,
        refresh_token=getattr(raw, "refresh_token", None),
        expires_at=getattr(raw, "expires_at", None),
        user=AuthUser(
            id=user.id,
            email=getattr(user, "email", None),
            metadata=dict(getattr(user, "user_metadata", None) or {}),
        ),
    )


def apply_filters(query: Any, filters: Sequence[Filter]) -> Any:
    """Translate filter values onto a PostgREST query builder."""
    for f in filters:
        if isinstance(f, Eq):
            query = query.eq(f.column, f.value)
        elif isinstance(f, IsNull):
            query = query.is_(f.column, "null")
        elif isinstance(f, In):
            query = query.in_(f.column, list(f.values))
        elif isinstance(f, Or):
            query = query.or_(f.to_postgrest())
        else:
            # and() and anything composite goes through the or-string form
            query = query.or_(f.to_postgrest())
    return query


def parse_change_payload(table: str, payload: Dict[str, Any]) -> ChangeEvent:
    """Normalise a postgres_changes payload into a ``ChangeEvent``."""
    data = payload.get("data", payload)
    return ChangeEvent(
        table=data.get("table", table),
        event_type=data.get("type") or data.get("eventType") or "",
        new=dict(data.get("record") or data.get("new") or {}),
        old=dict(data.get("old_record") or data.get("old") or {}),
        commit_timestamp=parse_datetime(data.get("commit_timestamp")),
    )


class SupabaseBackend:
    """``Backend`` implementation over ``supabase.AsyncClient``."""

    def __init__(self, client: AsyncClient):
        self.client = client

    @classmethod
    async def connect(cls, settings: Optional[ClientSettings] = None) -> "SupabaseBackend":
        """Create a backend from LABORHIRE_SUPABASE_URL / LABORHIRE_SUPABASE_ANON_KEY."""
        settings = settings or get_settings()
        if not settings.supabase_url or not settings.supabase_anon_key:
            raise ValueError("LABORHIRE_SUPABASE_URL and LABORHIRE_SUPABASE_ANON_KEY must be set")
        client = await acreate_client(settings.supabase_url, settings.supabase_anon_key)
        return cls(client)

    # === Tables ===

    async def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        *,
        columns: str = "*",
        order: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        query = apply_filters(self.client.table(table).select(columns), filters)
        if order:
            query = query.order(order, desc=desc)
        if limit is not None:
            query = query.limit(limit)
        try:
            result = await query.execute()
        except APIError as e:
            raise _api_error(e) from e
        return result.data or []

    async def count(self, table: str, filters: Sequence[Filter] = ()) -> int:
        query = apply_filters(self.client.table(table).select("*", count="exact", head=True), filters)
        try:
            result = await query.execute()
        except APIError as e:
            raise _api_error(e) from e
        return result.count or 0

    async def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = await self.client.table(table).insert(row).execute()
        except APIError as e:
            raise _api_error(e) from e
        if not result.data:
            raise BackendError(f"Insert into {table} returned no row")
        return result.data[0]

    async def update(
        self, table: str, values: Dict[str, Any], filters: Sequence[Filter]
    ) -> List[Dict[str, Any]]:
        query = apply_filters(self.client.table(table).update(values), filters)
        try:
            result = await query.execute()
        except APIError as e:
            raise _api_error(e) from e
        return result.data or []

    # === Server logic ===

    async def rpc(self, function: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            result = await self.client.rpc(function, params or {}).execute()
        except APIError as e:
            raise _api_error(e) from e
        return result.data

    async def invoke_function(self, name: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            raw = await self.client.functions.invoke(name, invoke_options={"body": body})
        except Exception as e:
            raise BackendError(f"Function {name} failed: {e}") from e
        if isinstance(raw, (bytes, bytearray)):
            raw = json.loads(raw.decode("utf-8") or "{}")
        return raw or {}

    # === Auth ===

    async def sign_up(
        self, email: str, password: str, metadata: Dict[str, Any], redirect_to: Optional[str] = None
    ) -> Optional[AuthSession]:
        options: Dict[str, Any] = {"data": metadata}
        if redirect_to:
            options["email_redirect_to"] = redirect_to
        try:
            response = await self.client.auth.sign_up(
                {"email": email, "password": password, "options": options}
            )
        except Exception as e:
            raise BackendError(str(e), code=getattr(e, "code", None)) from e
        return _to_session(response.session)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        try:
            response = await self.client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except Exception as e:
            raise BackendError(str(e), code=getattr(e, "code", None)) from e
        session = _to_session(response.session)
        if session is None:
            raise BackendError("Sign-in returned no session")
        return session

    async def sign_out(self) -> None:
        try:
            await self.client.auth.sign_out()
        except Exception as e:
            raise BackendError(str(e), code=getattr(e, "code", None)) from e

    async def reset_password_for_email(self, email: str, redirect_to: Optional[str] = None) -> None:
        options = {"redirect_to": redirect_to} if redirect_to else {}
        try:
            await self.client.auth.reset_password_for_email(email, options)
        except Exception as e:
            raise BackendError(str(e), code=getattr(e, "code", None)) from e

    async def get_session(self) -> Optional[AuthSession]:
        return _to_session(await self.client.auth.get_session())

    def on_auth_state_change(self, callback: AuthCallback) -> Callable[[], None]:
        def _listener(event: Any, raw_session: Any) -> None:
            callback(str(getattr(event, "value", event)), _to_session(raw_session))

        handle = self.client.auth.on_auth_state_change(_listener)
        return handle.unsubscribe

    # === Storage ===

    async def upload(
        self, bucket: str, path: str, data: bytes, content_type: Optional[str] = None
    ) -> str:
        file_options = {"content-type": content_type} if content_type else {}
        try:
            await self.client.storage.from_(bucket).upload(path, data, file_options)
        except Exception as e:
            raise BackendError(f"Upload to {bucket} failed: {e}") from e
        return path

    async def remove(self, bucket: str, paths: Sequence[str]) -> None:
        try:
            await self.client.storage.from_(bucket).remove(list(paths))
        except Exception as e:
            raise BackendError(f"Delete from {bucket} failed: {e}") from e

    async def public_url(self, bucket: str, path: str) -> str:
        return await self.client.storage.from_(bucket).get_public_url(path)

    async def signed_url(self, bucket: str, path: str, expires_in: int) -> str:
        try:
            data = await self.client.storage.from_(bucket).create_signed_url(path, expires_in)
        except Exception as e:
            raise BackendError(f"Signed URL for {bucket} failed: {e}") from e
        return data.get("signedURL") or data.get("signedUrl") or ""

    # === Realtime ===

    async def subscribe(
        self, channel: str, bindings: Sequence[Binding], callback: ChangeCallback
    ) -> Subscription:
        realtime_channel = self.client.channel(channel)
        for binding in bindings:
            kwargs: Dict[str, Any] = {"schema": "public", "table": binding.table}
            filter_string = binding.filter_string()
            if filter_string:
                kwargs["filter"] = filter_string

            def _on_change(payload: Dict[str, Any], table: str = binding.table) -> None:
                callback(parse_change_payload(table, payload))

            realtime_channel.on_postgres_changes(binding.event, _on_change, **kwargs)

        await realtime_channel.subscribe()
        logger.debug(f"Subscribed to realtime channel {channel} ({len(bindings)} bindings)")
        return Subscription(channel=channel, bindings=list(bindings), handle=realtime_channel)

    async def unsubscribe(self, subscription: Subscription) -> None:
        if subscription.handle is not None:
            await self.client.remove_channel(subscription.handle)
