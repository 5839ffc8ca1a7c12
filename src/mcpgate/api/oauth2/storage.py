# OAuth2 client, code and token storage.
# Created: 2026-10-19
#
# SQL-backed so several gateway instances can share one store. Every
# consume-once or at-most-one rule is enforced by the database itself: code
# redemption is one conditional UPDATE, direct-token uniqueness is a partial
# unique index.

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    String,
    create_engine,
    delete,
    event,
    select,
    text,
    update,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.types import TypeDecorator

from mcpgate.api.oauth2.models import AccessToken, AuthorizationCode, OAuthClient

logger = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, returns aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(UTC).replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    pass


class ClientRow(Base):
    __tablename__ = "mcp_oauth_clients"

    client_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    client_name: Mapped[str] = mapped_column(String(255))
    redirect_uris: Mapped[list] = mapped_column(JSON)
    grant_types: Mapped[list] = mapped_column(JSON)
    scope: Mapped[str] = mapped_column(String(255), default="mcp")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)


class CodeRow(Base):
    __tablename__ = "mcp_oauth_codes"

    code: Mapped[str] = mapped_column(String(128), primary_key=True)
    client_id: Mapped[str] = mapped_column(String(64), index=True)
    client_name: Mapped[str] = mapped_column(String(255))
    redirect_uri: Mapped[str] = mapped_column(String(2048))
    code_challenge: Mapped[str] = mapped_column(String(128))
    code_challenge_method: Mapped[str] = mapped_column(String(16))
    user_id: Mapped[str] = mapped_column(String(255))
    scope: Mapped[str] = mapped_column(String(255), default="")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, index=True)
    consumed: Mapped[bool] = mapped_column(Boolean, default=False)


class TokenRow(Base):
    __tablename__ = "mcp_access_tokens"
    __table_args__ = (
        # At most one live direct token per (user, label)
        Index(
            "uq_mcp_direct_token",
            "user_id",
            "client_name",
            unique=True,
            sqlite_where=text("direct = 1 AND revoked = 0"),
            postgresql_where=text("direct AND NOT revoked"),
        ),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True)
    preview: Mapped[str] = mapped_column(String(32))
    user_id: Mapped[str] = mapped_column(String(255), index=True)
    client_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    client_name: Mapped[str] = mapped_column(String(255))
    direct: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime)
    last_used_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_ip: Mapped[str] = mapped_column(String(64), default="")
    last_used_ip: Mapped[str] = mapped_column(String(64), default="")
    revoked: Mapped[bool] = mapped_column(Boolean, default=False)


def _client_from_row(row: ClientRow) -> OAuthClient:
    return OAuthClient(
        client_id=row.client_id,
        client_name=row.client_name,
        redirect_uris=list(row.redirect_uris or []),
        grant_types=list(row.grant_types or []),
        scope=row.scope,
        created_at=row.created_at,
    )


def _code_from_row(row: CodeRow) -> AuthorizationCode:
    return AuthorizationCode(
        code=row.code,
        client_id=row.client_id,
        client_name=row.client_name,
        redirect_uri=row.redirect_uri,
        code_challenge=row.code_challenge,
        code_challenge_method=row.code_challenge_method,
        user_id=row.user_id,
        scope=row.scope,
        expires_at=row.expires_at,
        created_at=row.created_at,
        consumed=row.consumed,
    )


def _token_from_row(row: TokenRow) -> AccessToken:
    return AccessToken(
        id=row.id,
        token_hash=row.token_hash,
        preview=row.preview,
        user_id=row.user_id,
        client_id=row.client_id,
        client_name=row.client_name,
        direct=row.direct,
        created_at=row.created_at,
        expires_at=row.expires_at,
        last_used_at=row.last_used_at,
        created_ip=row.created_ip,
        last_used_ip=row.last_used_ip,
        revoked=row.revoked,
    )


# Dialects that support the partial unique index on direct tokens
SUPPORTED_DIALECTS = ("sqlite", "postgresql")


def _check_dialect(name: str) -> None:
    if name not in SUPPORTED_DIALECTS:
        raise ValueError(
            f"Unsupported database dialect {name!r}; use one of: {', '.join(SUPPORTED_DIALECTS)}"
        )


def make_engine(database_url: str) -> Engine:
    backend = make_url(database_url).get_backend_name()
    _check_dialect(backend)
    if backend != "sqlite":
        return create_engine(database_url, pool_pre_ping=True)

    kwargs: dict = {"connect_args": {"check_same_thread": False, "timeout": 30}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)

    # Transactions take the write lock at BEGIN; concurrent writers queue on
    # the busy timeout instead of failing a SHARED -> RESERVED upgrade.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


class OAuthStorage:
    """SQL storage for clients, authorization codes and access tokens."""

    def __init__(self, database_url: str | None = None, engine: Engine | None = None):
        if engine is None:
            if database_url is None:
                from mcpgate.config import get_settings

                database_url = get_settings().resolved_database_url()
            engine = make_engine(database_url)
        _check_dialect(engine.dialect.name)
        self.engine = engine
        self._session = sessionmaker(engine, expire_on_commit=False)
        Base.metadata.create_all(engine)

    # -- clients ---------------------------------------------------------

    def save_client(self, client: OAuthClient) -> None:
        with self._session.begin() as session:
            session.add(
                ClientRow(
                    client_id=client.client_id,
                    client_name=client.client_name,
                    redirect_uris=list(client.redirect_uris),
                    grant_types=list(client.grant_types),
                    scope=client.scope,
                    created_at=client.created_at,
                )
            )

    def get_client(self, client_id: str) -> OAuthClient | None:
        with self._session() as session:
            row = session.get(ClientRow, client_id)
            return _client_from_row(row) if row else None

    # -- authorization codes ---------------------------------------------

    def store_code(self, code: AuthorizationCode) -> None:
        with self._session.begin() as session:
            session.add(
                CodeRow(
                    code=code.code,
                    client_id=code.client_id,
                    client_name=code.client_name,
                    redirect_uri=code.redirect_uri,
                    code_challenge=code.code_challenge,
                    code_challenge_method=code.code_challenge_method,
                    user_id=code.user_id,
                    scope=code.scope,
                    created_at=code.created_at,
                    expires_at=code.expires_at,
                    consumed=code.consumed,
                )
            )

    def consume_code(self, code: str, now: datetime) -> AuthorizationCode | None:
        """Atomically mark *code* consumed. Returns it only to the single winner."""
        with self._session.begin() as session:
            result = session.execute(
                update(CodeRow)
                .where(
                    CodeRow.code == code,
                    CodeRow.consumed.is_(False),
                    CodeRow.expires_at > now,
                )
                .values(consumed=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            row = session.get(CodeRow, code)
            return _code_from_row(row) if row else None

    # -- access tokens ---------------------------------------------------

    def store_token(self, token: AccessToken) -> None:
        with self._session.begin() as session:
            session.add(self._token_row(token))

    def store_direct_token(self, token: AccessToken, now: datetime) -> bool:
        """Insert a direct token unless the user already holds a live one for its label.

        Returns False on conflict. Expired direct tokens for the same label are
        revoked first so they do not block a replacement.
        """
        try:
            with self._session.begin() as session:
                session.execute(
                    update(TokenRow)
                    .where(
                        TokenRow.user_id == token.user_id,
                        TokenRow.client_name == token.client_name,
                        TokenRow.direct.is_(True),
                        TokenRow.revoked.is_(False),
                        TokenRow.expires_at <= now,
                    )
                    .values(revoked=True)
                    .execution_options(synchronize_session=False)
                )
                session.add(self._token_row(token))
        except IntegrityError:
            logger.info(
                "Direct token for user %s / %r already exists", token.user_id, token.client_name
            )
            return False
        return True

    def get_token_by_hash(self, token_hash: str) -> AccessToken | None:
        with self._session() as session:
            row = session.scalars(
                select(TokenRow).where(TokenRow.token_hash == token_hash)
            ).first()
            return _token_from_row(row) if row else None

    def touch_token(self, token_id: str, now: datetime, ip: str = "") -> None:
        with self._session.begin() as session:
            session.execute(
                update(TokenRow)
                .where(TokenRow.id == token_id)
                .values(last_used_at=now, last_used_ip=ip)
                .execution_options(synchronize_session=False)
            )

    def list_tokens(self, user_id: str, now: datetime) -> list[AccessToken]:
        """Active (unrevoked, unexpired) tokens for *user_id*, newest first."""
        with self._session() as session:
            rows = session.scalars(
                select(TokenRow)
                .where(
                    TokenRow.user_id == user_id,
                    TokenRow.revoked.is_(False),
                    TokenRow.expires_at > now,
                )
                .order_by(TokenRow.created_at.desc())
            ).all()
            return [_token_from_row(r) for r in rows]

    def revoke_token(self, token_id: str, user_id: str) -> bool:
        with self._session.begin() as session:
            result = session.execute(
                update(TokenRow)
                .where(
                    TokenRow.id == token_id,
                    TokenRow.user_id == user_id,
                    TokenRow.revoked.is_(False),
                )
                .values(revoked=True)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def revoke_all(self, user_id: str) -> int:
        with self._session.begin() as session:
            result = session.execute(
                update(TokenRow)
                .where(TokenRow.user_id == user_id, TokenRow.revoked.is_(False))
                .values(revoked=True)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    def revoke_by_hash(self, token_hash: str) -> bool:
        with self._session.begin() as session:
            result = session.execute(
                update(TokenRow)
                .where(TokenRow.token_hash == token_hash, TokenRow.revoked.is_(False))
                .values(revoked=True)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount > 0

    def cleanup_expired(self, now: datetime) -> tuple[int, int]:
        """Delete expired or consumed codes and revoke expired tokens.

        Returns (codes_deleted, tokens_revoked).
        """
        with self._session.begin() as session:
            codes = session.execute(
                delete(CodeRow)
                .where((CodeRow.expires_at <= now) | CodeRow.consumed.is_(True))
                .execution_options(synchronize_session=False)
            )
            tokens = session.execute(
                update(TokenRow)
                .where(TokenRow.expires_at <= now, TokenRow.revoked.is_(False))
                .values(revoked=True)
                .execution_options(synchronize_session=False)
            )
            return codes.rowcount, tokens.rowcount

    @staticmethod
    def _token_row(token: AccessToken) -> TokenRow:
        return TokenRow(
            id=token.id,
            token_hash=token.token_hash,
            preview=token.preview,
            user_id=token.user_id,
            client_id=token.client_id,
            client_name=token.client_name,
            direct=token.direct,
            created_at=token.created_at,
            expires_at=token.expires_at,
            last_used_at=token.last_used_at,
            created_ip=token.created_ip,
            last_used_ip=token.last_used_ip,
            revoked=token.revoked,
        )
