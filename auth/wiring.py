"""
auth/wiring.py -- Composition root for the auth components.

build_services() is the only place that turns Settings into objects. Every
component receives exactly the values it needs: the signing key and lifetimes
go to TokenIssuer, the bcrypt cost to PasswordHasher, the refresh lifetime to
SessionService. Nothing downstream reads configuration on its own.

Used by api/main.py (lifespan) and by the main.py admin CLI.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.contracts import RefreshTokenStore, UserStore
from auth.notifications import NotificationDispatcher, Notifier
from auth.passwords import PasswordHasher
from auth.service import SessionService
from auth.store import SqlRefreshTokenStore, SqlUserStore, create_store_engine
from auth.tokens import TokenIssuer
from auth.users import UserService
from core.config import Settings

logger = logging.getLogger("procureauth.wiring")


@dataclass
class Services:
    users: UserStore
    refresh_tokens: RefreshTokenStore
    notifier: Notifier
    session: SessionService
    user_admin: UserService
    engine: Engine | None = None

    def database_ok(self) -> bool:
        """Cheap liveness probe for the health endpoint."""
        if self.engine is None:
            return True
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Database health check failed", exc_info=True)
            return False
        return True

    def close(self) -> None:
        close_notifier = getattr(self.notifier, "close", None)
        if close_notifier is not None:
            close_notifier()
        if self.engine is not None:
            self.engine.dispose()


def assemble(
    settings: Settings,
    users: UserStore,
    refresh_tokens: RefreshTokenStore,
    notifier: Notifier,
    engine: Engine | None = None,
) -> Services:
    """Wire services around already-built stores and notifier (tests pass in-memory ones)."""
    session = SessionService(
        users=users,
        refresh_tokens=refresh_tokens,
        hasher=PasswordHasher(rounds=settings.bcrypt_rounds),
        issuer=TokenIssuer(
            settings.secret_key,
            access_ttl=settings.access_token_expire,
            reset_ttl=settings.reset_token_expire,
        ),
        notifier=notifier,
        refresh_token_ttl=timedelta(seconds=settings.refresh_token_expire),
    )
    return Services(
        users=users,
        refresh_tokens=refresh_tokens,
        notifier=notifier,
        session=session,
        user_admin=UserService(users=users, refresh_tokens=refresh_tokens),
        engine=engine,
    )


def build_services(settings: Settings) -> Services:
    """Build the production graph: relational stores on DATABASE_URL plus the webhook notifier."""
    engine = create_store_engine(settings.database_url)
    notifier = NotificationDispatcher(
        settings.notification_webhook_url,
        service_name=settings.service_name,
        timeout=settings.notification_timeout_seconds,
    )
    return assemble(settings, SqlUserStore(engine), SqlRefreshTokenStore(engine), notifier, engine=engine)
