"""
PostgreSQL store.

Each transaction opens its own psycopg connection at SERIALIZABLE
isolation. Serialization failures surface as TransactionConflictError so
the caller can replay the request; the store itself never retries.
"""

from __future__ import annotations

from contextlib import contextmanager
from importlib import resources
from typing import Iterator

import psycopg
from loguru import logger
from psycopg import errors as pg_errors

from identity_core.config import settings
from identity_core.domain.identifiers import AccountID, EntityID, EntityKind, UserID, parse_account_id, parse_entity_id
from identity_core.domain.models import AccessToken, APIKey, UserAccount, UserState
from identity_core.domain.rights import Rights
from identity_core.runtime.errors import ConflictError, InternalError, ServiceError, TransactionConflictError

_API_KEY_COLUMNS = "key_id, entity_kind, entity_id, name, secret_hash, rights, created_at, updated_at, expires_at"


def _row_to_api_key(row) -> APIKey:
    key_id, kind, ident, name, secret_hash, rights, created_at, updated_at, expires_at = row
    return APIKey(
        id=key_id,
        entity=parse_entity_id(kind, ident),
        secret_hash=secret_hash,
        name=name,
        rights=Rights(rights or ()),
        created_at=created_at,
        updated_at=updated_at,
        expires_at=expires_at,
    )


class PostgresTransaction:
    """Transaction operations over a single cursor."""

    def __init__(self, cur: psycopg.Cursor):
        self.cur = cur

    # Users and entities

    def get_user(self, ids: UserID) -> UserAccount | None:
        self.cur.execute(
            "SELECT admin, state, primary_email_validated_at FROM users WHERE user_id = %s",
            (ids.user_id,),
        )
        row = self.cur.fetchone()
        if not row:
            return None
        admin, state, validated_at = row
        return UserAccount(ids=ids, admin=admin, state=UserState(state), primary_email_validated_at=validated_at)

    def put_user(self, user: UserAccount) -> None:
        self.cur.execute(
            """
            INSERT INTO users (user_id, admin, state, primary_email_validated_at)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (user_id) DO UPDATE
            SET admin = EXCLUDED.admin, state = EXCLUDED.state,
                primary_email_validated_at = EXCLUDED.primary_email_validated_at
            """,
            (user.ids.user_id, user.admin, user.state.value, user.primary_email_validated_at),
        )
        self.cur.execute(
            "INSERT INTO entities (entity_kind, entity_id) VALUES (%s, %s) ON CONFLICT DO NOTHING",
            (EntityKind.USER.value, user.ids.user_id),
        )

    def entity_exists(self, ids: EntityID) -> bool:
        self.cur.execute(
            "SELECT 1 FROM entities WHERE entity_kind = %s AND entity_id = %s",
            (ids.kind.value, ids.id),
        )
        return self.cur.fetchone() is not None

    def create_entity(self, ids: EntityID) -> None:
        self.cur.execute(
            "INSERT INTO entities (entity_kind, entity_id) VALUES (%s, %s) ON CONFLICT DO NOTHING",
            (ids.kind.value, ids.id),
        )
        if self.cur.rowcount == 0:
            raise ConflictError(f"{ids} already exists", entity=str(ids))

    def delete_entity(self, ids: EntityID) -> None:
        self.cur.execute(
            "DELETE FROM entities WHERE entity_kind = %s AND entity_id = %s",
            (ids.kind.value, ids.id),
        )

    # Access tokens

    def get_access_token(self, token: str) -> AccessToken | None:
        self.cur.execute(
            """
            SELECT user_id, client_id, scope, created_at, expires_in, redirect_uri
            FROM access_tokens WHERE token = %s
            """,
            (token,),
        )
        row = self.cur.fetchone()
        if not row:
            return None
        user_id, client_id, scope, created_at, expires_in, redirect_uri = row
        return AccessToken(
            token=token,
            user_ids=UserID(user_id),
            client_id=client_id,
            scope=Rights(scope or ()),
            created_at=created_at,
            expires_in=expires_in,
            redirect_uri=redirect_uri,
        )

    def put_access_token(self, token: AccessToken) -> None:
        self.cur.execute(
            """
            INSERT INTO access_tokens (token, user_id, client_id, scope, created_at, expires_in, redirect_uri)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            """,
            (
                token.token,
                token.user_ids.user_id,
                token.client_id,
                token.scope.to_strings(),
                token.created_at,
                token.expires_in,
                token.redirect_uri,
            ),
        )

    # API keys

    def get_api_key(self, key_id: str) -> APIKey | None:
        self.cur.execute(f"SELECT {_API_KEY_COLUMNS} FROM api_keys WHERE key_id = %s", (key_id,))
        row = self.cur.fetchone()
        return _row_to_api_key(row) if row else None

    def find_api_key_by_name(self, entity: EntityID, name: str) -> APIKey | None:
        self.cur.execute(
            f"SELECT {_API_KEY_COLUMNS} FROM api_keys WHERE entity_kind = %s AND entity_id = %s AND name = %s",
            (entity.kind.value, entity.id, name),
        )
        row = self.cur.fetchone()
        return _row_to_api_key(row) if row else None

    def list_api_keys(self, entity: EntityID, limit: int = 0, page: int = 1) -> tuple[list[APIKey], int]:
        params: list = [entity.kind.value, entity.id]
        self.cur.execute(
            "SELECT COUNT(*) FROM api_keys WHERE entity_kind = %s AND entity_id = %s",
            params,
        )
        total = self.cur.fetchone()[0]

        query = (
            f"SELECT {_API_KEY_COLUMNS} FROM api_keys WHERE entity_kind = %s AND entity_id = %s "
            "ORDER BY created_at, key_id"
        )
        if limit > 0:
            query += " LIMIT %s OFFSET %s"
            params += [limit, (max(page, 1) - 1) * limit]
        self.cur.execute(query, params)
        return [_row_to_api_key(row) for row in self.cur.fetchall()], total

    def put_api_key(self, key: APIKey) -> None:
        self.cur.execute(
            f"""
            INSERT INTO api_keys ({_API_KEY_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (key_id) DO UPDATE
            SET name = EXCLUDED.name, rights = EXCLUDED.rights,
                updated_at = EXCLUDED.updated_at, expires_at = EXCLUDED.expires_at
            """,
            (
                key.id,
                key.entity.kind.value,
                key.entity.id,
                key.name,
                key.secret_hash,
                key.rights.to_strings(),
                key.created_at,
                key.updated_at,
                key.expires_at,
            ),
        )

    def delete_api_key(self, key_id: str) -> None:
        self.cur.execute("DELETE FROM api_keys WHERE key_id = %s", (key_id,))

    def delete_entity_api_keys(self, entity: EntityID) -> None:
        self.cur.execute(
            "DELETE FROM api_keys WHERE entity_kind = %s AND entity_id = %s",
            (entity.kind.value, entity.id),
        )

    # Memberships

    def get_membership(self, account: AccountID, entity: EntityID) -> Rights | None:
        self.cur.execute(
            """
            SELECT rights FROM memberships
            WHERE account_kind = %s AND account_id = %s AND entity_kind = %s AND entity_id = %s
            """,
            (account.kind.value, account.id, entity.kind.value, entity.id),
        )
        row = self.cur.fetchone()
        return Rights(row[0]) if row else None

    def put_membership(self, account: AccountID, entity: EntityID, rights: Rights) -> None:
        self.cur.execute(
            """
            INSERT INTO memberships (account_kind, account_id, entity_kind, entity_id, rights)
            VALUES (%s, %s, %s, %s, %s)
            ON CONFLICT (account_kind, account_id, entity_kind, entity_id) DO UPDATE
            SET rights = EXCLUDED.rights, updated_at = NOW()
            """,
            (account.kind.value, account.id, entity.kind.value, entity.id, rights.to_strings()),
        )

    def delete_membership(self, account: AccountID, entity: EntityID) -> None:
        self.cur.execute(
            """
            DELETE FROM memberships
            WHERE account_kind = %s AND account_id = %s AND entity_kind = %s AND entity_id = %s
            """,
            (account.kind.value, account.id, entity.kind.value, entity.id),
        )

    def list_members(self, entity: EntityID) -> list[tuple[AccountID, Rights]]:
        self.cur.execute(
            """
            SELECT account_kind, account_id, rights FROM memberships
            WHERE entity_kind = %s AND entity_id = %s
            ORDER BY account_kind, account_id
            """,
            (entity.kind.value, entity.id),
        )
        return [(parse_account_id(kind, ident), Rights(rights)) for kind, ident, rights in self.cur.fetchall()]

    def list_memberships(self, account: AccountID, kind: EntityKind | None = None) -> list[tuple[EntityID, Rights]]:
        query = "SELECT entity_kind, entity_id, rights FROM memberships WHERE account_kind = %s AND account_id = %s"
        params: list = [account.kind.value, account.id]
        if kind is not None:
            query += " AND entity_kind = %s"
            params.append(kind.value)
        self.cur.execute(query + " ORDER BY entity_kind, entity_id", params)
        return [(parse_entity_id(k, ident), Rights(rights)) for k, ident, rights in self.cur.fetchall()]

    def delete_entity_members(self, entity: EntityID) -> None:
        self.cur.execute(
            "DELETE FROM memberships WHERE entity_kind = %s AND entity_id = %s",
            (entity.kind.value, entity.id),
        )

    def delete_account_members(self, account: AccountID) -> None:
        self.cur.execute(
            "DELETE FROM memberships WHERE account_kind = %s AND account_id = %s",
            (account.kind.value, account.id),
        )


class PostgresStore:
    """Store backed by PostgreSQL through psycopg."""

    def __init__(self, dsn: str | None = None):
        self.dsn = dsn or settings.POSTGRES_DSN

    def init_schema(self) -> None:
        """Create tables if they are missing."""
        ddl = resources.files("identity_core.store").joinpath("schema.sql").read_text()
        with psycopg.connect(self.dsn) as conn:
            with conn.cursor() as cur:
                cur.execute(ddl)
            conn.commit()
        logger.info("Identity store schema initialized")

    @contextmanager
    def transaction(self) -> Iterator[PostgresTransaction]:
        try:
            with psycopg.connect(self.dsn) as conn:
                conn.isolation_level = psycopg.IsolationLevel.SERIALIZABLE
                with conn.cursor() as cur:
                    yield PostgresTransaction(cur)
                conn.commit()
        except pg_errors.SerializationFailure as e:
            logger.info(f"Serializable transaction aborted: {e}")
            raise TransactionConflictError(message_debug=str(e), cause=e) from e
        except pg_errors.UniqueViolation as e:
            raise ConflictError("Resource already exists", message_debug=str(e), cause=e) from e
        except ServiceError:
            raise
        except psycopg.Error as e:
            logger.error(f"Store failure: {e}")
            raise InternalError("Store unavailable", message_debug=str(e), cause=e) from e
