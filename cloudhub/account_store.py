"""
Account Store

SQLite-backed store for local users and their linked cloud accounts.
Each linked account row holds the provider tokens (encrypted) and the cached
storage-usage ledger for that provider.
"""

import sqlite3
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Any
from threading import Lock

from werkzeug.security import generate_password_hash, check_password_hash

from cloudhub.credential_store import TokenCipher

logger = logging.getLogger(__name__)

PROVIDERS = ('google', 'dropbox', 'onedrive')


@dataclass
class LinkedAccount:
    """One provider account linked to a local user."""
    user_id: int
    provider: str
    access_token: Optional[str]
    refresh_token: Optional[str] = None
    token_expiry: Optional[str] = None  # ISO datetime
    storage_used: int = 0
    storage_limit: Optional[int] = None  # None = unknown/unlimited
    connected_at: Optional[str] = None
    updated_at: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def available(self) -> Optional[int]:
        if self.storage_limit is None:
            return None
        return self.storage_limit - self.storage_used

    def credentials(self) -> Dict[str, Any]:
        """Credentials dict consumed by the cloud adapters."""
        creds = {'access_token': self.access_token}
        if self.refresh_token:
            creds['refresh_token'] = self.refresh_token
        creds.update(self.extra)
        return creds

    def to_public_dict(self) -> Dict[str, Any]:
        """Account details safe to return to API clients (no tokens)."""
        return {
            'provider': self.provider,
            'storage_used': self.storage_used,
            'storage_limit': self.storage_limit,
            'available': self.available,
            'token_expiry': self.token_expiry,
            'connected_at': self.connected_at,
            'updated_at': self.updated_at,
        }


class AccountStore:
    """Users and linked cloud accounts with SQLite backend."""

    def __init__(self, db_path: str, cipher: TokenCipher):
        """
        Initialize account store.

        Args:
            db_path: Path to SQLite database file
            cipher: TokenCipher used to encrypt provider tokens at rest
        """
        self.db_path = Path(db_path)
        self.cipher = cipher
        self.lock = Lock()
        self._initialize_database()

    def _connect(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _initialize_database(self):
        """Create database schema if not exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS users (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    email          TEXT    NOT NULL UNIQUE,
                    password_hash  TEXT    NOT NULL,
                    name           TEXT    NOT NULL,
                    created_at     TEXT    NOT NULL DEFAULT (datetime('now')),
                    updated_at     TEXT    NOT NULL DEFAULT (datetime('now')),
                    last_login     TEXT,
                    is_active      INTEGER NOT NULL DEFAULT 1
                );

                CREATE TABLE IF NOT EXISTS cloud_services (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id        INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    provider       TEXT    NOT NULL CHECK(provider IN ('google', 'dropbox', 'onedrive')),
                    access_token   BLOB,
                    refresh_token  BLOB,
                    token_expiry   TEXT,
                    storage_used   INTEGER NOT NULL DEFAULT 0,
                    storage_limit  INTEGER,
                    connected_at   TEXT    NOT NULL DEFAULT (datetime('now')),
                    updated_at     TEXT    NOT NULL DEFAULT (datetime('now')),
                    UNIQUE(user_id, provider)
                );

                CREATE INDEX IF NOT EXISTS idx_cloud_services_provider ON cloud_services(provider);
            """)
        logger.info(f"Account database initialized at {self.db_path}")

    # ---------------------------------------------------------------------------
    # Users
    # ---------------------------------------------------------------------------

    def create_user(self, email: str, password: str, name: str) -> Dict:
        """
        Create a local user.

        Raises:
            ValueError: If the email is already registered or a field is empty
        """
        email = (email or '').strip().lower()
        name = (name or '').strip()
        if not email or not password or not name:
            raise ValueError("Email, password and name are required")

        pw_hash = generate_password_hash(password)
        with self.lock:
            with self._connect() as conn:
                try:
                    cursor = conn.execute(
                        "INSERT INTO users (email, password_hash, name) VALUES (?, ?, ?)",
                        (email, pw_hash, name)
                    )
                except sqlite3.IntegrityError:
                    raise ValueError(f"User with email '{email}' already exists")
                user_id = cursor.lastrowid

        logger.info(f"Created user '{email}'")
        return self.get_user_by_id(user_id)

    def get_user_by_email(self, email: str, include_inactive: bool = False) -> Optional[Dict]:
        query = "SELECT * FROM users WHERE email = ?"
        if not include_inactive:
            query += " AND is_active = 1"
        with self._connect() as conn:
            row = conn.execute(query, ((email or '').strip().lower(),)).fetchone()
        return dict(row) if row else None

    def get_user_by_id(self, user_id: int) -> Optional[Dict]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    def verify_password(self, email: str, password: str) -> Optional[Dict]:
        """Return the active user if the password matches, else None."""
        user = self.get_user_by_email(email)
        if user and check_password_hash(user['password_hash'], password or ''):
            return user
        return None

    def update_last_login(self, user_id: int):
        with self._connect() as conn:
            conn.execute("UPDATE users SET last_login = datetime('now') WHERE id = ?", (user_id,))

    def update_user(self, user_id: int, **kwargs):
        """Update name, email, password or is_active for a user."""
        allowed = {'name', 'email', 'password', 'is_active'}
        updates = {}
        for k, v in kwargs.items():
            if k not in allowed:
                continue
            if k == 'password':
                updates['password_hash'] = generate_password_hash(v)
            elif k == 'email':
                updates['email'] = v.strip().lower()
            else:
                updates[k] = v
        if not updates:
            return
        set_clause = ', '.join(f"{col} = ?" for col in updates)
        values = list(updates.values()) + [user_id]
        with self.lock:
            with self._connect() as conn:
                conn.execute(
                    f"UPDATE users SET {set_clause}, updated_at = datetime('now') WHERE id = ?",
                    values
                )

    def list_users(self) -> List[Dict]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, email, name, created_at, last_login, is_active FROM users ORDER BY id"
            ).fetchall()
        return [dict(r) for r in rows]

    # ---------------------------------------------------------------------------
    # Linked accounts
    # ---------------------------------------------------------------------------

    def _row_to_account(self, row) -> LinkedAccount:
        return LinkedAccount(
            user_id=row['user_id'],
            provider=row['provider'],
            access_token=self.cipher.decrypt(row['access_token']),
            refresh_token=self.cipher.decrypt(row['refresh_token']),
            token_expiry=row['token_expiry'],
            storage_used=row['storage_used'] or 0,
            storage_limit=row['storage_limit'],
            connected_at=row['connected_at'],
            updated_at=row['updated_at'],
        )

    def upsert_account(self, user_id: int, provider: str, access_token: str,
                       refresh_token: Optional[str] = None, token_expiry: Optional[str] = None,
                       storage_limit: Optional[int] = None,
                       storage_used: Optional[int] = None) -> LinkedAccount:
        """
        Link a provider account, or replace the tokens of an existing link.

        Re-linking keeps the ledger unless new quota values are given.
        """
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown provider '{provider}'. Available: {', '.join(PROVIDERS)}")
        if not access_token:
            raise ValueError("access_token is required")

        enc_access = self.cipher.encrypt(access_token)
        enc_refresh = self.cipher.encrypt(refresh_token)

        with self.lock:
            with self._connect() as conn:
                conn.execute("""
                    INSERT INTO cloud_services
                        (user_id, provider, access_token, refresh_token, token_expiry,
                         storage_used, storage_limit)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id, provider) DO UPDATE SET
                        access_token  = excluded.access_token,
                        refresh_token = COALESCE(excluded.refresh_token, cloud_services.refresh_token),
                        token_expiry  = excluded.token_expiry,
                        storage_limit = COALESCE(?, cloud_services.storage_limit),
                        storage_used  = COALESCE(?, cloud_services.storage_used),
                        updated_at    = datetime('now')
                """, (user_id, provider, enc_access, enc_refresh, token_expiry,
                      storage_used or 0, storage_limit, storage_limit, storage_used))

        logger.info(f"Linked {provider} account for user {user_id}")
        return self.get_account(user_id, provider)

    def get_accounts(self, user_id: int) -> List[LinkedAccount]:
        """Linked accounts of a user, in link order."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM cloud_services WHERE user_id = ? ORDER BY id", (user_id,)
            ).fetchall()
        return [self._row_to_account(r) for r in rows]

    def get_account(self, user_id: int, provider: str) -> Optional[LinkedAccount]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM cloud_services WHERE user_id = ? AND provider = ?",
                (user_id, provider)
            ).fetchone()
        return self._row_to_account(row) if row else None

    def remove_account(self, user_id: int, provider: str) -> bool:
        with self.lock:
            with self._connect() as conn:
                cursor = conn.execute(
                    "DELETE FROM cloud_services WHERE user_id = ? AND provider = ?",
                    (user_id, provider)
                )
                removed = cursor.rowcount > 0
        if removed:
            logger.info(f"Unlinked {provider} account for user {user_id}")
        return removed

    def add_storage_used(self, user_id: int, provider: str, delta: int) -> Optional[int]:
        """
        Adjust the usage ledger by delta bytes, never going below zero.

        Returns:
            New storage_used value, or None if the account is not linked
        """
        with self.lock:
            with self._connect() as conn:
                conn.execute("""
                    UPDATE cloud_services
                    SET storage_used = MAX(0, storage_used + ?), updated_at = datetime('now')
                    WHERE user_id = ? AND provider = ?
                """, (int(delta), user_id, provider))
                row = conn.execute(
                    "SELECT storage_used FROM cloud_services WHERE user_id = ? AND provider = ?",
                    (user_id, provider)
                ).fetchone()
        return row['storage_used'] if row else None

    def set_quota(self, user_id: int, provider: str, used: int, limit: Optional[int]):
        """Overwrite the ledger with values reported by the provider."""
        with self.lock:
            with self._connect() as conn:
                conn.execute("""
                    UPDATE cloud_services
                    SET storage_used = ?, storage_limit = ?, updated_at = datetime('now')
                    WHERE user_id = ? AND provider = ?
                """, (max(0, int(used or 0)), limit, user_id, provider))
        logger.debug(f"Quota for user {user_id} {provider}: used={used} limit={limit}")
