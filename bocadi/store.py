"""
Supabase persistence boundary.

Every read and write the backend performs goes through SupabaseStore, a
thin wrapper over the supabase-py query builder exposing filtered CRUD
calls on plain dict rows.

Filter convention (shared with the /api/db Blueprint):
- Simple equality: { key: value }
- IN clause: { key: [value1, value2] }
- Not equal: { not_key: value } -> neq('key', value)
- Less than: { key_lt: value } -> lt('key', value)
- Not null: { key_not_null: true } -> not('key', 'is', null)
- Is null: { key: None } -> is('key', null)
"""

import logging

from supabase import create_client, Client

from .config import supabase_credentials
from .errors import StoreNotConfigured

logger = logging.getLogger(__name__)

DISH_WITH_RELATIONS = "*, protein_type:protein_types(*), ingredients(*)"
ENTRY_WITH_DISH = f"*, dish:dishes({DISH_WITH_RELATIONS})"


def apply_filters(query, filters):
    """Apply the filter convention to a supabase query builder.

    Returns None when an IN clause is empty, meaning the query can only
    match nothing.
    """
    for key, value in (filters or {}).items():
        if key.endswith('_lt'):
            query = query.lt(key[:-3], value)
        elif key.endswith('_not_null'):
            if value is True:
                query = query.not_.is_(key[:-9], "null")
        elif key.startswith('not_'):
            query = query.neq(key[4:], value)
        elif isinstance(value, (list, tuple, set)):
            if not value:
                return None
            query = query.in_(key, list(value))
        elif value is None:
            query = query.is_(key, "null")
        else:
            query = query.eq(key, value)
    return query


def apply_order(query, order):
    """Order by one or more columns; a leading '-' means descending."""
    if not order:
        return query
    if isinstance(order, str):
        order = [order]
    for column in order:
        query = query.order(column.lstrip("-"), desc=column.startswith("-"))
    return query


class SupabaseStore:
    """Filtered CRUD over Supabase tables."""

    def __init__(self, client: Client):
        self.client = client

    def select(self, table, filters=None, order=None, columns="*"):
        query = apply_filters(self.client.table(table).select(columns), filters)
        if query is None:
            return []
        response = apply_order(query, order).execute()
        return response.data or []

    def select_one(self, table, filters=None, columns="*"):
        rows = self.select(table, filters, columns=columns)
        return rows[0] if rows else None

    def count(self, table, filters=None):
        query = apply_filters(
            self.client.table(table).select("*", count="exact", head=True), filters
        )
        if query is None:
            return 0
        return query.execute().count or 0

    def insert(self, table, rows, columns=None):
        response = self.client.table(table).insert(rows).execute()
        data = response.data or []
        if columns and data:
            # Re-read with nested relations, PostgREST insert returns bare rows
            ids = [row["id"] for row in data]
            return self.select(table, {"id": ids}, columns=columns)
        return data

    def update(self, table, patch, filters):
        query = apply_filters(self.client.table(table).update(patch), filters)
        if query is None:
            return []
        return query.execute().data or []

    def delete(self, table, filters):
        query = apply_filters(self.client.table(table).delete(), filters)
        if query is None:
            return []
        return query.execute().data or []

    def upsert(self, table, rows, on_conflict):
        if not rows:
            return []
        response = self.client.table(table).upsert(rows, on_conflict=on_conflict).execute()
        return response.data or []


def create_store(url=None, key=None):
    """Build a SupabaseStore from explicit credentials or the environment."""
    env_url, env_key = supabase_credentials()
    url = url or env_url
    key = key or env_key
    if not url or not key:
        logger.warning("⚠️ Supabase credentials not found in environment variables")
        logger.warning("Set SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY (or variations)")
        raise StoreNotConfigured("Supabase credentials are not configured")
    try:
        client = create_client(url, key)
    except Exception as e:
        logger.error(f"❌ Failed to initialize Supabase client: {e}")
        raise StoreNotConfigured(f"Failed to initialize Supabase client: {e}") from e
    logger.info("✅ Supabase client initialized")
    return SupabaseStore(client)
