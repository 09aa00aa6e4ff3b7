"""Postgres-backed handler store."""

from __future__ import annotations

import json
import logging

import psycopg2

from app.db import execute, fetch_all, fetch_one, get_conn
from app.stores import HANDLER_FIELDS, HandlerVersionExists

logger = logging.getLogger("tabula.db")

_SCHEMA_READY = [False]

_COLUMNS = "id, type, name, description, version, enabled, settings, icon, code, frontend_version, created_at, updated_at"


def _ensure_json(value):
    if isinstance(value, str):
        return json.loads(value)
    return value


def _to_iso(value):
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%dT%H:%M:%SZ")
    return value


def _row_to_record(row: dict) -> dict:
    return {
        "id": str(row["id"]),
        "type": row["type"],
        "name": row.get("name"),
        "description": row.get("description"),
        "version": row["version"],
        "enabled": bool(row.get("enabled", True)),
        "settings": _ensure_json(row.get("settings")) or {},
        "icon": row.get("icon"),
        "code": row.get("code"),
        "frontend_version": row.get("frontend_version"),
        "created_at": _to_iso(row.get("created_at")),
        "updated_at": _to_iso(row.get("updated_at")),
    }


class DbActionHandlerStore:
    def ensure_schema(self) -> None:
        if _SCHEMA_READY[0]:
            return
        with get_conn() as conn:
            execute(
                conn,
                """
                create table if not exists action_handlers (
                  id uuid primary key default gen_random_uuid(),
                  type text not null,
                  name text not null,
                  description text null,
                  version text not null,
                  enabled boolean not null default true,
                  settings jsonb not null default '{}'::jsonb,
                  icon text null,
                  code text null,
                  frontend_version text null,
                  created_at timestamptz not null default now(),
                  updated_at timestamptz not null default now(),
                  unique (type, version)
                );
                """,
                query_name="action_handlers.ensure_schema",
            )
        _SCHEMA_READY[0] = True
        logger.info("schema_ready table=action_handlers")

    def list(self, action_type: str | None = None) -> list[dict]:
        self.ensure_schema()
        where = "where type=%s" if action_type else ""
        params = [action_type] if action_type else []
        with get_conn() as conn:
            rows = fetch_all(
                conn,
                f"""
                select {_COLUMNS} from action_handlers {where}
                order by created_at asc
                """,
                params,
                query_name="action_handlers.list",
            )
            return [_row_to_record(r) for r in rows]

    def get(self, action_type: str, version: str) -> dict | None:
        self.ensure_schema()
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"select {_COLUMNS} from action_handlers where type=%s and version=%s",
                [action_type, version],
                query_name="action_handlers.get",
            )
            return _row_to_record(row) if row else None

    def count(self) -> int:
        self.ensure_schema()
        with get_conn() as conn:
            row = fetch_one(conn, "select count(*) as n from action_handlers", query_name="action_handlers.count")
            return int(row["n"]) if row else 0

    def insert(self, record: dict) -> dict:
        self.ensure_schema()
        try:
            with get_conn() as conn:
                row = fetch_one(
                    conn,
                    f"""
                    insert into action_handlers
                      (type, name, description, version, enabled, settings, icon, code, frontend_version, created_at, updated_at)
                    values (%s, %s, %s, %s, %s, %s, %s, %s, %s, now(), now())
                    returning {_COLUMNS}
                    """,
                    [
                        record["type"],
                        record.get("name"),
                        record.get("description"),
                        record["version"],
                        bool(record.get("enabled", True)),
                        json.dumps(record.get("settings") or {}),
                        record.get("icon"),
                        record.get("code"),
                        record.get("frontend_version"),
                    ],
                    query_name="action_handlers.insert",
                )
        except psycopg2.IntegrityError as exc:
            raise HandlerVersionExists(f"{record['type']}@{record['version']} already exists") from exc
        return _row_to_record(row)

    def update(self, action_type: str, version: str, changes: dict) -> dict | None:
        self.ensure_schema()
        fields = []
        params = []
        for key in HANDLER_FIELDS:
            if key in changes:
                fields.append(f"{key}=%s")
                value = changes[key]
                if key == "settings":
                    value = json.dumps(value or {})
                params.append(value)
        if not fields:
            return self.get(action_type, version)
        params.extend([action_type, version])
        with get_conn() as conn:
            row = fetch_one(
                conn,
                f"""
                update action_handlers set {', '.join(fields)}, updated_at=now()
                where type=%s and version=%s
                returning {_COLUMNS}
                """,
                params,
                query_name="action_handlers.update",
            )
            return _row_to_record(row) if row else None

    def delete(self, action_type: str, version: str) -> bool:
        self.ensure_schema()
        with get_conn() as conn:
            row = fetch_one(
                conn,
                "delete from action_handlers where type=%s and version=%s returning id",
                [action_type, version],
                query_name="action_handlers.delete",
            )
            return bool(row)
