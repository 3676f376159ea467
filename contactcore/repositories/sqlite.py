"""SQLite-backed contact store."""

import json
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..models import (
    Contact,
    ContactQuery,
    DuplicateDismissal,
    Group,
    Inbox,
    MergeAuditRecord,
    Tag,
)
from .base import (
    ContactRepository,
    ContactStore,
    DismissalRepository,
    GroupRepository,
    InboxRepository,
    MembershipRepository,
    MergeAuditRepository,
    RepositoryError,
    TagRepository,
    UniqueConstraintError,
)

SCHEMA = [
    '''
    CREATE TABLE IF NOT EXISTS contacts (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        tenant_id TEXT,
        phone TEXT NOT NULL,
        name TEXT,
        avatar_url TEXT,
        whatsapp_jid TEXT,
        source TEXT NOT NULL,
        source_inbox_id TEXT,
        import_hash TEXT,
        last_import_at TEXT,
        linked_user_id TEXT,
        metadata TEXT NOT NULL DEFAULT '{}',
        created_by TEXT,
        created_by_type TEXT,
        updated_by TEXT,
        updated_by_type TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (account_id, phone)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS contact_tags (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        tenant_id TEXT,
        name TEXT NOT NULL,
        color TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (account_id, name)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS contact_groups (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        tenant_id TEXT,
        name TEXT NOT NULL,
        description TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (account_id, name)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS contact_tag_members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        contact_id TEXT NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
        tag_id TEXT NOT NULL REFERENCES contact_tags(id) ON DELETE CASCADE,
        UNIQUE (contact_id, tag_id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS contact_group_members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        contact_id TEXT NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
        group_id TEXT NOT NULL REFERENCES contact_groups(id) ON DELETE CASCADE,
        UNIQUE (contact_id, group_id)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS contact_duplicate_dismissals (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        contact_id_1 TEXT NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
        contact_id_2 TEXT NOT NULL REFERENCES contacts(id) ON DELETE CASCADE,
        dismissed_by TEXT,
        created_at TEXT NOT NULL,
        UNIQUE (account_id, contact_id_1, contact_id_2)
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS contact_merge_audit (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        merged_contact_id TEXT NOT NULL,
        source_contact_ids TEXT NOT NULL,
        original_contacts TEXT NOT NULL,
        merge_configuration TEXT NOT NULL,
        merged_by TEXT,
        created_at TEXT NOT NULL
    )
    ''',
    '''
    CREATE TABLE IF NOT EXISTS inboxes (
        id TEXT PRIMARY KEY,
        account_id TEXT NOT NULL,
        name TEXT,
        phone_number TEXT,
        connected INTEGER NOT NULL DEFAULT 0,
        token TEXT,
        created_at TEXT NOT NULL
    )
    ''',
    'CREATE INDEX IF NOT EXISTS idx_contacts_account ON contacts(account_id)',
    'CREATE INDEX IF NOT EXISTS idx_tags_account ON contact_tags(account_id)',
    'CREATE INDEX IF NOT EXISTS idx_groups_account ON contact_groups(account_id)',
    'CREATE INDEX IF NOT EXISTS idx_dismissals_account ON contact_duplicate_dismissals(account_id)',
    'CREATE INDEX IF NOT EXISTS idx_merge_audit_account ON contact_merge_audit(account_id)',
]

CONTACT_COLUMNS = [
    "id", "account_id", "tenant_id", "phone", "name", "avatar_url", "whatsapp_jid",
    "source", "source_inbox_id", "import_hash", "last_import_at", "linked_user_id",
    "metadata", "created_by", "created_by_type", "updated_by", "updated_by_type",
    "created_at", "updated_at",
]

SORTABLE = {"created_at", "updated_at", "name", "phone"}


class _Connection:
    """Serialized access to one sqlite3 connection."""

    def __init__(self, db_path: str):
        self.conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.lock = threading.RLock()
        self.depth = 0

    def execute(self, sql: str, params: Union[tuple, list] = ()) -> sqlite3.Cursor:
        with self.lock:
            try:
                return self.conn.execute(sql, params)
            except sqlite3.IntegrityError as e:
                if "UNIQUE" in str(e):
                    raise UniqueConstraintError(str(e)) from e
                raise RepositoryError(str(e)) from e

    def query(self, sql: str, params: Union[tuple, list] = ()) -> List[sqlite3.Row]:
        with self.lock:
            return self.execute(sql, params).fetchall()

    @contextmanager
    def transaction(self):
        with self.lock:
            if self.depth:
                self.depth += 1
                try:
                    yield
                finally:
                    self.depth -= 1
                return

            self.conn.execute("BEGIN")
            self.depth = 1
            try:
                yield
            except Exception:
                self.conn.execute("ROLLBACK")
                raise
            else:
                self.conn.execute("COMMIT")
            finally:
                self.depth = 0


def _placeholders(values: List[Any]) -> str:
    return ",".join("?" for _ in values)


def _contact_row(contact: Contact) -> List[Any]:
    data = contact.model_dump(mode="json")
    data["metadata"] = json.dumps(data.get("metadata") or {})
    return [data[c] for c in CONTACT_COLUMNS]


def _contact_from_row(row: sqlite3.Row) -> Contact:
    data = dict(row)
    data["metadata"] = json.loads(data["metadata"] or "{}")
    return Contact(**data)


class SQLiteContactRepository(ContactRepository):

    def __init__(self, db: _Connection):
        self._db = db

    def get_by_id(self, account_id: str, contact_id: str) -> Optional[Contact]:
        rows = self._db.query(
            "SELECT * FROM contacts WHERE id = ? AND account_id = ?", (contact_id, account_id)
        )
        return _contact_from_row(rows[0]) if rows else None

    def find_by_ids(self, account_id: str, contact_ids: List[str]) -> List[Contact]:
        ids = list(dict.fromkeys(contact_ids))
        if not ids:
            return []
        rows = self._db.query(
            f"SELECT * FROM contacts WHERE account_id = ? AND id IN ({_placeholders(ids)})",
            [account_id, *ids],
        )
        by_id = {row["id"]: _contact_from_row(row) for row in rows}
        return [by_id[i] for i in ids if i in by_id]

    def find_by_phone(self, account_id: str, phone: str) -> Optional[Contact]:
        rows = self._db.query(
            "SELECT * FROM contacts WHERE account_id = ? AND phone = ?", (account_id, phone)
        )
        return _contact_from_row(rows[0]) if rows else None

    def list_by_account(self, account_id: str) -> List[Contact]:
        rows = self._db.query(
            "SELECT * FROM contacts WHERE account_id = ? ORDER BY created_at, rowid",
            (account_id,),
        )
        return [_contact_from_row(r) for r in rows]

    def search(self, account_id: str, query: ContactQuery) -> Tuple[List[Contact], int]:
        where = ["account_id = ?"]
        params: List[Any] = [account_id]

        if query.search:
            where.append("(lower(coalesce(name, '')) LIKE ? OR phone LIKE ?)")
            needle = f"%{query.search.lower()}%"
            params.extend([needle, needle])

        if query.has_name is True:
            where.append("(name IS NOT NULL AND trim(name) != '')")
        elif query.has_name is False:
            where.append("(name IS NULL OR trim(name) = '')")

        if query.source_inbox_id is not None:
            if query.source_inbox_id in ("", "null"):
                where.append("source_inbox_id IS NULL")
            else:
                where.append("source_inbox_id = ?")
                params.append(query.source_inbox_id)

        if query.tag_ids:
            where.append(
                "id IN (SELECT contact_id FROM contact_tag_members "
                f"WHERE tag_id IN ({_placeholders(query.tag_ids)}))"
            )
            params.extend(query.tag_ids)

        if query.group_id:
            where.append("id IN (SELECT contact_id FROM contact_group_members WHERE group_id = ?)")
            params.append(query.group_id)

        clause = " AND ".join(where)
        total = self._db.query(f"SELECT COUNT(*) FROM contacts WHERE {clause}", params)[0][0]

        sort_by = query.sort_by if query.sort_by in SORTABLE else "created_at"
        direction = "ASC" if query.sort_order == "asc" else "DESC"
        sort_expr = f"lower({sort_by})" if sort_by == "name" else sort_by
        rows = self._db.query(
            f"SELECT * FROM contacts WHERE {clause} "
            f"ORDER BY ({sort_by} IS NULL), {sort_expr} {direction}, rowid "
            "LIMIT ? OFFSET ?",
            [*params, query.page_size, (query.page - 1) * query.page_size],
        )
        return [_contact_from_row(r) for r in rows], total

    def insert(self, contact: Contact) -> Contact:
        self._db.execute(
            f"INSERT INTO contacts ({', '.join(CONTACT_COLUMNS)}) "
            f"VALUES ({_placeholders(CONTACT_COLUMNS)})",
            _contact_row(contact),
        )
        return contact

    def insert_many(self, contacts: List[Contact]) -> List[Contact]:
        with self._db.transaction():
            for contact in contacts:
                self.insert(contact)
        return contacts

    def update(self, account_id: str, contact_id: str, changes: Dict[str, Any]) -> Optional[Contact]:
        with self._db.transaction():
            existing = self.get_by_id(account_id, contact_id)
            if existing is None:
                return None
            updated = existing.model_copy(update=changes, deep=True)
            row = _contact_row(updated)
            assignments = ", ".join(f"{c} = ?" for c in CONTACT_COLUMNS[1:])
            self._db.execute(
                f"UPDATE contacts SET {assignments} WHERE id = ?", [*row[1:], contact_id]
            )
            return updated

    def delete_many(self, account_id: str, contact_ids: List[str]) -> int:
        if not contact_ids:
            return 0
        cursor = self._db.execute(
            f"DELETE FROM contacts WHERE account_id = ? AND id IN ({_placeholders(contact_ids)})",
            [account_id, *contact_ids],
        )
        return cursor.rowcount

    def count(self, account_id: str, has_name: Optional[bool] = None) -> int:
        sql = "SELECT COUNT(*) FROM contacts WHERE account_id = ?"
        if has_name is True:
            sql += " AND name IS NOT NULL AND trim(name) != ''"
        elif has_name is False:
            sql += " AND (name IS NULL OR trim(name) = '')"
        return self._db.query(sql, (account_id,))[0][0]


class SQLiteTagRepository(TagRepository):

    def __init__(self, db: _Connection):
        self._db = db

    def list_by_account(self, account_id: str) -> List[Tag]:
        rows = self._db.query(
            "SELECT * FROM contact_tags WHERE account_id = ? ORDER BY name", (account_id,)
        )
        return [Tag(**dict(r)) for r in rows]

    def get_by_id(self, account_id: str, tag_id: str) -> Optional[Tag]:
        rows = self._db.query(
            "SELECT * FROM contact_tags WHERE id = ? AND account_id = ?", (tag_id, account_id)
        )
        return Tag(**dict(rows[0])) if rows else None

    def find_by_ids(self, account_id: str, tag_ids: List[str]) -> List[Tag]:
        if not tag_ids:
            return []
        rows = self._db.query(
            f"SELECT * FROM contact_tags WHERE account_id = ? AND id IN ({_placeholders(tag_ids)})",
            [account_id, *tag_ids],
        )
        return [Tag(**dict(r)) for r in rows]

    def find_by_name(self, account_id: str, name: str) -> Optional[Tag]:
        rows = self._db.query(
            "SELECT * FROM contact_tags WHERE account_id = ? AND name = ?", (account_id, name)
        )
        return Tag(**dict(rows[0])) if rows else None

    def insert(self, tag: Tag) -> Tag:
        data = tag.model_dump(mode="json")
        self._db.execute(
            "INSERT INTO contact_tags (id, account_id, tenant_id, name, color, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (data["id"], data["account_id"], data["tenant_id"], data["name"], data["color"],
             data["created_at"], data["updated_at"]),
        )
        return tag

    def delete(self, account_id: str, tag_id: str) -> bool:
        cursor = self._db.execute(
            "DELETE FROM contact_tags WHERE id = ? AND account_id = ?", (tag_id, account_id)
        )
        return cursor.rowcount > 0

    def count(self, account_id: str) -> int:
        return self._db.query(
            "SELECT COUNT(*) FROM contact_tags WHERE account_id = ?", (account_id,)
        )[0][0]


class SQLiteGroupRepository(GroupRepository):

    SELECT = (
        "SELECT g.*, (SELECT COUNT(*) FROM contact_group_members m WHERE m.group_id = g.id) "
        "AS contact_count FROM contact_groups g"
    )

    def __init__(self, db: _Connection):
        self._db = db

    def list_by_account(self, account_id: str) -> List[Group]:
        rows = self._db.query(f"{self.SELECT} WHERE g.account_id = ? ORDER BY g.name", (account_id,))
        return [Group(**dict(r)) for r in rows]

    def get_by_id(self, account_id: str, group_id: str) -> Optional[Group]:
        rows = self._db.query(
            f"{self.SELECT} WHERE g.id = ? AND g.account_id = ?", (group_id, account_id)
        )
        return Group(**dict(rows[0])) if rows else None

    def find_by_ids(self, account_id: str, group_ids: List[str]) -> List[Group]:
        if not group_ids:
            return []
        rows = self._db.query(
            f"{self.SELECT} WHERE g.account_id = ? AND g.id IN ({_placeholders(group_ids)})",
            [account_id, *group_ids],
        )
        return [Group(**dict(r)) for r in rows]

    def find_by_name(self, account_id: str, name: str) -> Optional[Group]:
        rows = self._db.query(
            f"{self.SELECT} WHERE g.account_id = ? AND g.name = ?", (account_id, name)
        )
        return Group(**dict(rows[0])) if rows else None

    def insert(self, group: Group) -> Group:
        data = group.model_dump(mode="json")
        self._db.execute(
            "INSERT INTO contact_groups "
            "(id, account_id, tenant_id, name, description, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (data["id"], data["account_id"], data["tenant_id"], data["name"],
             data["description"], data["created_at"], data["updated_at"]),
        )
        return group

    def update(self, account_id: str, group_id: str, changes: Dict[str, Any]) -> Optional[Group]:
        with self._db.transaction():
            existing = self.get_by_id(account_id, group_id)
            if existing is None:
                return None
            data = existing.model_copy(update=changes).model_dump(mode="json")
            self._db.execute(
                "UPDATE contact_groups SET name = ?, description = ?, updated_at = ? WHERE id = ?",
                (data["name"], data["description"], data["updated_at"], group_id),
            )
            return self.get_by_id(account_id, group_id)

    def delete(self, account_id: str, group_id: str) -> bool:
        cursor = self._db.execute(
            "DELETE FROM contact_groups WHERE id = ? AND account_id = ?", (group_id, account_id)
        )
        return cursor.rowcount > 0


class SQLiteMembershipRepository(MembershipRepository):

    def __init__(self, db: _Connection):
        self._db = db

    def _collect(self, table: str, column: str, contact_ids: List[str]) -> Dict[str, List[str]]:
        result: Dict[str, List[str]] = {cid: [] for cid in contact_ids}
        if not contact_ids:
            return result
        rows = self._db.query(
            f"SELECT contact_id, {column} FROM {table} "
            f"WHERE contact_id IN ({_placeholders(contact_ids)}) ORDER BY id",
            list(contact_ids),
        )
        for row in rows:
            result[row["contact_id"]].append(row[column])
        return result

    def tag_ids_for(self, contact_ids: List[str]) -> Dict[str, List[str]]:
        return self._collect("contact_tag_members", "tag_id", contact_ids)

    def group_ids_for(self, contact_ids: List[str]) -> Dict[str, List[str]]:
        return self._collect("contact_group_members", "group_id", contact_ids)

    def add_tag(self, contact_id: str, tag_id: str) -> None:
        self._db.execute(
            "INSERT INTO contact_tag_members (contact_id, tag_id) VALUES (?, ?)",
            (contact_id, tag_id),
        )

    def remove_tags(self, contact_ids: List[str], tag_ids: List[str]) -> int:
        if not contact_ids or not tag_ids:
            return 0
        cursor = self._db.execute(
            f"DELETE FROM contact_tag_members WHERE contact_id IN ({_placeholders(contact_ids)}) "
            f"AND tag_id IN ({_placeholders(tag_ids)})",
            [*contact_ids, *tag_ids],
        )
        return cursor.rowcount

    def replace_tags(self, contact_id: str, tag_ids: List[str]) -> None:
        with self._db.transaction():
            self._db.execute("DELETE FROM contact_tag_members WHERE contact_id = ?", (contact_id,))
            for tag_id in dict.fromkeys(tag_ids):
                self.add_tag(contact_id, tag_id)

    def add_to_group(self, contact_id: str, group_id: str) -> None:
        self._db.execute(
            "INSERT INTO contact_group_members (contact_id, group_id) VALUES (?, ?)",
            (contact_id, group_id),
        )

    def remove_from_group(self, group_id: str, contact_ids: List[str]) -> int:
        if not contact_ids:
            return 0
        cursor = self._db.execute(
            f"DELETE FROM contact_group_members WHERE group_id = ? "
            f"AND contact_id IN ({_placeholders(contact_ids)})",
            [group_id, *contact_ids],
        )
        return cursor.rowcount

    def replace_groups(self, contact_id: str, group_ids: List[str]) -> None:
        with self._db.transaction():
            self._db.execute("DELETE FROM contact_group_members WHERE contact_id = ?", (contact_id,))
            for group_id in dict.fromkeys(group_ids):
                self.add_to_group(contact_id, group_id)

    def contact_ids_in_group(self, group_id: str) -> List[str]:
        rows = self._db.query(
            "SELECT contact_id FROM contact_group_members WHERE group_id = ? ORDER BY id",
            (group_id,),
        )
        return [r["contact_id"] for r in rows]


class SQLiteDismissalRepository(DismissalRepository):

    def __init__(self, db: _Connection):
        self._db = db

    def insert(self, dismissal: DuplicateDismissal) -> DuplicateDismissal:
        data = dismissal.model_dump(mode="json")
        self._db.execute(
            "INSERT INTO contact_duplicate_dismissals "
            "(id, account_id, contact_id_1, contact_id_2, dismissed_by, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (data["id"], data["account_id"], data["contact_id_1"], data["contact_id_2"],
             data["dismissed_by"], data["created_at"]),
        )
        return dismissal

    def list_by_account(self, account_id: str) -> List[DuplicateDismissal]:
        rows = self._db.query(
            "SELECT * FROM contact_duplicate_dismissals WHERE account_id = ?", (account_id,)
        )
        return [DuplicateDismissal(**dict(r)) for r in rows]


class SQLiteMergeAuditRepository(MergeAuditRepository):

    def __init__(self, db: _Connection):
        self._db = db

    def insert(self, record: MergeAuditRecord) -> MergeAuditRecord:
        data = record.model_dump(mode="json")
        self._db.execute(
            "INSERT INTO contact_merge_audit "
            "(id, account_id, merged_contact_id, source_contact_ids, original_contacts, "
            "merge_configuration, merged_by, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (
                data["id"],
                data["account_id"],
                data["merged_contact_id"],
                json.dumps(data["source_contact_ids"]),
                json.dumps(data["original_contacts"]),
                json.dumps(data["merge_configuration"]),
                data["merged_by"],
                data["created_at"],
            ),
        )
        return record

    def list_by_account(self, account_id: str) -> List[MergeAuditRecord]:
        rows = self._db.query(
            "SELECT * FROM contact_merge_audit WHERE account_id = ? "
            "ORDER BY created_at DESC, rowid DESC",
            (account_id,),
        )
        records = []
        for row in rows:
            data = dict(row)
            for key in ("source_contact_ids", "original_contacts", "merge_configuration"):
                data[key] = json.loads(data[key])
            records.append(MergeAuditRecord(**data))
        return records


class SQLiteInboxRepository(InboxRepository):

    def __init__(self, db: _Connection):
        self._db = db

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Inbox:
        data = dict(row)
        data["connected"] = bool(data["connected"])
        return Inbox(**data)

    def get_by_id(self, inbox_id: str) -> Optional[Inbox]:
        rows = self._db.query("SELECT * FROM inboxes WHERE id = ?", (inbox_id,))
        return self._from_row(rows[0]) if rows else None

    def list_by_account(self, account_id: str) -> List[Inbox]:
        rows = self._db.query(
            "SELECT * FROM inboxes WHERE account_id = ? ORDER BY created_at", (account_id,)
        )
        return [self._from_row(r) for r in rows]

    def insert(self, inbox: Inbox) -> Inbox:
        data = inbox.model_dump(mode="json")
        self._db.execute(
            "INSERT INTO inboxes (id, account_id, name, phone_number, connected, token, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (data["id"], data["account_id"], data["name"], data["phone_number"],
             int(data["connected"]), data["token"], data["created_at"]),
        )
        return inbox


class SQLiteContactStore(ContactStore):
    """Contact store persisted to a SQLite database file."""

    def __init__(self, db_path: Union[str, Path] = "contacts.db"):
        super().__init__()
        self.db_path = str(db_path)
        self._db = _Connection(self.db_path)
        self.init_database()

        self.contacts = SQLiteContactRepository(self._db)
        self.tags = SQLiteTagRepository(self._db)
        self.groups = SQLiteGroupRepository(self._db)
        self.memberships = SQLiteMembershipRepository(self._db)
        self.dismissals = SQLiteDismissalRepository(self._db)
        self.merge_audits = SQLiteMergeAuditRepository(self._db)
        self.inboxes = SQLiteInboxRepository(self._db)

    def init_database(self):
        """Create tables and indexes if they do not exist."""
        try:
            with self._db.transaction():
                for statement in SCHEMA:
                    self._db.execute(statement)
            self.logger.info("✅ Contact database initialized")
        except sqlite3.Error as e:
            self.logger.error(f"Failed to initialize contact database: {e}")
            raise

    @contextmanager
    def transaction(self):
        with self._db.transaction():
            yield

    def close(self) -> None:
        with self._db.lock:
            self._db.conn.close()
