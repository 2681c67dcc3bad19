"""
Entity Store — persisted health systems, companies, co-investors and contacts.

The narrative engine never owns persisted state; it reads and writes through
this store only.

Behavioral Contract:
- Name lookups are case-insensitive equality or substring matches.
- create/update validate the record through its pydantic model before writing.
- update on an unknown id raises RecordNotFoundError.
- Writes grouped inside transaction() commit together or not at all.
- One connection is shared across threads; a transaction holds the store
  lock until it commits or rolls back, so other threads never join it.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from typing import Dict, Iterator, List, Optional, Sequence
from uuid import uuid4

from narrative_engine.errors import RecordNotFoundError, StoreError
from narrative_engine.models.records import (
    RECORD_MODELS,
    CompanyCoInvestorLink,
    Contact,
    ContactLink,
    ContactRoleType,
    EntityRecord,
    EntityType,
    HealthSystem,
    ResearchJob,
    VenturePartner,
)

_ENTITY_TABLES: Dict[EntityType, str] = {
    EntityType.HEALTH_SYSTEM: "health_systems",
    EntityType.COMPANY: "companies",
    EntityType.CO_INVESTOR: "co_investors",
}

_ID_PREFIXES: Dict[EntityType, str] = {
    EntityType.HEALTH_SYSTEM: "hs",
    EntityType.COMPANY: "co",
    EntityType.CO_INVESTOR: "ci",
}


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


def _synchronized(method):
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._lock:
            return method(self, *args, **kwargs)
    return wrapper


class EntityStore:
    """
    SQLite-backed entity store.
    Each record is kept as validated JSON next to its indexed lookup columns.
    """

    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        # Autocommit; transaction() issues BEGIN/COMMIT explicitly.
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._transaction_depth = 0
        self._init_schema()

    def _init_schema(self) -> None:
        """Create the store tables if they don't exist."""
        for table in _ENTITY_TABLES.values():
            self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    record_json TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT (datetime('now'))
                )
            """)
            self._conn.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{table}_name ON {table}(name COLLATE NOCASE)"
            )
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS contacts (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                email TEXT,
                linkedin_url TEXT,
                record_json TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS contact_links (
                id TEXT PRIMARY KEY,
                contact_id TEXT NOT NULL REFERENCES contacts(id),
                parent_type TEXT NOT NULL,
                parent_id TEXT NOT NULL,
                role_type TEXT NOT NULL,
                title TEXT,
                UNIQUE (contact_id, parent_type, parent_id, role_type)
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS company_co_investor_links (
                id TEXT PRIMARY KEY,
                company_id TEXT NOT NULL,
                co_investor_id TEXT NOT NULL,
                record_json TEXT NOT NULL,
                UNIQUE (company_id, co_investor_id)
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS venture_partners (
                id TEXT PRIMARY KEY,
                health_system_id TEXT NOT NULL,
                co_investor_id TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS research_jobs (
                id TEXT PRIMARY KEY,
                entity_type TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
        """)

    # --- Transactions ---

    @contextmanager
    def transaction(self) -> Iterator["EntityStore"]:
        """
        Group writes atomically. Nested calls on the same thread join the
        outermost transaction; other threads wait until it finishes.
        """
        with self._lock:
            outermost = self._transaction_depth == 0
            if outermost:
                self._conn.execute("BEGIN")
            self._transaction_depth += 1
            try:
                yield self
            except BaseException:
                self._transaction_depth -= 1
                if outermost:
                    self._conn.execute("ROLLBACK")
                raise
            else:
                self._transaction_depth -= 1
                if outermost:
                    self._conn.execute("COMMIT")

    # --- Health systems / companies / co-investors ---

    @_synchronized
    def find_many(
        self,
        entity_type: EntityType,
        names: Sequence[str],
        limit: int = 8,
    ) -> List[EntityRecord]:
        """Records whose name equals or contains any of the given names, case-insensitively."""
        terms = [n.strip() for n in names if n and n.strip()]
        if not terms:
            return []
        table = _ENTITY_TABLES[entity_type]
        clauses = " OR ".join(
            "(lower(name) = lower(?) OR instr(lower(name), lower(?)) > 0)" for _ in terms
        )
        params: List[object] = []
        for term in terms:
            params.extend([term, term])
        params.append(limit)
        rows = self._conn.execute(
            f"SELECT record_json FROM {table} WHERE {clauses} ORDER BY rowid LIMIT ?",
            params,
        ).fetchall()
        model = RECORD_MODELS[entity_type]
        return [model.model_validate_json(r["record_json"]) for r in rows]

    @_synchronized
    def find_unique(self, entity_type: EntityType, record_id: str) -> Optional[EntityRecord]:
        """Get a record by id, or None."""
        table = _ENTITY_TABLES[entity_type]
        row = self._conn.execute(
            f"SELECT record_json FROM {table} WHERE id = ?", (record_id,)
        ).fetchone()
        if not row:
            return None
        return RECORD_MODELS[entity_type].model_validate_json(row["record_json"])

    @_synchronized
    def list_entities(self, entity_type: EntityType) -> List[EntityRecord]:
        table = _ENTITY_TABLES[entity_type]
        rows = self._conn.execute(
            f"SELECT record_json FROM {table} ORDER BY rowid"
        ).fetchall()
        model = RECORD_MODELS[entity_type]
        return [model.model_validate_json(r["record_json"]) for r in rows]

    @_synchronized
    def create(self, entity_type: EntityType, data: dict) -> EntityRecord:
        """Validate and insert a new record. Returns the stored record."""
        model = RECORD_MODELS[entity_type]
        payload = {k: v for k, v in data.items() if v is not None}
        payload.setdefault("id", _new_id(_ID_PREFIXES[entity_type]))
        payload.setdefault("research_updated_at", datetime.now(timezone.utc))
        record = model.model_validate(payload)
        self._check_references(record)
        self._conn.execute(
            f"INSERT INTO {_ENTITY_TABLES[entity_type]} (id, name, record_json) VALUES (?, ?, ?)",
            (record.id, record.name, record.model_dump_json()),
        )
        return record

    @_synchronized
    def update(self, entity_type: EntityType, record_id: str, patch: dict) -> EntityRecord:
        """
        Apply a field patch to an existing record.
        Keys present in the patch are written, including explicit None.
        """
        current = self.find_unique(entity_type, record_id)
        if current is None:
            raise RecordNotFoundError(
                f"{entity_type.value} record {record_id} does not exist."
            )
        merged = current.model_dump()
        merged.update(patch)
        merged["id"] = current.id
        record = type(current).model_validate(merged)
        self._check_references(record)
        self._conn.execute(
            f"UPDATE {_ENTITY_TABLES[entity_type]} SET name = ?, record_json = ? WHERE id = ?",
            (record.name, record.model_dump_json(), record.id),
        )
        return record

    def _check_references(self, record: EntityRecord) -> None:
        """Reject dangling foreign keys."""
        lead_source_id = getattr(record, "lead_source_health_system_id", None)
        if lead_source_id and self.find_unique(EntityType.HEALTH_SYSTEM, lead_source_id) is None:
            raise StoreError(f"Lead-source health system {lead_source_id} does not exist.")

    # --- Contacts ---

    @_synchronized
    def get_contact(self, contact_id: str) -> Optional[Contact]:
        row = self._conn.execute(
            "SELECT record_json FROM contacts WHERE id = ?", (contact_id,)
        ).fetchone()
        return Contact.model_validate_json(row["record_json"]) if row else None

    @_synchronized
    def find_contact_by_linkedin(self, linkedin_url: str) -> Optional[Contact]:
        row = self._conn.execute(
            "SELECT record_json FROM contacts WHERE linkedin_url = ? ORDER BY rowid LIMIT 1",
            (linkedin_url,),
        ).fetchone()
        return Contact.model_validate_json(row["record_json"]) if row else None

    @_synchronized
    def find_contact_by_email(self, email: str) -> Optional[Contact]:
        row = self._conn.execute(
            "SELECT record_json FROM contacts WHERE email = ? ORDER BY rowid LIMIT 1",
            (email,),
        ).fetchone()
        return Contact.model_validate_json(row["record_json"]) if row else None

    @_synchronized
    def find_contacts_by_name(self, names: Sequence[str], limit: int = 50) -> List[Contact]:
        """Contacts whose name equals or contains any of the given fragments."""
        terms = [n.strip() for n in names if n and n.strip()]
        if not terms:
            return []
        clauses = " OR ".join(
            "(lower(name) = lower(?) OR instr(lower(name), lower(?)) > 0)" for _ in terms
        )
        params: List[object] = []
        for term in terms:
            params.extend([term, term])
        params.append(limit)
        rows = self._conn.execute(
            f"SELECT record_json FROM contacts WHERE {clauses} ORDER BY rowid LIMIT ?",
            params,
        ).fetchall()
        return [Contact.model_validate_json(r["record_json"]) for r in rows]

    @_synchronized
    def create_contact(self, data: dict) -> Contact:
        payload = {k: v for k, v in data.items() if v is not None}
        payload.setdefault("id", _new_id("ct"))
        contact = Contact.model_validate(payload)
        self._conn.execute(
            "INSERT INTO contacts (id, name, email, linkedin_url, record_json) VALUES (?, ?, ?, ?, ?)",
            (contact.id, contact.name, contact.email, contact.linkedin_url, contact.model_dump_json()),
        )
        return contact

    @_synchronized
    def update_contact(self, contact_id: str, patch: dict) -> Contact:
        current = self.get_contact(contact_id)
        if current is None:
            raise RecordNotFoundError(f"Contact {contact_id} does not exist.")
        contact = current.model_copy(update=patch)
        contact = Contact.model_validate(contact.model_dump())
        self._conn.execute(
            "UPDATE contacts SET name = ?, email = ?, linkedin_url = ?, record_json = ? WHERE id = ?",
            (contact.name, contact.email, contact.linkedin_url, contact.model_dump_json(), contact.id),
        )
        return contact

    @_synchronized
    def upsert_contact_link(
        self,
        contact_id: str,
        parent_type: EntityType,
        parent_id: str,
        role_type: ContactRoleType,
        title: Optional[str] = None,
    ) -> ContactLink:
        """Attach a contact to a parent entity, keyed by (contact, parent, role)."""
        if self.get_contact(contact_id) is None:
            raise StoreError(f"Contact {contact_id} does not exist.")
        if self.find_unique(parent_type, parent_id) is None:
            raise StoreError(f"{parent_type.value} record {parent_id} does not exist.")

        row = self._conn.execute(
            "SELECT id FROM contact_links WHERE contact_id = ? AND parent_type = ? "
            "AND parent_id = ? AND role_type = ?",
            (contact_id, parent_type.value, parent_id, role_type.value),
        ).fetchone()
        if row:
            link_id = row["id"]
            self._conn.execute(
                "UPDATE contact_links SET title = ? WHERE id = ?", (title, link_id)
            )
        else:
            link_id = _new_id("cl")
            self._conn.execute(
                "INSERT INTO contact_links (id, contact_id, parent_type, parent_id, role_type, title) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (link_id, contact_id, parent_type.value, parent_id, role_type.value, title),
            )
        return ContactLink(
            id=link_id,
            contact_id=contact_id,
            parent_type=parent_type,
            parent_id=parent_id,
            role_type=role_type,
            title=title,
        )

    @_synchronized
    def list_contact_links(self, parent_type: EntityType, parent_id: str) -> List[ContactLink]:
        rows = self._conn.execute(
            "SELECT * FROM contact_links WHERE parent_type = ? AND parent_id = ? ORDER BY rowid",
            (parent_type.value, parent_id),
        ).fetchall()
        return [
            ContactLink(
                id=r["id"],
                contact_id=r["contact_id"],
                parent_type=EntityType(r["parent_type"]),
                parent_id=r["parent_id"],
                role_type=ContactRoleType(r["role_type"]),
                title=r["title"],
            )
            for r in rows
        ]

    @_synchronized
    def count_contacts(self) -> int:
        row = self._conn.execute("SELECT COUNT(*) AS cnt FROM contacts").fetchone()
        return row["cnt"]

    # --- Company / co-investor links ---

    @_synchronized
    def find_company_co_investor_link(
        self, company_id: str, co_investor_id: str
    ) -> Optional[CompanyCoInvestorLink]:
        row = self._conn.execute(
            "SELECT record_json FROM company_co_investor_links "
            "WHERE company_id = ? AND co_investor_id = ?",
            (company_id, co_investor_id),
        ).fetchone()
        return CompanyCoInvestorLink.model_validate_json(row["record_json"]) if row else None

    @_synchronized
    def upsert_company_co_investor_link(
        self,
        company_id: str,
        co_investor_id: str,
        **fields,
    ) -> CompanyCoInvestorLink:
        """Create the link, or update relationship/notes/amount on the existing one."""
        if self.find_unique(EntityType.COMPANY, company_id) is None:
            raise StoreError(f"Company {company_id} does not exist.")
        if self.find_unique(EntityType.CO_INVESTOR, co_investor_id) is None:
            raise StoreError(f"Co-investor {co_investor_id} does not exist.")

        existing = self.find_company_co_investor_link(company_id, co_investor_id)
        if existing:
            link = CompanyCoInvestorLink.model_validate({**existing.model_dump(), **fields})
            self._conn.execute(
                "UPDATE company_co_investor_links SET record_json = ? WHERE id = ?",
                (link.model_dump_json(), link.id),
            )
            return link

        link = CompanyCoInvestorLink.model_validate({
            "id": _new_id("cci"),
            "company_id": company_id,
            "co_investor_id": co_investor_id,
            **fields,
        })
        self._conn.execute(
            "INSERT INTO company_co_investor_links (id, company_id, co_investor_id, record_json) "
            "VALUES (?, ?, ?, ?)",
            (link.id, company_id, co_investor_id, link.model_dump_json()),
        )
        return link

    @_synchronized
    def list_company_co_investor_links(self, company_id: str) -> List[CompanyCoInvestorLink]:
        rows = self._conn.execute(
            "SELECT record_json FROM company_co_investor_links WHERE company_id = ? ORDER BY rowid",
            (company_id,),
        ).fetchall()
        return [CompanyCoInvestorLink.model_validate_json(r["record_json"]) for r in rows]

    # --- Venture partners ---

    @_synchronized
    def add_venture_partner(self, health_system_id: str, co_investor_id: str) -> VenturePartner:
        partner = VenturePartner(
            id=_new_id("vp"),
            health_system_id=health_system_id,
            co_investor_id=co_investor_id,
        )
        self._conn.execute(
            "INSERT INTO venture_partners (id, health_system_id, co_investor_id) VALUES (?, ?, ?)",
            (partner.id, partner.health_system_id, partner.co_investor_id),
        )
        return partner

    @_synchronized
    def find_venture_partner_health_system(self, co_investor_id: str) -> Optional[HealthSystem]:
        """The health system a co-investor is the venture arm of, if any."""
        row = self._conn.execute(
            "SELECT health_system_id FROM venture_partners WHERE co_investor_id = ? "
            "ORDER BY rowid LIMIT 1",
            (co_investor_id,),
        ).fetchone()
        if not row:
            return None
        return self.find_unique(EntityType.HEALTH_SYSTEM, row["health_system_id"])

    # --- Research jobs ---

    @_synchronized
    def enqueue_research_job(self, entity_type: EntityType, entity_id: str) -> ResearchJob:
        job = ResearchJob(
            id=_new_id("rj"),
            entity_type=entity_type,
            entity_id=entity_id,
            created_at=datetime.now(timezone.utc),
        )
        self._conn.execute(
            "INSERT INTO research_jobs (id, entity_type, entity_id, status, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (job.id, entity_type.value, entity_id, job.status, job.created_at.isoformat()),
        )
        return job

    @_synchronized
    def list_research_jobs(self) -> List[ResearchJob]:
        rows = self._conn.execute(
            "SELECT * FROM research_jobs ORDER BY rowid"
        ).fetchall()
        return [
            ResearchJob(
                id=r["id"],
                entity_type=EntityType(r["entity_type"]),
                entity_id=r["entity_id"],
                status=r["status"],
                created_at=datetime.fromisoformat(r["created_at"]),
            )
            for r in rows
        ]

    @_synchronized
    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
