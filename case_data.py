"""
Case database access.

CaseStore owns a bounded psycopg2 connection pool and is the only code that
talks to PostgreSQL. Construct it explicitly, open it, pass it to the sync job
and the query functions, and close it when done. Every public method runs in
its own transaction; psycopg2 failures come back as StorageError after the
transaction has been rolled back.
"""
import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set
from urllib.parse import parse_qs, urlparse

import psycopg2
from psycopg2 import pool
from psycopg2.extras import Json, RealDictCursor, execute_values

from case_records import CaseDetail, ConstitutionSection, Justice

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONNECTIONS = 1
DEFAULT_MAX_CONNECTIONS = 10

CASE_COLUMNS = """
    term, docket_number, name, first_party, second_party,
    description, facts_of_the_case, question, conclusion,
    decision_date, citation, justia_url, href,
    decisions, advocates, written_opinion, timeline, is_decided, fetched_at
"""

JUSTICE_COLUMNS = """
    identifier, name, last_name, role_title, appointing_president,
    date_start, date_end, home_state, law_school, thumbnail_url
"""

# Search weights: parties and name (A), summary and question (B), long-form text (C)
SEARCH_VECTOR_SQL = """
    setweight(to_tsvector('english', coalesce(%(name)s, '')), 'A') ||
    setweight(to_tsvector('english', coalesce(%(first_party)s, '')), 'A') ||
    setweight(to_tsvector('english', coalesce(%(second_party)s, '')), 'A') ||
    setweight(to_tsvector('english', coalesce(%(description)s, '')), 'B') ||
    setweight(to_tsvector('english', coalesce(%(question)s, '')), 'B') ||
    setweight(to_tsvector('english', coalesce(%(facts_of_the_case)s, '')), 'C') ||
    setweight(to_tsvector('english', coalesce(%(conclusion)s, '')), 'C')
"""

UPSERT_CASE_SQL = f"""
    INSERT INTO cases (
        term, docket_number, name, first_party, second_party,
        description, facts_of_the_case, question, conclusion,
        decision_date, citation, justia_url, href,
        decisions, advocates, written_opinion, timeline,
        is_decided, fetched_at, search_vector
    ) VALUES (
        %(term)s, %(docket_number)s, %(name)s, %(first_party)s, %(second_party)s,
        %(description)s, %(facts_of_the_case)s, %(question)s, %(conclusion)s,
        %(decision_date)s, %(citation)s, %(justia_url)s, %(href)s,
        %(decisions)s, %(advocates)s, %(written_opinion)s, %(timeline)s,
        %(is_decided)s, NOW(), {SEARCH_VECTOR_SQL}
    )
    ON CONFLICT (term, docket_number) DO UPDATE SET
        name = EXCLUDED.name,
        first_party = EXCLUDED.first_party,
        second_party = EXCLUDED.second_party,
        description = EXCLUDED.description,
        facts_of_the_case = EXCLUDED.facts_of_the_case,
        question = EXCLUDED.question,
        conclusion = EXCLUDED.conclusion,
        decision_date = EXCLUDED.decision_date,
        citation = EXCLUDED.citation,
        justia_url = EXCLUDED.justia_url,
        href = EXCLUDED.href,
        decisions = EXCLUDED.decisions,
        advocates = EXCLUDED.advocates,
        written_opinion = EXCLUDED.written_opinion,
        timeline = EXCLUDED.timeline,
        is_decided = EXCLUDED.is_decided,
        fetched_at = NOW(),
        search_vector = EXCLUDED.search_vector
"""

UPSERT_JUSTICE_SQL = """
    INSERT INTO justices (
        identifier, name, last_name, role_title, appointing_president,
        date_start, date_end, home_state, law_school, thumbnail_url, fetched_at
    ) VALUES (
        %(identifier)s, %(name)s, %(last_name)s, %(role_title)s, %(appointing_president)s,
        %(date_start)s, %(date_end)s, %(home_state)s, %(law_school)s, %(thumbnail_url)s, NOW()
    )
    ON CONFLICT (identifier) DO UPDATE SET
        name = EXCLUDED.name,
        last_name = EXCLUDED.last_name,
        role_title = EXCLUDED.role_title,
        appointing_president = EXCLUDED.appointing_president,
        date_start = EXCLUDED.date_start,
        date_end = EXCLUDED.date_end,
        home_state = COALESCE(EXCLUDED.home_state, justices.home_state),
        law_school = COALESCE(EXCLUDED.law_school, justices.law_school),
        thumbnail_url = EXCLUDED.thumbnail_url,
        fetched_at = NOW()
"""

SCHEMA_SQL = """
    CREATE EXTENSION IF NOT EXISTS pg_trgm;

    CREATE TABLE IF NOT EXISTS cases (
        term              TEXT NOT NULL,
        docket_number     TEXT NOT NULL,
        name              TEXT NOT NULL,
        first_party       TEXT,
        second_party      TEXT,
        description       TEXT,
        facts_of_the_case TEXT,
        question          TEXT,
        conclusion        TEXT,
        decision_date     TEXT,
        citation          JSONB,
        justia_url        TEXT,
        href              TEXT NOT NULL,
        decisions         JSONB DEFAULT '[]',
        advocates         JSONB DEFAULT '[]',
        written_opinion   JSONB DEFAULT '[]',
        timeline          JSONB DEFAULT '[]',
        is_decided        BOOLEAN NOT NULL DEFAULT FALSE,
        fetched_at        TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        search_vector     TSVECTOR,
        PRIMARY KEY (term, docket_number)
    );

    CREATE TABLE IF NOT EXISTS justices (
        identifier           TEXT PRIMARY KEY,
        name                 TEXT NOT NULL,
        last_name            TEXT NOT NULL,
        role_title           TEXT,
        appointing_president TEXT,
        date_start           BIGINT,
        date_end             BIGINT DEFAULT 0,
        home_state           TEXT,
        law_school           TEXT,
        thumbnail_url        TEXT,
        fetched_at           TIMESTAMPTZ DEFAULT NOW()
    );

    CREATE TABLE IF NOT EXISTS constitution_sections (
        id             SERIAL PRIMARY KEY,
        article        TEXT NOT NULL,
        article_title  TEXT NOT NULL,
        section_number INTEGER,
        section_title  TEXT,
        text           TEXT NOT NULL,
        sort_order     INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS sync_runs (
        id            SERIAL PRIMARY KEY,
        started_at    TIMESTAMPTZ DEFAULT NOW(),
        finished_at   TIMESTAMPTZ,
        terms         TEXT[],
        status        VARCHAR(20) DEFAULT 'running',
        inserted      INTEGER DEFAULT 0,
        updated       INTEGER DEFAULT 0,
        skipped       INTEGER DEFAULT 0,
        failed        INTEGER DEFAULT 0,
        justices_added INTEGER DEFAULT 0,
        message       TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_cases_term ON cases(term);
    CREATE INDEX IF NOT EXISTS idx_cases_search_vector ON cases USING GIN (search_vector);
    CREATE INDEX IF NOT EXISTS idx_cases_name_trgm ON cases USING GIN (name gin_trgm_ops);
    CREATE INDEX IF NOT EXISTS idx_sync_runs_started ON sync_runs(started_at);
"""

BACKFILL_SEARCH_VECTOR_SQL = """
    UPDATE cases SET search_vector =
        setweight(to_tsvector('english', coalesce(name, '')), 'A') ||
        setweight(to_tsvector('english', coalesce(first_party, '')), 'A') ||
        setweight(to_tsvector('english', coalesce(second_party, '')), 'A') ||
        setweight(to_tsvector('english', coalesce(description, '')), 'B') ||
        setweight(to_tsvector('english', coalesce(question, '')), 'B') ||
        setweight(to_tsvector('english', coalesce(facts_of_the_case, '')), 'C') ||
        setweight(to_tsvector('english', coalesce(conclusion, '')), 'C')
    WHERE search_vector IS NULL
"""


class StorageError(Exception):
    """Connectivity or constraint failure in the case database"""


class CaseStore:
    def __init__(self, dsn: str, minconn: int = DEFAULT_MIN_CONNECTIONS,
                 maxconn: int = DEFAULT_MAX_CONNECTIONS, sslmode: Optional[str] = None,
                 connection_pool: Optional[pool.AbstractConnectionPool] = None):
        self.dsn = dsn
        self.minconn = minconn
        self.maxconn = maxconn
        self.sslmode = sslmode
        self._pool = connection_pool

    @classmethod
    def from_env(cls) -> "CaseStore":
        dsn = os.environ.get('DATABASE_URL')
        if not dsn:
            raise StorageError("DATABASE_URL is not set")
        return cls(
            dsn,
            minconn=int(os.environ.get('DB_POOL_MIN', DEFAULT_MIN_CONNECTIONS)),
            maxconn=int(os.environ.get('DB_POOL_MAX', DEFAULT_MAX_CONNECTIONS)),
            sslmode=os.environ.get('DATABASE_SSLMODE'),
        )

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def open(self) -> "CaseStore":
        """Create the connection pool and validate it with a test query"""
        if self._pool is not None:
            return self
        url = urlparse(self.dsn)
        sslmode = self.sslmode or parse_qs(url.query).get('sslmode', ['prefer'])[0]
        logger.info("Initializing database connection pool...")
        try:
            self._pool = pool.SimpleConnectionPool(
                self.minconn,
                self.maxconn,
                user=url.username,
                password=url.password,
                host=url.hostname,
                port=url.port or 5432,
                database=url.path[1:],  # Remove leading slash
                sslmode=sslmode,
            )
            test_conn = self._pool.getconn()
            try:
                cur = test_conn.cursor()
                cur.execute('SELECT 1')
                cur.close()
                test_conn.rollback()
            finally:
                self._pool.putconn(test_conn)
        except psycopg2.Error as e:
            self.close()
            raise StorageError(f"Error initializing connection pool: {str(e)}") from e
        logger.info("Database connection pool initialized and validated successfully")
        return self

    def close(self) -> None:
        if self._pool is None:
            return
        try:
            self._pool.closeall()
        except psycopg2.Error as e:
            logger.warning(f"Error closing connection pool: {str(e)}")
        finally:
            self._pool = None

    def __enter__(self) -> "CaseStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Borrow a pooled connection for one transaction"""
        if self._pool is None:
            raise StorageError("Case store is not open")
        try:
            conn = self._pool.getconn()
        except psycopg2.Error as e:
            raise StorageError(f"Could not acquire database connection: {str(e)}") from e
        try:
            yield conn
            conn.commit()
        except psycopg2.Error as e:
            if not conn.closed:
                conn.rollback()
            raise StorageError(str(e)) from e
        except Exception:
            if not conn.closed:
                conn.rollback()
            raise
        finally:
            self._pool.putconn(conn, close=bool(conn.closed))

    def _fetch_all(self, query: str, params: Any = None) -> List[Dict[str, Any]]:
        with self.connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            try:
                cur.execute(query, params)
                return [dict(row) for row in cur.fetchall()]
            finally:
                cur.close()

    def _fetch_one(self, query: str, params: Any = None) -> Optional[Dict[str, Any]]:
        rows = self._fetch_all(query, params)
        return rows[0] if rows else None

    def initialize_database(self) -> None:
        """Create tables, extensions and indexes; safe to run repeatedly"""
        with self.connection() as conn:
            cur = conn.cursor()
            try:
                cur.execute(SCHEMA_SQL)
                cur.execute(BACKFILL_SEARCH_VECTOR_SQL)
                logger.info(f"Backfilled search vectors for {cur.rowcount} cases")
            finally:
                cur.close()
        logger.info("Database schema initialized successfully")

    # -- cases ---------------------------------------------------------------

    def upsert_case(self, detail: CaseDetail) -> None:
        """Write one case snapshot, its lock flag and its search vector atomically.

        This is the only write path for case rows. The key columns are never
        updated; everything else, including is_decided, is overwritten.
        """
        params = {
            'term': detail.term,
            'docket_number': detail.docket_number,
            'name': detail.name,
            'first_party': detail.first_party or None,
            'second_party': detail.second_party or None,
            'description': detail.description,
            'facts_of_the_case': detail.facts_of_the_case,
            'question': detail.question,
            'conclusion': detail.conclusion,
            'decision_date': detail.decision_date,
            'citation': Json(detail.citation.to_json() if detail.citation else None),
            'justia_url': detail.justia_url,
            'href': detail.href,
            'decisions': Json([d.to_json() for d in detail.decisions]),
            'advocates': Json([a.to_json() for a in detail.advocates]),
            'written_opinion': Json([o.to_json() for o in detail.written_opinion]),
            'timeline': Json([t.to_json() for t in detail.timeline]),
            'is_decided': detail.has_structured_votes,
        }
        with self.connection() as conn:
            cur = conn.cursor()
            try:
                cur.execute(UPSERT_CASE_SQL, params)
            finally:
                cur.close()
        logger.debug(f"Upserted case {detail.term}/{detail.docket_number}")

    def case_state(self, term: str, docket_number: str) -> Optional[bool]:
        """None when the case is not stored, otherwise its is_decided flag"""
        row = self._fetch_one(
            "SELECT is_decided FROM cases WHERE term = %s AND docket_number = %s",
            (term, docket_number),
        )
        return None if row is None else bool(row['is_decided'])

    def case_row(self, term: str, docket_number: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            f"SELECT {CASE_COLUMNS} FROM cases WHERE term = %s AND docket_number = %s",
            (term, docket_number),
        )

    def case_rows(self, terms: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        """All case rows for the given terms (every term when None) in one query"""
        if terms is None:
            return self._fetch_all(f"SELECT {CASE_COLUMNS} FROM cases ORDER BY term, docket_number")
        return self._fetch_all(
            f"SELECT {CASE_COLUMNS} FROM cases WHERE term = ANY(%s) ORDER BY term, docket_number",
            (list(terms),),
        )

    def vote_rows(self, terms: Iterable[str]) -> List[Any]:
        """Decision arrays of every case in the given terms that has any"""
        rows = self._fetch_all(
            """
            SELECT decisions FROM cases
            WHERE term = ANY(%s) AND decisions IS NOT NULL AND decisions != '[]'::jsonb
            """,
            (list(terms),),
        )
        return [row['decisions'] for row in rows]

    def terms(self) -> List[str]:
        rows = self._fetch_all("SELECT DISTINCT term FROM cases ORDER BY term DESC")
        return [row['term'] for row in rows]

    def search_case_rows(self, tsquery: str, raw_query: str, threshold: float,
                         limit: int) -> List[Dict[str, Any]]:
        """Full-text matches unioned with trigram-similar names, best first"""
        with self.connection() as conn:
            cur = conn.cursor(cursor_factory=RealDictCursor)
            try:
                cur.execute("SET LOCAL pg_trgm.similarity_threshold = %s", (threshold,))
                cur.execute(
                    f"""
                    SELECT {CASE_COLUMNS},
                        search_vector @@ q.query AS text_match,
                        ts_rank(search_vector, q.query) AS rank,
                        similarity(name, %(raw)s) AS similarity
                    FROM cases, to_tsquery('english', %(tsquery)s) AS q(query)
                    WHERE search_vector @@ q.query OR name %% %(raw)s
                    ORDER BY text_match DESC, rank DESC, similarity DESC
                    LIMIT %(limit)s
                    """,
                    {'tsquery': tsquery, 'raw': raw_query, 'limit': limit},
                )
                return [dict(row) for row in cur.fetchall()]
            finally:
                cur.close()

    # -- justices ------------------------------------------------------------

    def justice_ids(self) -> Set[str]:
        rows = self._fetch_all("SELECT identifier FROM justices")
        return {row['identifier'] for row in rows}

    def upsert_justice(self, justice: Justice) -> None:
        """Insert or refresh a justice; known home state and law school survive nulls"""
        with self.connection() as conn:
            cur = conn.cursor()
            try:
                cur.execute(UPSERT_JUSTICE_SQL, justice.to_dict())
            finally:
                cur.close()
        logger.debug(f"Upserted justice {justice.identifier}")

    def justice_row(self, identifier: str) -> Optional[Dict[str, Any]]:
        return self._fetch_one(
            f"SELECT {JUSTICE_COLUMNS} FROM justices WHERE identifier = %s", (identifier,)
        )

    def justice_rows(self) -> List[Dict[str, Any]]:
        return self._fetch_all(f"SELECT {JUSTICE_COLUMNS} FROM justices ORDER BY last_name")

    def search_justice_rows(self, pattern: str, limit: int) -> List[Dict[str, Any]]:
        return self._fetch_all(
            f"""
            SELECT {JUSTICE_COLUMNS} FROM justices
            WHERE name ILIKE %s OR last_name ILIKE %s
            ORDER BY last_name
            LIMIT %s
            """,
            (pattern, pattern, limit),
        )

    # -- constitution --------------------------------------------------------

    def seed_constitution(self, sections: List[ConstitutionSection]) -> int:
        """Replace the constitution text with ``sections`` in one transaction"""
        values = [
            (s.article, s.article_title, s.section_number, s.section_title, s.text, s.sort_order)
            for s in sections
        ]
        with self.connection() as conn:
            cur = conn.cursor()
            try:
                cur.execute("TRUNCATE constitution_sections RESTART IDENTITY")
                if values:
                    execute_values(cur, """
                        INSERT INTO constitution_sections
                            (article, article_title, section_number, section_title, text, sort_order)
                        VALUES %s
                    """, values)
            finally:
                cur.close()
        logger.info(f"Seeded {len(values)} constitution sections")
        return len(values)

    def constitution_rows(self) -> List[Dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT article, article_title, section_number, section_title, text, sort_order
            FROM constitution_sections
            ORDER BY sort_order, id
            """
        )

    def search_constitution_rows(self, pattern: str, limit: int) -> List[Dict[str, Any]]:
        return self._fetch_all(
            """
            SELECT article, article_title, section_number, section_title, text, sort_order
            FROM constitution_sections
            WHERE text ILIKE %s OR section_title ILIKE %s OR article_title ILIKE %s
            ORDER BY sort_order, id
            LIMIT %s
            """,
            (pattern, pattern, pattern, limit),
        )

    # -- sync bookkeeping ----------------------------------------------------

    def start_sync_run(self, terms: List[str]) -> int:
        row = self._fetch_one(
            "INSERT INTO sync_runs (terms, status) VALUES (%s, 'running') RETURNING id",
            (list(terms),),
        )
        return row['id']

    def finish_sync_run(self, run_id: int, status: str, counts: Dict[str, int],
                        message: Optional[str] = None) -> None:
        with self.connection() as conn:
            cur = conn.cursor()
            try:
                cur.execute("""
                    UPDATE sync_runs
                    SET finished_at = NOW(),
                        status = %s,
                        inserted = %s,
                        updated = %s,
                        skipped = %s,
                        failed = %s,
                        justices_added = %s,
                        message = %s
                    WHERE id = %s
                """, (
                    status,
                    counts.get('inserted', 0),
                    counts.get('updated', 0),
                    counts.get('skipped', 0),
                    counts.get('failed', 0),
                    counts.get('justices_added', 0),
                    message,
                    run_id,
                ))
            finally:
                cur.close()

    def latest_sync_run(self) -> Optional[Dict[str, Any]]:
        return self._fetch_one("SELECT * FROM sync_runs ORDER BY started_at DESC LIMIT 1")
