from pathlib import Path
from urllib.parse import unquote

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import get_settings

Base = declarative_base()
SessionLocal = sessionmaker(autoflush=False, autocommit=False, future=True)
engine: Engine | None = None

# Columns `create_all` leaves out when the documents table already exists;
# SQLite has no migrations here, so missing ones are added in place on startup.
_DOCUMENT_RUNTIME_COLUMNS = {
    "canonical_url": "TEXT",
    "final_url": "TEXT",
    "content_type": "VARCHAR(128)",
    "length_chars": "INTEGER",
    "byte_hash": "VARCHAR(64)",
    "text_hash": "VARCHAR(64)",
    "http_etag": "VARCHAR(255)",
    "http_last_modified": "VARCHAR(64)",
    "last_fetched_at": "DATETIME",
    "extraction_quality": "FLOAT",
    "ocr_required": "BOOLEAN NOT NULL DEFAULT 0",
    "inferred": "BOOLEAN NOT NULL DEFAULT 0",
}


def configure_database(database_url: str) -> Engine:
    global engine

    if database_url.startswith("sqlite:///"):
        raw = unquote(database_url[len("sqlite:///") :])
        if raw and raw != ":memory:":
            try:
                Path(raw).parent.mkdir(parents=True, exist_ok=True)
            except OSError:
                # If the parent dir can't be created, SQLite will fail later with a clearer error.
                pass

    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    if engine is not None:
        engine.dispose()
    engine = create_engine(database_url, connect_args=connect_args, future=True)
    SessionLocal.configure(bind=engine)
    return engine


configure_database(get_settings().database_url)


def init_db() -> None:
    from app import models as _models  # noqa: F401 - register models before create_all

    assert engine is not None
    Base.metadata.create_all(bind=engine)
    ensure_runtime_schema()


def ensure_runtime_schema() -> None:
    """Apply lightweight runtime schema safety for SQLite deployments."""
    assert engine is not None
    if engine.url.get_backend_name() != "sqlite":
        return
    with engine.begin() as conn:
        columns = {
            row[1]
            for row in conn.exec_driver_sql("PRAGMA table_info(documents)").fetchall()
            if row and len(row) > 1
        }
        if not columns:
            return
        for name, ddl in _DOCUMENT_RUNTIME_COLUMNS.items():
            if name not in columns:
                conn.exec_driver_sql(f"ALTER TABLE documents ADD COLUMN {name} {ddl}")

        conn.exec_driver_sql(
            "CREATE UNIQUE INDEX IF NOT EXISTS ux_documents_canonical_url ON documents (canonical_url)"
        )
        conn.exec_driver_sql("CREATE INDEX IF NOT EXISTS ix_documents_byte_hash ON documents (byte_hash)")
        conn.exec_driver_sql("CREATE INDEX IF NOT EXISTS ix_documents_text_hash ON documents (text_hash)")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
