"""
Database Configuration
SQLite for development and tests, PostgreSQL in production
"""
import os
import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from sihat.config import settings
from sihat.database.models import Base

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Hosted Postgres providers still hand out the old postgres:// scheme"""
    if database_url.startswith("postgres://"):
        return "postgresql://" + database_url[len("postgres://"):]
    return database_url


def redact_database_url(database_url: str) -> str:
    return database_url.rsplit("@", 1)[-1]


def build_engine(database_url: str) -> Engine:
    echo = os.getenv("SQL_DEBUG", "false").lower() == "true"

    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_size=5, max_overflow=10, pool_pre_ping=True, echo=echo)

    # One shared connection, so in-memory databases survive across sessions
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=echo
    )

    @event.listens_for(engine, "connect")
    def enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


class DatabaseManager:
    """Owns the engine and session factory for one database"""

    def __init__(self):
        self.engine = None
        self.SessionLocal = None
        self._initialized = False

    def init_db(self, database_url: str = None):
        """Connect and create missing tables; a no-op once initialized"""
        if self._initialized:
            return

        database_url = normalize_database_url(database_url or settings.DATABASE_URL)
        self.engine = build_engine(database_url)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        Base.metadata.create_all(bind=self.engine)

        self._initialized = True
        logger.info(f"Database initialized: {redact_database_url(database_url)}")

    def get_session(self) -> Session:
        if not self._initialized:
            self.init_db()
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Commit on success, roll back on error, always close"""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self, db: Session) -> None:
        """Raises if the database is unreachable"""
        db.execute(text("SELECT 1"))

    def close(self):
        if self.engine is not None:
            self.engine.dispose()
        self._initialized = False

    def init_database(self):
        """Tables plus the default admin and system settings"""
        self.init_db()
        with self.session_scope() as db:
            create_initial_data(db)


db_manager = DatabaseManager()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency for database sessions"""
    db = db_manager.get_session()
    try:
        yield db
    finally:
        db.close()


def init_database(database_url: str = None):
    db_manager.init_db(database_url)


# key, value, description, is_secret
DEFAULT_SETTINGS = [
    ("gemini_api_key", "", "Gemini API key override used by AI routes", True),
    ("default_doctor_level", "Physician", "Doctor level used when the patient does not choose one", False),
    ("background_music_enabled", "false", "Play background music in the wizard", False),
    ("background_music_url", "", "Background music source", False),
    ("background_music_volume", "0.5", "Background music volume (0-1)", False),
    ("session_timeout_minutes", str(settings.SESSION_TIMEOUT_MINUTES), "Draft sessions expire after this many idle minutes", False),
]


def create_initial_data(db: Session):
    """Seed the default admin account and any missing system settings"""
    from sihat.database.models import User, UserRole, SystemSetting
    from sihat.services.auth_service import AuthService

    if not db.query(User.id).filter(User.email == settings.DEFAULT_ADMIN_EMAIL).first():
        db.add(User(
            email=settings.DEFAULT_ADMIN_EMAIL,
            password_hash=AuthService().hash_password(settings.DEFAULT_ADMIN_PASSWORD),
            full_name="System Administrator",
            role=UserRole.ADMIN,
            is_active=True
        ))
        logger.info(f"Created default admin user ({settings.DEFAULT_ADMIN_EMAIL})")

    existing = {key for (key,) in db.query(SystemSetting.key).all()}
    for key, value, description, is_secret in DEFAULT_SETTINGS:
        if key not in existing:
            db.add(SystemSetting(key=key, value=value, description=description, is_secret=is_secret))

    db.commit()
    logger.info("Initial data created")
