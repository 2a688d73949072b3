import logging
import os

from google.cloud import secretmanager
from google.oauth2 import service_account
from google.auth import default as google_auth_default
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from ideagen import settings
from ideagen.entities import Base

logger = logging.getLogger("ideagen")

_db_password: str | None = settings.DB_PASSWORD


def _build_creds():
    key_path = os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    scopes = ["https://www.googleapis.com/auth/cloud-platform"]
    if key_path and os.path.exists(key_path):
        return service_account.Credentials.from_service_account_file(key_path, scopes=scopes)
    creds, _ = google_auth_default(scopes=scopes)
    return creds


def get_db_password() -> str:
    global _db_password

    if _db_password:
        return _db_password

    if settings.DB_SECRET_ID:
        creds = _build_creds()
        client = secretmanager.SecretManagerServiceClient(credentials=creds)
        name = client.secret_version_path(settings.PROJECT_ID, settings.DB_SECRET_ID, "latest")
        resp = client.access_secret_version(request={"name": name})
        _db_password = resp.payload.data.decode("utf-8")
        return _db_password

    raise RuntimeError("No DB_PASSWORD and no Secret Manager configured")


def build_database_url() -> str:
    if settings.DATABASE_URL:
        return settings.DATABASE_URL
    password = get_db_password()
    return (
        f"postgresql+pg8000://{settings.DB_USER}:{password}"
        f"@{settings.DB_HOST}:{settings.DB_PORT}/{settings.DB_NAME}"
    )


def get_db_engine(url: str | None = None):
    url = url or build_database_url()
    logger.info(f"[DB] Connecting to {url.split('@')[-1]}")

    if url.startswith("postgresql+pg8000"):
        # pg8000 supports 'timeout' in seconds
        return create_engine(url, connect_args={"timeout": 10}, pool_pre_ping=True)
    return create_engine(url, pool_pre_ping=True)


def create_session_factory(engine=None, *, create_tables: bool = False) -> sessionmaker:
    engine = engine or get_db_engine()
    if create_tables:
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
