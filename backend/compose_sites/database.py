from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session


Base = declarative_base()


class SiteStatus:
    INSTALLING = "installing"
    READY = "ready"
    INSTALLATION_FAILED = "installation_failed"


class Site(Base):
    """A compose deployment on one managed server."""

    __tablename__ = "sites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    server_id = Column(Integer, nullable=False, index=True)
    domain = Column(String(255), nullable=False)
    path = Column(String(1024), nullable=False)
    user = Column(String(64), nullable=False)
    port = Column(Integer, nullable=True, index=True)
    type = Column(String(32), nullable=False, default="docker")
    repository = Column(String(255), nullable=True)
    branch = Column(String(255), nullable=True)
    webserver = Column(String(32), nullable=False, default="nginx")
    status = Column(String(32), nullable=False, default=SiteStatus.INSTALLING)
    progress = Column(Integer, nullable=False, default=0)
    type_data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def get_type_data(self, key: str, default: Any = None) -> Any:
        value = (self.type_data or {}).get(key)
        return default if value is None else value

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "server_id": self.server_id,
            "domain": self.domain,
            "path": self.path,
            "user": self.user,
            "port": self.port,
            "type": self.type,
            "repository": self.repository,
            "branch": self.branch,
            "webserver": self.webserver,
            "status": self.status,
            "progress": self.progress,
            "type_data": dict(self.type_data or {}),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class DeploymentScript(Base):
    """Redeploy script kept for a site, run out-of-band by operators."""

    __tablename__ = "deployment_scripts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, unique=True)
    name = Column(String(64), nullable=False, default="default")
    content = Column(Text, nullable=False, default="")


class AuditLog(Base):
    """SQLAlchemy model for audit log entries."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    action_type = Column(String(50), nullable=False, index=True)
    site_id = Column(Integer, nullable=True, index=True)
    target_name = Column(String(255), nullable=False, index=True)
    status = Column(String(20), nullable=False, index=True)
    output = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    metadata_json = Column(Text, nullable=True)
    duration_ms = Column(Float, nullable=True)

    def set_metadata(self, data: dict[str, Any]) -> None:
        self.metadata_json = json.dumps(data) if data else None

    def get_metadata(self) -> dict[str, Any]:
        if not self.metadata_json:
            return {}
        return json.loads(self.metadata_json)


class Database:
    """Database connection manager."""

    def __init__(self, db_path: str = "compose_sites.db"):
        self.db_path = db_path
        self.engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False},
            echo=False,
        )
        # Sites are handed to long-running installs after the session closes
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )

    def init_db(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def get_session(self) -> Session:
        return self.SessionLocal()


_database: Database | None = None


def get_database(db_path: str = "compose_sites.db") -> Database:
    global _database
    if _database is None:
        _database = Database(db_path)
    return _database


def init_database(db_path: str = "compose_sites.db") -> Database:
    db = get_database(db_path)
    db.init_db()
    return db
