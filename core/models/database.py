"""
Database models and schema for the memory store
"""
from sqlalchemy import create_engine, Column, String, Float, Integer, DateTime, JSON, UniqueConstraint
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from datetime import datetime
from pathlib import Path

Base = declarative_base()


class MemoryRecord(Base):
    """Learned memory table"""
    __tablename__ = 'memory_entries'
    __table_args__ = (
        UniqueConstraint('vendor_name', 'memory_type', 'key', name='uq_memory_vendor_type_key'),
    )

    pk = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, unique=True, nullable=False)
    vendor_name = Column(String, nullable=False, index=True)
    memory_type = Column(String, nullable=False)
    key = Column(String, nullable=False)
    value = Column(JSON)
    confidence = Column(Float, nullable=False)
    last_used = Column(DateTime, default=datetime.utcnow, nullable=False)
    usage_count = Column(Integer, default=1, nullable=False)
    success_count = Column(Integer, default=0, nullable=False)
    failure_count = Column(Integer, default=0, nullable=False)

    def __repr__(self):
        return (
            f"<MemoryRecord(id={self.id}, vendor={self.vendor_name}, "
            f"type={self.memory_type}, key={self.key}, confidence={self.confidence:.2f})>"
        )


def init_db(database_url: str) -> Engine:
    """
    Initialize database and create tables

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        Engine bound to the database
    """
    if database_url.startswith('sqlite:///') and not database_url.startswith('sqlite:///:memory:'):
        Path(database_url[len('sqlite:///'):]).parent.mkdir(parents=True, exist_ok=True)

    if database_url in ('sqlite://', 'sqlite:///:memory:'):
        # One shared connection, otherwise every session sees an empty database
        engine = create_engine(
            database_url,
            connect_args={'check_same_thread': False},
            poolclass=StaticPool
        )
    else:
        engine = create_engine(database_url)

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine) -> sessionmaker:
    """Get a session factory bound to engine"""
    return sessionmaker(bind=engine, expire_on_commit=False)
