from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from app.config import settings


def _engine_kwargs(url: str) -> dict:
    # SQLite connections are shared between the event loop thread and
    # TestClient's worker thread
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


# 建立與資料庫的底層連線池
engine = create_engine(settings.DATABASE_URL, **_engine_kwargs(settings.DATABASE_URL))
# autocommit=False：不自動提交，需手動呼叫db.commit()
# autoflush=False：不自動將暫存的變更送出到資料庫
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


class Base(DeclarativeBase):
    pass


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        # API 執行完畢後，會回到這裡繼續執行 finally 區塊清理資源
        yield db
    finally:
        db.close()
