from .database import Base, SessionLocal, engine
from .routes import get_registry, router
from .services import seed_default_users


def init_cognitia_module() -> None:
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        seed_default_users(db)
    finally:
        db.close()


def shutdown_cognitia_module() -> None:
    get_registry().close_all()


__all__ = ["router", "init_cognitia_module", "shutdown_cognitia_module"]
