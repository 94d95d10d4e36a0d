from worksheetgen.db.session import engine
from worksheetgen.db.base import Base


def init_db(bind=engine):
    """Create all tables registered on Base.metadata."""
    import worksheetgen.db.models  # noqa: F401  registers models

    Base.metadata.create_all(bind=bind)


if __name__ == "__main__":
    init_db()
