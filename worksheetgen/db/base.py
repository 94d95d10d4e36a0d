from sqlalchemy.orm import declarative_base

Base = declarative_base()

# users, subscriptions and usage_events register here when
# worksheetgen.db.models is imported (see init_db)
