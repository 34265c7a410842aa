"""Singleton declarative base.

The rest of the codebase can simply do

    from transcript_pipeline.db.base import Base

to declare new ORM models.  Keeping the base in one place ensures that
``Base.metadata.create_all(bind=engine)`` sees every mapped class, as long as
``transcript_pipeline.models`` has been imported first.
"""

from sqlalchemy.orm import declarative_base

# The global declarative base instance used by every model
Base = declarative_base()

__all__ = ["Base"]
