"""Engine and session factory.

The engine is created on first use so importing gatepass never needs a
database driver.
"""

from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from gatepass.core.config import get_settings


@lru_cache
def get_engine(database_url: Optional[str] = None) -> Engine:
    url = database_url or get_settings().database_url
    return create_engine(url, pool_pre_ping=True)

