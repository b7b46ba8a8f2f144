# market_dashboard/database/__init__.py
from .session import AsyncSessionLocal, Base, close_db, engine, init_db
