from .connection import get_db, engine, AsyncSessionLocal, init_db, Base

# Member directory mirror
from .contact_models import ContactDB

__all__ = [
    'get_db', 'engine', 'AsyncSessionLocal', 'init_db', 'Base',
    'ContactDB',
]
