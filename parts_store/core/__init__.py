from parts_store.core.config import settings
from parts_store.core.database import get_db, Base, get_db_session
