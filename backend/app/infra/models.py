"""Central registry for SQLAlchemy models with string-based relationships.

Importing this module loads all ORM classes that may be referenced by string to
avoid mapper configuration errors when individual models are imported in
isolation.
"""

from app.domain.users import db_models as users_db_models  # noqa: F401
from app.domain.areas import db_models as areas_db_models  # noqa: F401
from app.domain.orders import db_models as orders_db_models  # noqa: F401
from app.domain.notifications import db_models as notifications_db_models  # noqa: F401
from app.domain.outbox import db_models as outbox_db_models  # noqa: F401
