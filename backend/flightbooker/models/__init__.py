# Importare tutti i modelli qui serve a "registrarli" con Base.
# SQLAlchemy deve conoscere tutte le tabelle prima di poter
# chiamare create_all() o generare migrazioni Alembic.
from flightbooker.models.api_provider import ApiProvider  # noqa: F401
