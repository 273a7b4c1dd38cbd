from datetime import datetime

from sqlalchemy import Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from flightbooker.db.database import Base


class ApiProvider(Base):
    """
    Configurazione persistita di un flight provider (gestita dall'admin).

    Ogni colonna nullable è un override: None = valore di default del registry.
    """
    __tablename__ = "api_providers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Chiave del registry: "amadeus" | "serpapi" | "synthetic"
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(100))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    priority: Mapped[int | None] = mapped_column(Integer)
    timeout_ms: Mapped[int | None] = mapped_column(Integer)
    # "high" | "medium" | "low"
    reliability: Mapped[str | None] = mapped_column(String(10))
    requests_per_minute: Mapped[int | None] = mapped_column(Integer)
    requests_per_hour: Mapped[int | None] = mapped_column(Integer)
    updated_at: Mapped[datetime] = mapped_column(server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_api_providers_active", "is_active", "priority"),
    )
