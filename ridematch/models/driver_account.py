from sqlalchemy import String, Boolean
from sqlalchemy.orm import Mapped, mapped_column
from ridematch.database import Base


class DriverAccount(Base):
    """Payment onboarding state owned by the onboarding service; read-only here."""

    __tablename__ = "driver_accounts"

    driver_id: Mapped[str] = mapped_column(String, primary_key=True)
    payment_provider: Mapped[str | None] = mapped_column(String(30), nullable=True)
    payment_link: Mapped[str | None] = mapped_column(String(500), nullable=True)
    payment_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
