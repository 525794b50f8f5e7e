"""User model, owned by the identity subsystem and read here for agent attribution."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class UserRole(str, Enum):
    """User role enumeration."""
    CUSTOMER = "customer"
    AGENT = "agent"
    ADMIN = "admin"


class User(Base):
    """A customer, travel agent or administrator."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    role: Mapped[UserRole] = mapped_column(String(20), nullable=False, default=UserRole.CUSTOMER)

    # Percentage of the booking total paid to an agent, e.g. 7.50
    commission_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("commission_rate IS NULL OR (commission_rate >= 0 AND commission_rate <= 100)",
                        name="ck_user_commission_rate_range"),
    )

    @property
    def is_agent(self) -> bool:
        return self.role == UserRole.AGENT

    def __repr__(self) -> str:
        return f"<User(id={self.id}, role={self.role})>"
