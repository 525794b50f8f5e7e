"""Idempotency key model definition."""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base, utcnow


class IdempotencyKey(Base):
    """Claim and stored response for one client-supplied idempotency key."""

    __tablename__ = "idempotency_keys"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Unique constraint is the mutex that prevents duplicate execution
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    user_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)

    # Canonical JSON of the request and its SHA-256
    request_params: Mapped[str] = mapped_column(Text, nullable=False)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    is_processing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Populated only on success
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    response_body: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    expires_at: Mapped[datetime] = mapped_column(nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("length(key) > 0", name="ck_idempotency_key_not_empty"),
        CheckConstraint("length(request_hash) = 64", name="ck_idempotency_hash_length"),
        CheckConstraint(
            "response_status IS NULL OR (response_status >= 100 AND response_status <= 599)",
            name="ck_idempotency_status_code_valid"
        ),
    )

    @property
    def has_response(self) -> bool:
        return self.response_status is not None

    def __repr__(self) -> str:
        return (
            f"<IdempotencyKey(key='{self.key}', endpoint='{self.endpoint}', "
            f"processing={self.is_processing}, status={self.response_status})>"
        )
