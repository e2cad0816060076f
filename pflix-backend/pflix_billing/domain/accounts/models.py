from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from pflix_billing.db import Base


class User(Base):
    """Read-only projection of the platform's users table.

    Accounts are owned by the auth service; billing only needs the address to
    notify and the name to greet.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    name: Mapped[str | None] = mapped_column(String)
    cpf_cnpj: Mapped[str | None] = mapped_column(String(32))
    phone: Mapped[str | None] = mapped_column(String(32))
    created_at: Mapped["DateTime"] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
