"""
Module: receivables_kernel.models.customer
Responsibility: Customer records consumed by the receivables core.  The
    credit limit is external configuration: the kernel reads it and never
    changes it.
Architecture position: Kernel > Models.  May import from db/ only.
"""

from decimal import Decimal

from sqlalchemy import Boolean, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from receivables_kernel.db.base import TrackedBase


class Customer(TrackedBase):
    """
    A customer (cliente) that may owe receivables.

    credit_limit is nullable: None means no limit is enforced.
    """

    __tablename__ = "customers"

    __table_args__ = (UniqueConstraint("document", name="uq_customer_document"),)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    # CPF or CNPJ, digits only
    document: Mapped[str | None] = mapped_column(String(20), nullable=True)

    credit_limit: Mapped[Decimal | None] = mapped_column(
        Numeric(18, 2, asdecimal=True),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Customer {self.id}: {self.name}>"
