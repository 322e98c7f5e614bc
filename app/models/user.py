from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

if TYPE_CHECKING:
    from app.models.xenbox_file import XenBoxFile


class User(Base):
    """
    Account owning XenBox files.

    space_allowed is the per-user storage ceiling in bytes; it is set from
    configuration at registration and raised by the account/plan system.
    Space used is never stored, it is derived from the user's files.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(default=True)
    space_allowed: Mapped[int] = mapped_column(BigInteger, default=0)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )

    files: Mapped[list["XenBoxFile"]] = relationship(
        "XenBoxFile", back_populates="owner"
    )
