from sqlalchemy import Column, Integer, String, Boolean, Enum
import enum

from quicksnack.models.base import Base, TimestampMixin


class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)  # stored lowercase
    phone = Column(String(10), nullable=False)
    password_hash = Column(String(255), nullable=True)  # Nullable for OTP-only users

    # Account status
    is_verified = Column(Boolean, default=False, nullable=False)
    role = Column(
        Enum(UserRole, values_callable=lambda roles: [r.value for r in roles], name="user_role"),
        default=UserRole.USER,
        nullable=False,
    )

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}')>"
