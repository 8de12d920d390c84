from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from money import cents_to_amount


class RoleName(str, Enum):
    user = "user"
    admin = "admin"
    super_admin = "super_admin"

    @property
    def is_admin(self) -> bool:
        return self in (RoleName.admin, RoleName.super_admin)

    @property
    def is_super_admin(self) -> bool:
        return self is RoleName.super_admin

    @classmethod
    def parse(cls, value: object) -> Optional["RoleName"]:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value))
        except ValueError:
            return None


class GoalTargetType(str, Enum):
    account = "account"
    tag = "tag"


ROLE_NAME_ENUM = SAEnum(
    RoleName,
    name="rolename",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)

GOAL_TARGET_TYPE_ENUM = SAEnum(
    GoalTargetType,
    name="goaltargettype",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[RoleName] = mapped_column(ROLE_NAME_ENUM, unique=True, nullable=False)

    users: Mapped[list["User"]] = relationship("User", back_populates="role")


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    nickname: Mapped[Optional[str]] = mapped_column(String(100))
    role_id: Mapped[Optional[int]] = mapped_column(ForeignKey("roles.id"))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    role: Mapped[Optional["Role"]] = relationship("Role", back_populates="users")
    sessions: Mapped[list["UserSession"]] = relationship(
        "UserSession", back_populates="user", cascade="all, delete-orphan"
    )
    password_resets: Mapped[list["PasswordReset"]] = relationship(
        "PasswordReset", back_populates="user", cascade="all, delete-orphan"
    )
    accounts: Mapped[list["Account"]] = relationship(
        "Account", back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def role_name(self) -> RoleName:
        return self.role.name if self.role else RoleName.user


class UserSession(Base):
    __tablename__ = "user_sessions"
    __table_args__ = (
        UniqueConstraint("user_id", "device_id", name="uq_user_session_device"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    device_id: Mapped[str] = mapped_column(String(128), nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512))
    ip: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    last_used_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    revoke: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="sessions")


class PasswordReset(Base):
    __tablename__ = "password_resets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    token: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="password_resets")


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tipo: Mapped[str] = mapped_column(String(100), nullable=False)

    accounts: Mapped[list["Account"]] = relationship(
        "Account", back_populates="category"
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint("money_cents >= 0", name="ck_accounts_money_non_negative"),
        Index("ix_accounts_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[Optional[str]] = mapped_column(String(120))
    description: Mapped[Optional[str]] = mapped_column(Text)
    money_cents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )

    user: Mapped["User"] = relationship("User", back_populates="accounts")
    category: Mapped["Category"] = relationship("Category", back_populates="accounts")
    tags: Mapped[list["TagPocket"]] = relationship(
        "TagPocket",
        back_populates="account",
        cascade="all, delete-orphan",
        order_by="TagPocket.id",
    )
    chat: Mapped[Optional["Chat"]] = relationship(
        "Chat", back_populates="account", cascade="all, delete-orphan", uselist=False
    )

    @property
    def money(self) -> float:
        return cents_to_amount(self.money_cents)


class TagPocket(Base, TimestampMixin):
    __tablename__ = "tag_pockets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )

    account: Mapped["Account"] = relationship("Account", back_populates="tags")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="tag",
        cascade="all, delete-orphan",
        order_by="Transaction.transaction_date",
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_tag_date", "tag_id", "transaction_date"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    is_income: Mapped[bool] = mapped_column(Boolean, nullable=False)
    transaction_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    tag_id: Mapped[int] = mapped_column(
        ForeignKey("tag_pockets.id", ondelete="CASCADE"), nullable=False
    )

    tag: Mapped["TagPocket"] = relationship("TagPocket", back_populates="transactions")

    @property
    def amount(self) -> float:
        return cents_to_amount(self.amount_cents)

    @property
    def signed_cents(self) -> int:
        return self.amount_cents if self.is_income else -self.amount_cents


class Goal(Base, TimestampMixin):
    __tablename__ = "goals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    init_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    final_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    max_money_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_progress_cents: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )

    targets: Mapped[list["GoalTarget"]] = relationship(
        "GoalTarget",
        back_populates="goal",
        cascade="all, delete-orphan",
        order_by="GoalTarget.id",
    )

    @property
    def max_money(self) -> float:
        return cents_to_amount(self.max_money_cents)

    @property
    def actual_progress(self) -> float:
        return cents_to_amount(self.actual_progress_cents)


class GoalTarget(Base):
    __tablename__ = "goal_targets"
    __table_args__ = (Index("ix_goal_targets_type_target", "target_type", "target_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    goal_id: Mapped[int] = mapped_column(
        ForeignKey("goals.id", ondelete="CASCADE"), nullable=False
    )
    target_type: Mapped[GoalTargetType] = mapped_column(
        GOAL_TARGET_TYPE_ENUM, nullable=False
    )
    target_id: Mapped[int] = mapped_column(Integer, nullable=False)

    goal: Mapped["Goal"] = relationship("Goal", back_populates="targets")


class Chat(Base, TimestampMixin):
    __tablename__ = "chats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )

    account: Mapped["Account"] = relationship("Account", back_populates="chat")
    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        order_by="Message.id",
    )


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    chat_id: Mapped[int] = mapped_column(
        ForeignKey("chats.id", ondelete="CASCADE"), nullable=False
    )
    message_send: Mapped[str] = mapped_column(Text, nullable=False)
    answers_message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    chat: Mapped["Chat"] = relationship("Chat", back_populates="messages")
