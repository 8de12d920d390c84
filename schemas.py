from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from dates import to_naive_utc


class ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class SignupIn(ApiModel):
    email: str
    password: str
    nickname: Optional[str] = Field(None, max_length=100)


class LoginIn(ApiModel):
    """Accepts both ``{email, password}`` and ``{correoElectronico, contraseña}``."""

    email: Optional[str] = Field(
        None, validation_alias=AliasChoices("email", "correoElectronico")
    )
    password: Optional[str] = Field(
        None, validation_alias=AliasChoices("password", "contraseña")
    )


class ProfileUpdate(ApiModel):
    nickname: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = None


class ChangePasswordIn(ApiModel):
    current_password: str = Field(..., alias="currentPassword")
    new_password: str = Field(..., alias="newPassword")


class RecoverIn(ApiModel):
    email: Optional[str] = None


class ResetPasswordIn(ApiModel):
    password: Optional[str] = None
    confirm_password: Optional[str] = Field(None, alias="confirmPassword")


class AdminCreateIn(ApiModel):
    email: Optional[str] = None
    password: Optional[str] = None
    nickname: Optional[str] = Field(None, max_length=100)


class AccountIn(ApiModel):
    name: Optional[str] = Field(None, max_length=120)
    description: Optional[str] = None
    money: Decimal = Field(Decimal("0"), ge=0)
    category_id: int = Field(..., alias="categoryId")
    user_id: Optional[int] = Field(None, alias="userId")


class AccountUpdate(ApiModel):
    name: Optional[str] = Field(None, max_length=120)
    description: Optional[str] = None
    money: Optional[Decimal] = Field(None, ge=0)
    category_id: Optional[int] = Field(None, alias="categoryId")


class CategoryIn(ApiModel):
    tipo: Optional[str] = Field(None, max_length=100)


class CategoryUpdate(ApiModel):
    tipo: Optional[str] = Field(None, max_length=100)


class TagPocketIn(ApiModel):
    name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None
    account_id: Optional[int] = Field(None, alias="accountId")


class TagPocketUpdate(ApiModel):
    name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = None


class TransactionIn(ApiModel):
    amount: Decimal = Field(..., gt=0)
    is_income: bool = Field(..., alias="isIncome")
    transaction_date: datetime = Field(
        default_factory=datetime.utcnow, alias="transactionDate"
    )
    description: Optional[str] = None
    tag_id: int = Field(..., alias="tagId")

    @field_validator("transaction_date")
    @classmethod
    def _normalize_date(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class TransactionUpdate(ApiModel):
    amount: Optional[Decimal] = Field(None, gt=0)
    is_income: Optional[bool] = Field(None, alias="isIncome")
    transaction_date: Optional[datetime] = Field(None, alias="transactionDate")
    description: Optional[str] = None
    tag_id: Optional[int] = Field(None, alias="tagId")

    @field_validator("transaction_date")
    @classmethod
    def _normalize_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None


class GoalTargetIn(ApiModel):
    target_type: Optional[str] = Field(None, alias="targetType")
    target_id: Optional[int] = Field(None, alias="targetId")


class GoalIn(ApiModel):
    description: str = Field(..., min_length=1)
    init_date: datetime
    final_date: datetime
    max_money: Decimal = Field(..., ge=0)
    actual_progress: Decimal = Field(Decimal("0"), ge=0)
    target: Optional[GoalTargetIn] = None

    @field_validator("init_date", "final_date")
    @classmethod
    def _normalize_dates(cls, value: datetime) -> datetime:
        return to_naive_utc(value)


class GoalUpdate(ApiModel):
    description: Optional[str] = Field(None, min_length=1)
    init_date: Optional[datetime] = None
    final_date: Optional[datetime] = None
    max_money: Optional[Decimal] = Field(None, ge=0)
    actual_progress: Optional[Decimal] = Field(None, ge=0)
    target: Optional[GoalTargetIn] = None

    @field_validator("init_date", "final_date")
    @classmethod
    def _normalize_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value) if value is not None else None


class GoalProgressIn(ApiModel):
    actual_progress: Optional[Decimal] = Field(None, ge=0)


class ChatIn(ApiModel):
    account_id: Optional[int] = Field(None, alias="accountId")
    question: Optional[str] = None
