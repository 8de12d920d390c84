from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, joinedload, selectinload

from assistant import build_account_context
from config import get_settings
from dates import day_bounds, parse_day, parse_instant
from errors import (
    Conflict,
    EmailDeliveryError,
    InsufficientFunds,
    NotAuthenticated,
    NotFound,
    PermissionDenied,
    ValidationFailed,
)
from models import (
    Account,
    Category,
    Chat,
    Goal,
    GoalTarget,
    GoalTargetType,
    Message,
    PasswordReset,
    Role,
    RoleName,
    TagPocket,
    Transaction,
    User,
    UserSession,
)
from money import amount_to_cents
from schemas import (
    AccountIn,
    AccountUpdate,
    AdminCreateIn,
    CategoryIn,
    CategoryUpdate,
    ChangePasswordIn,
    ChatIn,
    GoalIn,
    GoalProgressIn,
    GoalTargetIn,
    GoalUpdate,
    LoginIn,
    ProfileUpdate,
    RecoverIn,
    ResetPasswordIn,
    SignupIn,
    TagPocketIn,
    TagPocketUpdate,
    TransactionIn,
    TransactionUpdate,
)
from security import (
    REFRESH_TOKEN_TTL,
    RESET_TOKEN_MAX_AGE,
    create_admin_token,
    create_reset_token,
    create_session_token,
    ensure_strong_password,
    generate_refresh_token,
    hash_password,
    is_valid_email,
    read_reset_token,
    verify_password,
)


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.utcnow()


def _normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def _reject_nulls(changes: dict, *fields: str) -> None:
    for field in fields:
        if field in changes and changes[field] is None:
            raise ValidationFailed(f"Campo inválido: {field}")


def get_or_create_role(session: Session, name: RoleName) -> Role:
    role = session.scalar(select(Role).where(Role.name == name))
    if role:
        return role
    role = Role(name=name)
    session.add(role)
    session.flush()
    return role


@dataclass(frozen=True)
class DeviceInfo:
    device_id: str
    user_agent: Optional[str] = None
    ip: Optional[str] = None


class Mailer(Protocol):
    def send_password_reset(
        self, to: str, reset_link: str, nickname: Optional[str] = None
    ) -> None: ...


class Assistant(Protocol):
    def ask(self, context: str, question: str) -> str: ...


class AuthService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _find_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User)
            .options(joinedload(User.role))
            .where(func.lower(User.email) == email)
        )

    def _validate_new_user(
        self, email: str, password: str, nickname: Optional[str]
    ) -> None:
        if not is_valid_email(email):
            raise ValidationFailed("El correo electrónico no es válido")
        ensure_strong_password(password)
        if nickname is not None and len(nickname) < 2:
            raise ValidationFailed("El apodo debe tener al menos 2 caracteres")
        if self._find_by_email(email):
            raise ValidationFailed("El correo electrónico ya está registrado")

    def signup(self, data: SignupIn) -> tuple[User, str]:
        email = _normalize_email(data.email)
        nickname = data.nickname or None
        self._validate_new_user(email, data.password, nickname)

        role = get_or_create_role(self.session, RoleName.user)
        user = User(
            email=email,
            password_hash=hash_password(data.password),
            nickname=nickname,
            role=role,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user, create_session_token(user.id, user.email)

    def authenticate(self, data: LoginIn) -> User:
        email = _normalize_email(data.email)
        if not email or not data.password:
            raise ValidationFailed("Correo electrónico y contraseña son requeridos")
        user = self._find_by_email(email)
        if not user or user.is_deleted:
            logger.info("login_failed: reason=unknown_user")
            raise NotAuthenticated("Credenciales inválidas")
        if not verify_password(data.password, user.password_hash):
            logger.info(f"login_failed: user_id={user.id} reason=bad_password")
            raise NotAuthenticated("Credenciales inválidas")
        return user

    def record_session(self, user: User, device: DeviceInfo) -> UserSession:
        now = _utcnow()
        record = self.session.scalar(
            select(UserSession).where(
                UserSession.user_id == user.id,
                UserSession.device_id == device.device_id,
            )
        )
        if not record:
            record = UserSession(user_id=user.id, device_id=device.device_id)
            self.session.add(record)
        record.refresh_token = generate_refresh_token(user.id)
        record.user_agent = device.user_agent
        record.ip = device.ip
        record.last_used_at = now
        record.expires_at = now + REFRESH_TOKEN_TTL
        record.revoke = False
        return record

    def login(self, data: LoginIn, device: DeviceInfo) -> tuple[User, str]:
        user = self.authenticate(data)
        token = create_session_token(user.id, user.email)
        self.record_session(user, device)
        self.session.commit()
        logger.info(f"login_succeeded: user_id={user.id} device={device.device_id}")
        return user, token

    def admin_login(self, data: LoginIn, device: DeviceInfo) -> tuple[User, str]:
        user = self.authenticate(data)
        role = user.role_name
        if not role.is_admin:
            logger.info(f"admin_login_denied: user_id={user.id} role={role.value}")
            raise PermissionDenied("Acceso restringido a administradores")
        token = create_admin_token(user.id, user.email, role)
        self.record_session(user, device)
        self.session.commit()
        logger.info(f"admin_login_succeeded: user_id={user.id} role={role.value}")
        return user, token

    def get_profile(self, user_id: int) -> User:
        user = self.session.scalar(
            select(User).options(joinedload(User.role)).where(User.id == user_id)
        )
        if not user or user.is_deleted:
            raise NotFound("Usuario no encontrado")
        return user

    def update_profile(self, user_id: int, data: ProfileUpdate) -> User:
        user = self.get_profile(user_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationFailed("No se enviaron campos para actualizar")
        _reject_nulls(changes, "email")

        if "email" in changes:
            email = _normalize_email(changes["email"])
            if not is_valid_email(email):
                raise ValidationFailed("El correo electrónico no es válido")
            existing = self._find_by_email(email)
            if existing and existing.id != user.id:
                raise ValidationFailed("El correo electrónico ya está registrado")
            user.email = email
        if "nickname" in changes:
            nickname = changes["nickname"] or None
            if nickname is not None and len(nickname) < 2:
                raise ValidationFailed("El apodo debe tener al menos 2 caracteres")
            user.nickname = nickname

        self.session.commit()
        self.session.refresh(user)
        return user

    def change_password(self, user_id: int, data: ChangePasswordIn) -> None:
        user = self.get_profile(user_id)
        if not verify_password(data.current_password, user.password_hash):
            raise ValidationFailed("La contraseña actual es incorrecta")
        ensure_strong_password(data.new_password)
        user.password_hash = hash_password(data.new_password)
        self.session.commit()
        logger.info(f"password_changed: user_id={user.id}")

    def delete_account(self, user_id: int) -> None:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("Usuario no encontrado")
        self.session.delete(user)
        self.session.commit()
        logger.info(f"user_deleted: user_id={user_id} source=self")

    def request_password_reset(self, data: RecoverIn, mailer: Mailer) -> None:
        """Issue a reset token and mail it when the address belongs to a user.

        Unknown addresses and delivery failures are only logged so the
        caller sees the same outcome either way.
        """
        email = _normalize_email(data.email)
        if not email:
            raise ValidationFailed("El email es requerido")

        user = self._find_by_email(email)
        if not user or user.is_deleted:
            logger.info("password_reset_requested: known=False")
            return

        token = create_reset_token(user.id)
        self.session.add(
            PasswordReset(
                token=token,
                user_id=user.id,
                expires_at=_utcnow() + timedelta(seconds=RESET_TOKEN_MAX_AGE),
            )
        )
        self.session.commit()
        logger.info(f"password_reset_requested: known=True user_id={user.id}")

        base_url = get_settings().frontend_url.rstrip("/")
        link = f"{base_url}/reset-password/{token}"
        try:
            mailer.send_password_reset(user.email, link, user.nickname)
        except EmailDeliveryError:
            logger.warning(f"password_reset_mail_failed: user_id={user.id}")

    def reset_password(self, token: str, data: ResetPasswordIn) -> None:
        if not data.password or not data.confirm_password:
            raise ValidationFailed("La contraseña y confirmación son requeridas")
        if data.password != data.confirm_password:
            raise ValidationFailed("Las contraseñas no coinciden")

        user_id = read_reset_token(token)
        record = self.session.scalar(
            select(PasswordReset).where(PasswordReset.token == token)
        )
        if (
            not record
            or record.used
            or record.user_id != user_id
            or record.expires_at < _utcnow()
        ):
            raise ValidationFailed("Token inválido o expirado")

        ensure_strong_password(data.password)
        user = self.session.get(User, user_id)
        if not user:
            raise NotFound("Usuario no encontrado")

        user.password_hash = hash_password(data.password)
        self.session.execute(
            update(PasswordReset)
            .where(PasswordReset.token == token)
            .values(used=True)
        )
        self.session.commit()
        logger.info(f"password_reset_completed: user_id={user.id}")


class CategoryService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def list_all(self) -> list[Category]:
        return self.session.scalars(select(Category).order_by(Category.id)).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFound("Categoría no encontrada")
        return category

    def create(self, data: CategoryIn) -> Category:
        if not data.tipo:
            raise ValidationFailed("Falta el campo 'tipo'")
        category = Category(tipo=data.tipo)
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get(category_id)
        changes = data.model_dump(exclude_unset=True)
        if "tipo" in changes:
            if not changes["tipo"]:
                raise ValidationFailed("Falta el campo 'tipo'")
            category.tipo = changes["tipo"]
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        category = self.get(category_id)
        in_use = self.session.scalar(
            select(func.count(Account.id)).where(Account.category_id == category.id)
        )
        if in_use:
            raise Conflict("La categoría tiene cuentas asociadas")
        self.session.delete(category)
        self.session.commit()


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _base_query(self):
        return (
            select(Account)
            .options(
                joinedload(Account.category),
                selectinload(Account.tags),
            )
            .where(Account.user_id == self.user_id)
        )

    def list_all(self) -> list[Account]:
        return self.session.scalars(self._base_query().order_by(Account.id)).all()

    def list_for_user(self, user_id: int) -> list[Account]:
        if user_id != self.user_id:
            raise PermissionDenied("No puedes consultar cuentas de otro usuario")
        return self.list_all()

    def get(self, account_id: int) -> Account:
        account = self.session.scalar(
            self._base_query().where(Account.id == account_id)
        )
        if not account:
            raise NotFound("Cuenta no encontrada")
        return account

    def _require_category(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category:
            raise NotFound("Categoría no encontrada")
        return category

    def create(self, data: AccountIn) -> Account:
        if data.user_id is not None and data.user_id != self.user_id:
            raise PermissionDenied("No puedes crear cuentas para otro usuario")
        self._require_category(data.category_id)
        account = Account(
            name=data.name,
            description=data.description,
            money_cents=amount_to_cents(data.money),
            user_id=self.user_id,
            category_id=data.category_id,
        )
        self.session.add(account)
        self.session.commit()
        logger.info(
            f"account_created: id={account.id} user_id={self.user_id} "
            f"money_cents={account.money_cents}"
        )
        return self.get(account.id)

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        account = self.get(account_id)
        changes = data.model_dump(exclude_unset=True)
        _reject_nulls(changes, "money", "category_id")

        if "category_id" in changes:
            self._require_category(changes["category_id"])
            account.category_id = changes["category_id"]
        if "money" in changes:
            account.money_cents = amount_to_cents(changes["money"])
        if "name" in changes:
            account.name = changes["name"]
        if "description" in changes:
            account.description = changes["description"]

        self.session.commit()
        self.session.expire(account, ["category"])
        logger.info(
            f"account_updated: id={account.id} money_cents={account.money_cents}"
        )
        return self.get(account.id)

    def delete(self, account_id: int) -> None:
        account = self.get(account_id)
        self.session.delete(account)
        self.session.commit()
        logger.info(f"account_deleted: id={account_id} user_id={self.user_id}")


class TagPocketService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _base_query(self):
        return (
            select(TagPocket)
            .join(Account, TagPocket.account_id == Account.id)
            .options(selectinload(TagPocket.transactions))
            .where(Account.user_id == self.user_id)
        )

    def list_all(self) -> list[TagPocket]:
        return self.session.scalars(self._base_query().order_by(TagPocket.id)).all()

    def list_for_account(self, account_id: int) -> list[TagPocket]:
        owned = self.session.scalar(
            select(Account.id).where(
                Account.id == account_id, Account.user_id == self.user_id
            )
        )
        if not owned:
            raise NotFound("Cuenta no encontrada o no pertenece a tu usuario")
        return self.session.scalars(
            self._base_query()
            .where(TagPocket.account_id == account_id)
            .order_by(TagPocket.id)
        ).all()

    def get(self, tag_id: int) -> TagPocket:
        tag = self.session.scalar(self._base_query().where(TagPocket.id == tag_id))
        if not tag:
            raise NotFound("TagPocket no encontrado o no pertenece a tu usuario")
        return tag

    def create(self, data: TagPocketIn) -> TagPocket:
        if data.account_id is None or not data.name:
            raise ValidationFailed("Faltan accountId o name")
        account = self.session.get(Account, data.account_id)
        if not account or account.user_id != self.user_id:
            raise PermissionDenied("La cuenta no existe o no pertenece a tu usuario")
        tag = TagPocket(
            name=data.name, description=data.description, account_id=account.id
        )
        self.session.add(tag)
        self.session.commit()
        return self.get(tag.id)

    def update(self, tag_id: int, data: TagPocketUpdate) -> TagPocket:
        tag = self.get(tag_id)
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes:
            if not changes["name"]:
                raise ValidationFailed("Campo inválido: name")
            tag.name = changes["name"]
        if "description" in changes:
            tag.description = changes["description"]
        self.session.commit()
        self.session.refresh(tag)
        return tag

    def delete(self, tag_id: int) -> None:
        """Delete a pocket and reverse its transactions on the account balance."""
        tag = self.get(tag_id)
        try:
            account = _lock_account(self.session, tag.account_id)
            effect = sum(txn.signed_cents for txn in tag.transactions)
            balance = account.money_cents - effect
            if balance < 0:
                raise InsufficientFunds("La eliminación deja el saldo en negativo")
            account.money_cents = balance
            self.session.delete(tag)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"tag_deleted: id={tag_id} account_id={account.id} "
            f"balance_cents={balance}"
        )


def _lock_account(session: Session, account_id: int) -> Account:
    """Load an account row for a balance change, locking it where supported."""
    account = session.scalar(
        select(Account)
        .where(Account.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if not account:
        raise NotFound("Cuenta o tag no encontrada")
    return account


class TransactionService:
    """Ledger writes that keep every account balance non-negative.

    Each mutation changes the owning account's ``money_cents`` by exactly the
    signed delta of the ledger change, and both rows are written in a single
    database transaction.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _base_query(self):
        return (
            select(Transaction)
            .join(TagPocket, Transaction.tag_id == TagPocket.id)
            .join(Account, TagPocket.account_id == Account.id)
            .options(joinedload(Transaction.tag))
            .where(Account.user_id == self.user_id)
        )

    def _owned_tag(self, tag_id: int) -> TagPocket:
        tag = self.session.get(TagPocket, tag_id)
        owner_id = None
        if tag is not None:
            owner_id = self.session.scalar(
                select(Account.user_id).where(Account.id == tag.account_id)
            )
        if owner_id is None:
            raise NotFound("Cuenta o tag no encontrada")
        if owner_id != self.user_id:
            raise PermissionDenied("El tag no existe o no pertenece a tu cuenta")
        return tag

    def list_all(self) -> list[Transaction]:
        return self.session.scalars(
            self._base_query().order_by(
                Transaction.transaction_date.desc(), Transaction.id.desc()
            )
        ).all()

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            self._base_query().where(Transaction.id == transaction_id)
        )
        if not txn:
            raise NotFound("Transacción no encontrada")
        return txn

    def by_date(self, day: Optional[str]) -> list[Transaction]:
        start, end = day_bounds(parse_day(day, "Falta el parámetro 'date'"))
        return self.session.scalars(
            self._base_query()
            .where(
                Transaction.transaction_date >= start,
                Transaction.transaction_date < end,
            )
            .order_by(Transaction.transaction_date, Transaction.id)
        ).all()

    def by_type_and_date(
        self, day: Optional[str], kind: Optional[str]
    ) -> list[Transaction]:
        if not day or not kind:
            raise ValidationFailed("Faltan parámetros 'date' o 'type'")
        if kind not in ("income", "expense"):
            raise ValidationFailed("El parámetro 'type' debe ser 'income' o 'expense'")
        start, end = day_bounds(parse_day(day, "Falta el parámetro 'date'"))
        return self.session.scalars(
            self._base_query()
            .where(
                Transaction.is_income.is_(kind == "income"),
                Transaction.transaction_date >= start,
                Transaction.transaction_date < end,
            )
            .order_by(Transaction.transaction_date, Transaction.id)
        ).all()

    def create(self, data: TransactionIn) -> Transaction:
        tag = self._owned_tag(data.tag_id)
        txn = Transaction(
            amount_cents=amount_to_cents(data.amount),
            is_income=data.is_income,
            transaction_date=data.transaction_date,
            description=data.description,
            tag_id=tag.id,
        )
        if txn.amount_cents <= 0:
            raise ValidationFailed("Campo inválido: amount")
        try:
            account = _lock_account(self.session, tag.account_id)
            balance = account.money_cents + txn.signed_cents
            if balance < 0:
                raise InsufficientFunds("Dinero insuficiente en la cuenta")
            account.money_cents = balance
            self.session.add(txn)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"transaction_created: id={txn.id} account_id={account.id} "
            f"delta_cents={txn.signed_cents} balance_cents={balance}"
        )
        return self.get(txn.id)

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationFailed("No se enviaron campos para actualizar")
        _reject_nulls(changes, "amount", "is_income", "transaction_date", "tag_id")

        old_account_id = txn.tag.account_id
        old_effect = txn.signed_cents
        new_tag = self._owned_tag(changes["tag_id"]) if "tag_id" in changes else None

        try:
            if "amount" in changes:
                cents = amount_to_cents(changes["amount"])
                if cents <= 0:
                    raise ValidationFailed("Campo inválido: amount")
                txn.amount_cents = cents
            if "is_income" in changes:
                txn.is_income = changes["is_income"]
            if "transaction_date" in changes:
                txn.transaction_date = changes["transaction_date"]
            if "description" in changes:
                txn.description = changes["description"]
            new_account_id = old_account_id
            if new_tag is not None:
                txn.tag = new_tag
                new_account_id = new_tag.account_id
            new_effect = txn.signed_cents

            if new_account_id == old_account_id:
                account = _lock_account(self.session, old_account_id)
                balance = account.money_cents - old_effect + new_effect
                if balance < 0:
                    raise InsufficientFunds("Dinero insuficiente en la cuenta")
                account.money_cents = balance
            else:
                # Lock both rows in id order so concurrent moves cannot deadlock.
                first, second = sorted((old_account_id, new_account_id))
                accounts = {
                    first: _lock_account(self.session, first),
                    second: _lock_account(self.session, second),
                }
                old_balance = accounts[old_account_id].money_cents - old_effect
                balance = accounts[new_account_id].money_cents + new_effect
                if old_balance < 0 or balance < 0:
                    raise InsufficientFunds("Dinero insuficiente en la cuenta")
                accounts[old_account_id].money_cents = old_balance
                accounts[new_account_id].money_cents = balance
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"transaction_updated: id={txn.id} account_id={new_account_id} "
            f"old_account_id={old_account_id} "
            f"balance_cents={balance}"
        )
        self.session.expire(txn, ["tag"])
        return self.get(txn.id)

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        try:
            account = _lock_account(self.session, txn.tag.account_id)
            balance = account.money_cents - txn.signed_cents
            if balance < 0:
                raise InsufficientFunds("La eliminación deja el saldo en negativo")
            account.money_cents = balance
            self.session.delete(txn)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"transaction_deleted: id={transaction_id} account_id={account.id} "
            f"balance_cents={balance}"
        )


class GoalService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _owned_ids(self) -> tuple[list[int], list[int]]:
        account_ids = list(
            self.session.scalars(
                select(Account.id).where(Account.user_id == self.user_id)
            ).all()
        )
        tag_ids: list[int] = []
        if account_ids:
            tag_ids = list(
                self.session.scalars(
                    select(TagPocket.id).where(TagPocket.account_id.in_(account_ids))
                ).all()
            )
        return account_ids, tag_ids

    def _owned_goal_ids(self) -> list[int]:
        account_ids, tag_ids = self._owned_ids()
        conditions = []
        if account_ids:
            conditions.append(
                (GoalTarget.target_type == GoalTargetType.account)
                & GoalTarget.target_id.in_(account_ids)
            )
        if tag_ids:
            conditions.append(
                (GoalTarget.target_type == GoalTargetType.tag)
                & GoalTarget.target_id.in_(tag_ids)
            )
        if not conditions:
            return []
        return list(
            self.session.scalars(
                select(GoalTarget.goal_id).where(or_(*conditions)).distinct()
            ).all()
        )

    def _validate_target(self, target: Optional[GoalTargetIn]) -> GoalTarget:
        if target is None:
            raise ValidationFailed("Debe proporcionar un target (cuenta o tag)")
        if not target.target_type or not target.target_id:
            raise ValidationFailed("El target debe tener targetType y targetId")
        try:
            target_type = GoalTargetType(target.target_type)
        except ValueError as exc:
            raise ValidationFailed("targetType debe ser 'account' o 'tag'") from exc

        account_ids, tag_ids = self._owned_ids()
        owned = account_ids if target_type == GoalTargetType.account else tag_ids
        if target.target_id not in owned:
            raise NotFound("El objetivo de la meta no existe o no pertenece a tu usuario")
        return GoalTarget(target_type=target_type, target_id=target.target_id)

    def list_all(self) -> list[Goal]:
        goal_ids = self._owned_goal_ids()
        if not goal_ids:
            return []
        return self.session.scalars(
            select(Goal)
            .options(selectinload(Goal.targets))
            .where(Goal.id.in_(goal_ids))
            .order_by(Goal.id)
        ).all()

    def list_for_user(self, user_id: int) -> list[Goal]:
        if user_id != self.user_id:
            raise PermissionDenied("No puedes consultar metas de otro usuario")
        return self.list_all()

    def get(self, goal_id: int) -> Goal:
        if goal_id not in self._owned_goal_ids():
            raise NotFound("Meta no encontrada")
        goal = self.session.scalar(
            select(Goal).options(selectinload(Goal.targets)).where(Goal.id == goal_id)
        )
        if not goal:
            raise NotFound("Meta no encontrada")
        return goal

    def create(self, data: GoalIn) -> Goal:
        target = self._validate_target(data.target)
        if data.final_date < data.init_date:
            raise ValidationFailed("La fecha final debe ser posterior a la inicial")
        goal = Goal(
            description=data.description,
            init_date=data.init_date,
            final_date=data.final_date,
            max_money_cents=amount_to_cents(data.max_money),
            actual_progress_cents=amount_to_cents(data.actual_progress),
            targets=[target],
        )
        self.session.add(goal)
        self.session.commit()
        logger.info(
            f"goal_created: id={goal.id} target={target.target_type.value}:"
            f"{target.target_id}"
        )
        return self.get(goal.id)

    def update(self, goal_id: int, data: GoalUpdate) -> Goal:
        goal = self.get(goal_id)
        changes = data.model_dump(exclude_unset=True)
        _reject_nulls(
            changes,
            "description",
            "init_date",
            "final_date",
            "max_money",
            "actual_progress",
        )

        if "target" in changes:
            target = self._validate_target(data.target)
            goal.targets.clear()
            self.session.flush()
            goal.targets.append(target)
        if "description" in changes:
            goal.description = changes["description"]
        if "init_date" in changes:
            goal.init_date = changes["init_date"]
        if "final_date" in changes:
            goal.final_date = changes["final_date"]
        if "max_money" in changes:
            goal.max_money_cents = amount_to_cents(changes["max_money"])
        if "actual_progress" in changes:
            goal.actual_progress_cents = amount_to_cents(changes["actual_progress"])
        if goal.final_date < goal.init_date:
            self.session.rollback()
            raise ValidationFailed("La fecha final debe ser posterior a la inicial")

        self.session.commit()
        return self.get(goal.id)

    def update_progress(self, goal_id: int, data: GoalProgressIn) -> Goal:
        if data.actual_progress is None:
            raise ValidationFailed("Falta actual_progress")
        goal = self.get(goal_id)
        goal.actual_progress_cents = amount_to_cents(data.actual_progress)
        self.session.commit()
        return self.get(goal.id)

    def delete(self, goal_id: int) -> None:
        goal = self.get(goal_id)
        self.session.delete(goal)
        self.session.commit()
        logger.info(f"goal_deleted: id={goal_id}")


@dataclass
class PasswordResetStats:
    total_resets: int
    by_user: list[tuple[int, int]]


@dataclass
class OverviewStats:
    transactions_count: int
    total_users: int
    admin_count: int
    start: datetime
    end: datetime


class AdminService:
    def __init__(self, session: Session, actor_id: Optional[int] = None) -> None:
        self.session = session
        self.actor_id = actor_id

    def login_logs(self, user_id: Optional[int] = None) -> list[UserSession]:
        stmt = select(UserSession).order_by(
            UserSession.created_at.desc(), UserSession.id.desc()
        )
        if user_id:
            stmt = stmt.where(UserSession.user_id == user_id)
        return self.session.scalars(stmt).all()

    def list_users(self) -> list[User]:
        return self.session.scalars(
            select(User).options(joinedload(User.role)).order_by(User.id)
        ).all()

    def _get_user(self, user_id: int) -> User:
        user = self.session.scalar(
            select(User).options(joinedload(User.role)).where(User.id == user_id)
        )
        if not user:
            raise NotFound("Usuario no encontrado")
        return user

    def _soft_delete(self, user: User) -> None:
        user.is_deleted = True
        self.session.execute(
            update(UserSession)
            .where(UserSession.user_id == user.id)
            .values(revoke=True)
        )
        self.session.commit()

    def soft_delete_user(self, user_id: int) -> None:
        user = self._get_user(user_id)
        self._soft_delete(user)
        logger.info(f"user_deleted: user_id={user_id} source=admin actor={self.actor_id}")

    def password_reset_stats(self) -> PasswordResetStats:
        total = self.session.scalar(select(func.count(PasswordReset.id))) or 0
        rows = self.session.execute(
            select(PasswordReset.user_id, func.count(PasswordReset.id))
            .group_by(PasswordReset.user_id)
            .order_by(PasswordReset.user_id)
        ).all()
        return PasswordResetStats(
            total_resets=int(total),
            by_user=[(int(user_id), int(count)) for user_id, count in rows],
        )

    def overview(self, start_raw: Optional[str], end_raw: Optional[str]) -> OverviewStats:
        if not start_raw or not end_raw:
            raise ValidationFailed("Parámetros 'from' y 'to' son requeridos")
        try:
            start = parse_instant(start_raw)
            end = parse_instant(end_raw)
        except ValueError as exc:
            raise ValidationFailed("Parámetros de fecha inválidos") from exc

        transactions_count = self.session.scalar(
            select(func.count(Transaction.id)).where(
                Transaction.transaction_date >= start,
                Transaction.transaction_date <= end,
            )
        )
        total_users = self.session.scalar(select(func.count(User.id)))
        admin_count = self.session.scalar(
            select(func.count(User.id))
            .join(Role, User.role_id == Role.id)
            .where(Role.name.in_([RoleName.admin, RoleName.super_admin]))
        )
        return OverviewStats(
            transactions_count=int(transactions_count or 0),
            total_users=int(total_users or 0),
            admin_count=int(admin_count or 0),
            start=start,
            end=end,
        )

    def create_admin(self, data: AdminCreateIn) -> User:
        email = _normalize_email(data.email)
        if not email or not data.password:
            raise ValidationFailed("Email y contraseña son requeridos")
        auth = AuthService(self.session)
        auth._validate_new_user(email, data.password, data.nickname or None)

        role = get_or_create_role(self.session, RoleName.admin)
        user = User(
            email=email,
            password_hash=hash_password(data.password),
            nickname=data.nickname or None,
            role=role,
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"admin_created: user_id={user.id} actor={self.actor_id}")
        return user

    def delete_admin(self, user_id: int) -> None:
        user = self._get_user(user_id)
        if user.role_name != RoleName.admin:
            raise ValidationFailed(
                "Solo se pueden eliminar cuentas con rol administrador"
            )
        self._soft_delete(user)
        logger.info(f"admin_deleted: user_id={user_id} actor={self.actor_id}")


class ChatService:
    def __init__(self, session: Session, user_id: int, assistant: Assistant) -> None:
        self.session = session
        self.user_id = user_id
        self.assistant = assistant

    def _owned_account(self, account_id: Optional[int]) -> Account:
        if account_id is None:
            raise NotFound("Account not found")
        account = self.session.scalar(
            select(Account)
            .options(
                joinedload(Account.category),
                selectinload(Account.tags).selectinload(TagPocket.transactions),
                selectinload(Account.chat).selectinload(Chat.messages),
            )
            .where(Account.id == account_id, Account.user_id == self.user_id)
        )
        if not account:
            raise NotFound("Account not found")
        return account

    def ask(self, data: ChatIn) -> str:
        question = (data.question or "").strip()
        if not question:
            raise ValidationFailed("Question is required")
        account = self._owned_account(data.account_id)

        context = build_account_context(account)
        answer = self.assistant.ask(context, question)

        chat = account.chat
        if chat is None:
            chat = Chat(account_id=account.id)
            self.session.add(chat)
        chat.messages.append(Message(message_send=question, answers_message=answer))
        self.session.commit()
        logger.info(f"chat_answered: account_id={account.id} chat_id={chat.id}")
        return answer

    def history(self, account_id: Optional[int]) -> tuple[Optional[int], list[Message]]:
        account = self._owned_account(account_id)
        if account.chat is None:
            return None, []
        return account.chat.id, list(account.chat.messages)
