from datetime import datetime

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker

from database import Base
from errors import InsufficientFunds, NotFound, PermissionDenied, ValidationFailed
from models import Account, Category, TagPocket, Transaction, User
from schemas import TransactionIn, TransactionUpdate
from services import TagPocketService, TransactionService


def make_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


def seed_account(session: Session, money_cents: int = 0, email: str = "ana@example.com"):
    user = User(email=email, password_hash="x")
    category = Category(tipo="Ahorros")
    session.add_all([user, category])
    session.flush()
    account = Account(
        name="Principal",
        money_cents=money_cents,
        user_id=user.id,
        category_id=category.id,
    )
    session.add(account)
    session.flush()
    tag = TagPocket(name="Comida", account_id=account.id)
    session.add(tag)
    session.commit()
    return user, account, tag


def txn_in(tag_id: int, amount, is_income: bool, day: int = 1) -> TransactionIn:
    return TransactionIn(
        amount=amount,
        is_income=is_income,
        transaction_date=datetime(2025, 1, day, 12, 0),
        description="test",
        tag_id=tag_id,
    )


def balance(session: Session, account_id: int) -> int:
    return session.scalar(
        select(Account.money_cents).where(Account.id == account_id)
    )


def count_transactions(session: Session) -> int:
    return session.scalar(select(func.count(Transaction.id)))


def test_income_increases_account_balance() -> None:
    session = make_session()
    user, account, tag = seed_account(session)

    txn = TransactionService(session, user.id).create(txn_in(tag.id, 100, True))

    assert txn.amount_cents == 10000
    assert balance(session, account.id) == 10000


def test_expense_beyond_balance_is_rejected_without_persisting() -> None:
    session = make_session()
    user, account, tag = seed_account(session, money_cents=5000)

    with pytest.raises(InsufficientFunds) as exc:
        TransactionService(session, user.id).create(txn_in(tag.id, 100, False))

    assert exc.value.status_code == 409
    assert exc.value.message == "Dinero insuficiente en la cuenta"
    assert balance(session, account.id) == 5000
    assert count_transactions(session) == 0


def test_expense_down_to_exactly_zero_is_allowed() -> None:
    session = make_session()
    user, account, tag = seed_account(session, money_cents=5000)

    TransactionService(session, user.id).create(txn_in(tag.id, "50.00", False))

    assert balance(session, account.id) == 0


def test_deleting_income_subtracts_and_deleting_expense_adds() -> None:
    session = make_session()
    user, account, tag = seed_account(session, money_cents=20000)
    service = TransactionService(session, user.id)

    income = service.create(txn_in(tag.id, 100, True))
    expense = service.create(txn_in(tag.id, 100, False))
    assert balance(session, account.id) == 20000

    service.delete(income.id)
    assert balance(session, account.id) == 10000

    service.delete(expense.id)
    assert balance(session, account.id) == 20000
    assert count_transactions(session) == 0


def test_delete_that_would_overdraw_is_rejected() -> None:
    session = make_session()
    user, account, tag = seed_account(session)
    service = TransactionService(session, user.id)

    income = service.create(txn_in(tag.id, 100, True))
    service.create(txn_in(tag.id, 80, False))

    with pytest.raises(InsufficientFunds) as exc:
        service.delete(income.id)

    assert exc.value.message == "La eliminación deja el saldo en negativo"
    assert balance(session, account.id) == 2000
    assert count_transactions(session) == 2


def test_update_reverses_previous_version_then_applies_new() -> None:
    session = make_session()
    user, account, tag = seed_account(session, money_cents=6000)
    service = TransactionService(session, user.id)

    txn = service.create(txn_in(tag.id, 100, True))
    updated = service.update(txn.id, TransactionUpdate(amount=30))

    assert updated.amount_cents == 3000
    assert balance(session, account.id) == 9000

    service.update(txn.id, TransactionUpdate(is_income=False))
    assert balance(session, account.id) == 3000


def test_flipping_income_to_expense_beyond_balance_is_rejected() -> None:
    session = make_session()
    user, account, tag = seed_account(session)
    service = TransactionService(session, user.id)
    txn = service.create(txn_in(tag.id, 30, True))

    with pytest.raises(InsufficientFunds):
        service.update(txn.id, TransactionUpdate(is_income=False))

    assert service.get(txn.id).is_income is True
    assert balance(session, account.id) == 3000


def test_rejected_update_leaves_ledger_and_balance_untouched() -> None:
    session = make_session()
    user, account, tag = seed_account(session)
    service = TransactionService(session, user.id)

    service.create(txn_in(tag.id, 100, True))
    expense = service.create(txn_in(tag.id, 60, False))

    with pytest.raises(InsufficientFunds):
        service.update(expense.id, TransactionUpdate(amount=150))

    assert service.get(expense.id).amount_cents == 6000
    assert balance(session, account.id) == 4000


def test_update_moving_to_another_account_rebalances_both() -> None:
    session = make_session()
    user, account, tag = seed_account(session)
    other = Account(
        name="Viajes", money_cents=0, user_id=user.id, category_id=account.category_id
    )
    session.add(other)
    session.flush()
    other_tag = TagPocket(name="Hotel", account_id=other.id)
    session.add(other_tag)
    session.commit()
    service = TransactionService(session, user.id)

    txn = service.create(txn_in(tag.id, 100, True))
    moved = service.update(txn.id, TransactionUpdate(tag_id=other_tag.id))

    assert moved.tag_id == other_tag.id
    assert balance(session, account.id) == 0
    assert balance(session, other.id) == 10000


def test_update_without_fields_is_rejected() -> None:
    session = make_session()
    user, _account, tag = seed_account(session)
    service = TransactionService(session, user.id)
    txn = service.create(txn_in(tag.id, 10, True))

    with pytest.raises(ValidationFailed) as exc:
        service.update(txn.id, TransactionUpdate())

    assert exc.value.message == "No se enviaron campos para actualizar"


def test_tag_of_another_user_is_forbidden() -> None:
    session = make_session()
    _owner, account, tag = seed_account(session)
    intruder = User(email="eve@example.com", password_hash="x")
    session.add(intruder)
    session.commit()

    with pytest.raises(PermissionDenied):
        TransactionService(session, intruder.id).create(txn_in(tag.id, 10, True))

    assert balance(session, account.id) == 0


def test_unknown_tag_is_not_found() -> None:
    session = make_session()
    user, account, tag = seed_account(session)
    service = TransactionService(session, user.id)

    with pytest.raises(NotFound) as exc:
        service.create(txn_in(999, 10, True))
    assert exc.value.status_code == 404
    assert exc.value.message == "Cuenta o tag no encontrada"

    txn = service.create(txn_in(tag.id, 10, True))
    with pytest.raises(NotFound):
        service.update(txn.id, TransactionUpdate(tag_id=999))

    assert service.get(txn.id).tag_id == tag.id
    assert balance(session, account.id) == 1000


def test_unknown_transaction_is_not_found() -> None:
    session = make_session()
    user, _account, _tag = seed_account(session)
    service = TransactionService(session, user.id)

    with pytest.raises(NotFound) as exc:
        service.update(999, TransactionUpdate(amount=5))
    assert exc.value.message == "Transacción no encontrada"

    with pytest.raises(NotFound):
        service.delete(999)


def test_date_filter_rejects_trailing_garbage() -> None:
    session = make_session()
    user, _account, _tag = seed_account(session)
    service = TransactionService(session, user.id)

    with pytest.raises(ValidationFailed) as exc:
        service.by_date("2025-01-01garbage")
    assert exc.value.message == "Fecha inválida: 2025-01-01garbage"

    assert service.by_date("2025-01-01T00:00:00Z") == []


def test_by_type_and_date_filters_one_day() -> None:
    session = make_session()
    user, _account, tag = seed_account(session, money_cents=100000)
    service = TransactionService(session, user.id)
    service.create(txn_in(tag.id, 10, True, day=1))
    service.create(txn_in(tag.id, 20, False, day=1))
    service.create(txn_in(tag.id, 30, True, day=2))

    same_day = service.by_date("2025-01-01")
    incomes = service.by_type_and_date("2025-01-01", "income")

    assert sorted(t.amount_cents for t in same_day) == [1000, 2000]
    assert [t.amount_cents for t in incomes] == [1000]

    with pytest.raises(ValidationFailed) as exc:
        service.by_type_and_date("2025-01-01", "transfer")
    assert exc.value.message == "El parámetro 'type' debe ser 'income' o 'expense'"

    with pytest.raises(ValidationFailed) as exc:
        service.by_date(None)
    assert exc.value.message == "Falta el parámetro 'date'"


def test_deleting_tag_reverses_its_transactions() -> None:
    session = make_session()
    user, account, tag = seed_account(session, money_cents=1000)
    TransactionService(session, user.id).create(txn_in(tag.id, 50, True))
    assert balance(session, account.id) == 6000

    TagPocketService(session, user.id).delete(tag.id)

    assert balance(session, account.id) == 1000
    assert count_transactions(session) == 0


def test_deleting_tag_that_would_overdraw_is_rejected() -> None:
    session = make_session()
    user, account, tag = seed_account(session)
    spare = TagPocket(name="Extra", account_id=account.id)
    session.add(spare)
    session.commit()
    service = TransactionService(session, user.id)
    service.create(txn_in(tag.id, 100, True))
    service.create(txn_in(spare.id, 70, False))

    with pytest.raises(InsufficientFunds):
        TagPocketService(session, user.id).delete(tag.id)

    assert balance(session, account.id) == 3000
    assert count_transactions(session) == 2
