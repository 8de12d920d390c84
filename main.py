import hashlib
import logging
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from assistant import GeminiAssistant
from auth import (
    ADMIN_COOKIE,
    USER_COOKIE,
    Identity,
    current_admin,
    current_super_admin,
    current_user,
)
from config import get_settings
from database import Base, SessionLocal, dispose_engine, init_engine
from errors import ErrorKind, FinanceError
from mailer import Mailer
from models import (
    Account,
    Category,
    Goal,
    Message,
    TagPocket,
    Transaction,
    User,
    UserSession,
)
from scheduler import SchedulerManager
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
from security import SESSION_COOKIE_MAX_AGE
from services import (
    AccountService,
    AdminService,
    AuthService,
    CategoryService,
    ChatService,
    DeviceInfo,
    GoalService,
    TagPocketService,
    TransactionService,
)


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()

app = FastAPI(title="Finance Manager Backend API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_mailer() -> Mailer:
    return Mailer()


def get_assistant() -> GeminiAssistant:
    return GeminiAssistant()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    engine = init_engine()
    if settings.create_schema:
        Base.metadata.create_all(engine)
    if settings.scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()
    dispose_engine()


# Error handling


def _error(status_code: int, kind: ErrorKind, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"kind": kind.value, "message": message}
    )


@app.exception_handler(FinanceError)
def finance_error_handler(_request: Request, exc: FinanceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
def validation_error_handler(_request: Request, exc: RequestValidationError):
    missing: list[str] = []
    invalid: list[str] = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        if loc and loc[0] in ("body", "query", "path", "cookie", "header"):
            loc = loc[1:]
        field = ".".join(loc) or "body"
        if err.get("type") == "missing":
            missing.append(field)
        elif err.get("type") == "json_invalid":
            return _error(400, ErrorKind.validation, "Cuerpo de la petición inválido")
        else:
            invalid.append(field)
    if missing:
        message = f"Faltan campos requeridos: {', '.join(missing)}"
    else:
        message = f"Campo inválido: {', '.join(invalid)}"
    return _error(400, ErrorKind.validation, message)


_HTTP_KINDS = {
    401: ErrorKind.unauthenticated,
    403: ErrorKind.forbidden,
    404: ErrorKind.not_found,
    409: ErrorKind.conflict,
}


@app.exception_handler(StarletteHTTPException)
def http_error_handler(_request: Request, exc: StarletteHTTPException):
    kind = _HTTP_KINDS.get(exc.status_code)
    if kind is None:
        kind = ErrorKind.validation if exc.status_code < 500 else ErrorKind.internal
    return _error(exc.status_code, kind, str(exc.detail))


@app.exception_handler(Exception)
def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}")
    return _error(500, ErrorKind.internal, "Inténtalo de nuevo más tarde")


# Serialization


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat(timespec="milliseconds") + "Z"


def user_payload(user: User, *, include_role: bool = False) -> dict:
    data = {"id": user.id, "email": user.email, "nickname": user.nickname}
    if include_role:
        data["role"] = user.role_name.value
    return data


def profile_payload(user: User) -> dict:
    data = user_payload(user, include_role=True)
    data["createdAt"] = _iso(user.created_at)
    data["updatedAt"] = _iso(user.updated_at)
    return data


def category_payload(category: Category) -> dict:
    return {"id": category.id, "tipo": category.tipo}


def transaction_payload(txn: Transaction, *, include_tag: bool = False) -> dict:
    data = {
        "id": txn.id,
        "amount": txn.amount,
        "isIncome": txn.is_income,
        "transactionDate": _iso(txn.transaction_date),
        "description": txn.description,
        "tagId": txn.tag_id,
    }
    if include_tag and txn.tag is not None:
        data["tag"] = {
            "id": txn.tag.id,
            "name": txn.tag.name,
            "description": txn.tag.description,
            "accountId": txn.tag.account_id,
        }
    return data


def tag_payload(tag: TagPocket, *, include_transactions: bool = True) -> dict:
    data = {
        "id": tag.id,
        "name": tag.name,
        "description": tag.description,
        "accountId": tag.account_id,
    }
    if include_transactions:
        data["transactions"] = [transaction_payload(t) for t in tag.transactions]
    return data


def account_payload(account: Account) -> dict:
    return {
        "id": account.id,
        "name": account.name,
        "description": account.description,
        "money": account.money,
        "userId": account.user_id,
        "categoryId": account.category_id,
        "category": category_payload(account.category) if account.category else None,
        "tags": [tag_payload(t, include_transactions=False) for t in account.tags],
    }


def goal_payload(goal: Goal) -> dict:
    return {
        "id": goal.id,
        "description": goal.description,
        "init_date": _iso(goal.init_date),
        "final_date": _iso(goal.final_date),
        "max_money": goal.max_money,
        "actual_progress": goal.actual_progress,
        "target": [
            {
                "id": target.id,
                "goalId": target.goal_id,
                "targetType": target.target_type.value,
                "targetId": target.target_id,
            }
            for target in goal.targets
        ],
    }


def session_payload(record: UserSession) -> dict:
    return {
        "id": record.id,
        "userId": record.user_id,
        "deviceId": record.device_id,
        "userAgent": record.user_agent,
        "ip": record.ip,
        "createdAt": _iso(record.created_at),
        "lastUsedAt": _iso(record.last_used_at),
        "expiresAt": _iso(record.expires_at),
        "revoke": record.revoke,
    }


def message_payload(message: Message) -> dict:
    return {
        "id": message.id,
        "message_send": message.message_send,
        "answers_message": message.answers_message,
    }


# Cookies and devices


def _set_auth_cookie(response: Response, key: str, token: str) -> None:
    response.set_cookie(
        key=key,
        value=token,
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
        max_age=SESSION_COOKIE_MAX_AGE,
        path="/",
    )


def _clear_auth_cookie(response: Response, key: str) -> None:
    response.delete_cookie(
        key=key,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
    )


def device_from_request(request: Request) -> DeviceInfo:
    user_agent = request.headers.get("user-agent")
    ip = request.client.host if request.client else None
    device_id = request.headers.get("x-device-id")
    if not device_id:
        fingerprint = f"{user_agent or ''}|{ip or ''}".encode("utf-8")
        device_id = hashlib.sha256(fingerprint).hexdigest()[:32]
    return DeviceInfo(device_id=device_id[:128], user_agent=user_agent, ip=ip)


# Service


@app.get("/")
def root():
    return {"message": "Finance Manager Backend API"}


@app.get("/health")
def health():
    return {"status": "ok", "message": "Server is running"}


# Auth


@app.post("/api/auth/signup", status_code=201)
def signup(data: SignupIn, db: Session = Depends(get_db)):
    user, token = AuthService(db).signup(data)
    return {
        "message": "Usuario registrado exitosamente",
        "token": token,
        "user": user_payload(user),
    }


@app.post("/api/auth/login")
def login(
    data: LoginIn, request: Request, response: Response, db: Session = Depends(get_db)
):
    user, token = AuthService(db).login(data, device_from_request(request))
    _set_auth_cookie(response, USER_COOKIE, token)
    return {"message": "Inicio de sesión exitoso", "user": user_payload(user)}


@app.post("/api/auth/admin/login")
def admin_login(
    data: LoginIn, request: Request, response: Response, db: Session = Depends(get_db)
):
    user, token = AuthService(db).admin_login(data, device_from_request(request))
    _set_auth_cookie(response, ADMIN_COOKIE, token)
    return {
        "message": "Inicio de sesión de administrador exitoso",
        "user": user_payload(user, include_role=True),
    }


@app.post("/api/auth/logout")
def logout(response: Response, identity: Identity = Depends(current_user)):
    _clear_auth_cookie(response, USER_COOKIE)
    logger.info(f"logout: user_id={identity.user_id}")
    return {"message": "Sesión cerrada exitosamente"}


@app.post("/api/auth/admin/logout")
def admin_logout(response: Response, identity: Identity = Depends(current_admin)):
    _clear_auth_cookie(response, ADMIN_COOKIE)
    logger.info(f"admin_logout: user_id={identity.user_id}")
    return {"message": "Sesión cerrada exitosamente"}


@app.get("/api/auth/profile")
def get_profile(
    identity: Identity = Depends(current_user), db: Session = Depends(get_db)
):
    user = AuthService(db).get_profile(identity.user_id)
    return {"user": profile_payload(user)}


@app.put("/api/auth/profile")
def update_profile(
    data: ProfileUpdate,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    user = AuthService(db).update_profile(identity.user_id, data)
    return {"message": "Perfil actualizado", "user": profile_payload(user)}


@app.post("/api/auth/change-password")
def change_password(
    data: ChangePasswordIn,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    AuthService(db).change_password(identity.user_id, data)
    return {"message": "Contraseña actualizada"}


@app.delete("/api/auth/account")
def delete_own_account(
    response: Response,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    AuthService(db).delete_account(identity.user_id)
    _clear_auth_cookie(response, USER_COOKIE)
    return {"message": "Cuenta de usuario eliminada"}


@app.post("/api/auth/recover", status_code=202)
def recover_password(
    data: RecoverIn,
    db: Session = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
):
    AuthService(db).request_password_reset(data, mailer)
    return {"message": "Si el correo es válido recibirá instrucciones"}


@app.post("/api/auth/reset/{token}")
def reset_password(token: str, data: ResetPasswordIn, db: Session = Depends(get_db)):
    AuthService(db).reset_password(token, data)
    return {"message": "Contraseña actualizada"}


# Accounts


@app.post("/api/account", status_code=201)
def create_account(
    data: AccountIn,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    account = AccountService(db, identity.user_id).create(data)
    return {"message": "Cuenta creada exitosamente", "account": account_payload(account)}


@app.get("/api/account")
def list_accounts(
    identity: Identity = Depends(current_user), db: Session = Depends(get_db)
):
    accounts = AccountService(db, identity.user_id).list_all()
    return [account_payload(a) for a in accounts]


@app.get("/api/account/{user_id}")
def list_accounts_for_user(
    user_id: int,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    accounts = AccountService(db, identity.user_id).list_for_user(user_id)
    return [account_payload(a) for a in accounts]


@app.put("/api/account/{account_id}")
def update_account(
    account_id: int,
    data: AccountUpdate,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    account = AccountService(db, identity.user_id).update(account_id, data)
    return {"message": "Cuenta actualizada", "account": account_payload(account)}


@app.delete("/api/account/{account_id}")
def delete_account(
    account_id: int,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    AccountService(db, identity.user_id).delete(account_id)
    return {"message": "Cuenta eliminada"}


# Categories


@app.post("/api/category", status_code=201)
def create_category(
    data: CategoryIn,
    _identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    category = CategoryService(db).create(data)
    return {
        "message": "Categoría creada exitosamente",
        "category": category_payload(category),
    }


@app.get("/api/category")
def list_categories(
    _identity: Identity = Depends(current_user), db: Session = Depends(get_db)
):
    return [category_payload(c) for c in CategoryService(db).list_all()]


@app.get("/api/category/{category_id}")
def get_category(
    category_id: int,
    _identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    return category_payload(CategoryService(db).get(category_id))


@app.put("/api/category/{category_id}")
def update_category(
    category_id: int,
    data: CategoryUpdate,
    _identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    category = CategoryService(db).update(category_id, data)
    return {"message": "Categoría actualizada", "category": category_payload(category)}


@app.delete("/api/category/{category_id}")
def delete_category(
    category_id: int,
    _identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    CategoryService(db).delete(category_id)
    return {"message": "Categoría eliminada correctamente"}


# Tag pockets


@app.post("/api/tag", status_code=201)
def create_tag(
    data: TagPocketIn,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    tag = TagPocketService(db, identity.user_id).create(data)
    return {"message": "TagPocket creado", "tag": tag_payload(tag)}


@app.get("/api/tag")
def list_tags(identity: Identity = Depends(current_user), db: Session = Depends(get_db)):
    return [tag_payload(t) for t in TagPocketService(db, identity.user_id).list_all()]


@app.get("/api/tag/{account_id}")
def list_tags_for_account(
    account_id: int,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    tags = TagPocketService(db, identity.user_id).list_for_account(account_id)
    return [tag_payload(t) for t in tags]


@app.put("/api/tag/{tag_id}")
def update_tag(
    tag_id: int,
    data: TagPocketUpdate,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    tag = TagPocketService(db, identity.user_id).update(tag_id, data)
    return {"message": "TagPocket actualizado", "tag": tag_payload(tag)}


@app.delete("/api/tag/{tag_id}")
def delete_tag(
    tag_id: int,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    TagPocketService(db, identity.user_id).delete(tag_id)
    return {"message": "TagPocket eliminado"}


# Transactions


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, identity.user_id).create(data)
    return {"message": "Transacción creada", "transaction": transaction_payload(txn)}


@app.get("/api/transactions")
def list_transactions(
    identity: Identity = Depends(current_user), db: Session = Depends(get_db)
):
    txns = TransactionService(db, identity.user_id).list_all()
    return [transaction_payload(t, include_tag=True) for t in txns]


@app.get("/api/transactions/byDate")
def transactions_by_date(
    date: Optional[str] = Query(None),
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    txns = TransactionService(db, identity.user_id).by_date(date)
    return [transaction_payload(t, include_tag=True) for t in txns]


@app.get("/api/transactions/byTypeDate")
def transactions_by_type_and_date(
    date: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    txns = TransactionService(db, identity.user_id).by_type_and_date(date, type)
    return [transaction_payload(t, include_tag=True) for t in txns]


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, identity.user_id).get(transaction_id)
    return transaction_payload(txn, include_tag=True)


@app.put("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, identity.user_id).update(transaction_id, data)
    return {
        "message": "Transacción actualizada correctamente",
        "transaction": transaction_payload(txn),
    }


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    TransactionService(db, identity.user_id).delete(transaction_id)
    return {"message": "Transacción eliminada"}


# Goals


@app.post("/api/goal", status_code=201)
def create_goal(
    data: GoalIn,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    goal = GoalService(db, identity.user_id).create(data)
    return {"message": "Meta creada exitosamente", "goal": goal_payload(goal)}


@app.get("/api/goal")
def list_goals(identity: Identity = Depends(current_user), db: Session = Depends(get_db)):
    return [goal_payload(g) for g in GoalService(db, identity.user_id).list_all()]


@app.get("/api/goal/user/{user_id}")
def list_goals_for_user(
    user_id: int,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    goals = GoalService(db, identity.user_id).list_for_user(user_id)
    return [goal_payload(g) for g in goals]


@app.get("/api/goal/{goal_id}")
def get_goal(
    goal_id: int,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    return goal_payload(GoalService(db, identity.user_id).get(goal_id))


@app.put("/api/goal/{goal_id}")
def update_goal(
    goal_id: int,
    data: GoalUpdate,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    goal = GoalService(db, identity.user_id).update(goal_id, data)
    return {"message": "Meta actualizada", "goal": goal_payload(goal)}


@app.patch("/api/goal/{goal_id}/progress")
def update_goal_progress(
    goal_id: int,
    data: GoalProgressIn,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    goal = GoalService(db, identity.user_id).update_progress(goal_id, data)
    return {"message": "Progreso actualizado", "goal": goal_payload(goal)}


@app.delete("/api/goal/{goal_id}")
def delete_goal(
    goal_id: int,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
):
    GoalService(db, identity.user_id).delete(goal_id)
    return {"message": "Meta eliminada"}


# Admin


@app.get("/api/admin/logs/login")
def admin_login_logs(
    userId: Optional[str] = Query(None),
    identity: Identity = Depends(current_admin),
    db: Session = Depends(get_db),
):
    user_id = int(userId) if userId and userId.strip().isdigit() else None
    logs = AdminService(db, identity.user_id).login_logs(user_id)
    return {"logs": [session_payload(r) for r in logs]}


@app.get("/api/admin/users")
def admin_list_users(
    identity: Identity = Depends(current_admin), db: Session = Depends(get_db)
):
    users = AdminService(db, identity.user_id).list_users()
    return {
        "users": [
            {
                "id": u.id,
                "email": u.email,
                "nickname": u.nickname,
                "createdAt": _iso(u.created_at),
                "isDeleted": u.is_deleted,
                "role": {"name": u.role_name.value},
            }
            for u in users
        ]
    }


@app.delete("/api/admin/users/{user_id}")
def admin_delete_user(
    user_id: int,
    identity: Identity = Depends(current_admin),
    db: Session = Depends(get_db),
):
    AdminService(db, identity.user_id).soft_delete_user(user_id)
    return {"message": "Usuario eliminado correctamente"}


@app.get("/api/admin/stats/password-resets")
def admin_password_reset_stats(
    identity: Identity = Depends(current_admin), db: Session = Depends(get_db)
):
    stats = AdminService(db, identity.user_id).password_reset_stats()
    return {
        "totalResets": stats.total_resets,
        "byUser": [
            {"userId": user_id, "resetCount": count}
            for user_id, count in stats.by_user
        ],
    }


@app.get("/api/admin/stats/overview")
def admin_overview_stats(
    start: Optional[str] = Query(None, alias="from"),
    end: Optional[str] = Query(None, alias="to"),
    identity: Identity = Depends(current_admin),
    db: Session = Depends(get_db),
):
    stats = AdminService(db, identity.user_id).overview(start, end)
    return {
        "transactionsCount": stats.transactions_count,
        "totalUsers": stats.total_users,
        "adminCount": stats.admin_count,
        "from": _iso(stats.start),
        "to": _iso(stats.end),
    }


@app.post("/api/admin/admins", status_code=201)
def admin_create_admin(
    data: AdminCreateIn,
    identity: Identity = Depends(current_super_admin),
    db: Session = Depends(get_db),
):
    user = AdminService(db, identity.user_id).create_admin(data)
    return {
        "message": "Administrador creado exitosamente",
        "user": user_payload(user, include_role=True),
    }


@app.delete("/api/admin/admins/{user_id}")
def admin_delete_admin(
    user_id: int,
    identity: Identity = Depends(current_super_admin),
    db: Session = Depends(get_db),
):
    AdminService(db, identity.user_id).delete_admin(user_id)
    return {"message": "Administrador eliminado correctamente"}


# Chat


@app.post("/api/chat")
def ask_assistant(
    data: ChatIn,
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
    assistant: GeminiAssistant = Depends(get_assistant),
):
    answer = ChatService(db, identity.user_id, assistant).ask(data)
    return {"answer": answer}


@app.get("/api/chat")
def chat_history(
    accountId: Optional[int] = Query(None),
    identity: Identity = Depends(current_user),
    db: Session = Depends(get_db),
    assistant: GeminiAssistant = Depends(get_assistant),
):
    chat_id, messages = ChatService(db, identity.user_id, assistant).history(accountId)
    return {"chatId": chat_id, "messages": [message_payload(m) for m in messages]}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
