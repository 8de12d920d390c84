import logging
from datetime import datetime
from typing import Optional

import google.generativeai as genai

from config import get_settings
from errors import AssistantError
from models import Account
from money import format_amount


logger = logging.getLogger(__name__)

CONTEXT_HEADER = """Eres un asistente financiero.
Analiza la siguiente información y responde claramente.
"""

CONTEXT_RULES = """Reglas:
- No inventes datos
- Usa solo la información dada
- Sé claro y educativo
"""


def _iso(value: datetime) -> str:
    return value.isoformat(timespec="milliseconds") + "Z"


def build_account_context(account: Account) -> str:
    """Summarise an account and its tag pockets as plain text for the model.

    Every tag lists its signed balance and each of its transactions in date
    order; nothing outside the account is included.
    """
    lines = [
        CONTEXT_HEADER,
        "Cuenta:",
        f"- Nombre: {account.name or ''}",
        f"- Dinero disponible: {format_amount(account.money_cents)}",
        f"- Categoría: {account.category.tipo if account.category else 'N/A'}",
        "",
        "Distribución por tags:",
    ]
    for tag in account.tags:
        balance = sum(txn.signed_cents for txn in tag.transactions)
        lines.extend(
            [
                "",
                f"Tag: {tag.name}",
                f"Descripción: {tag.description or 'N/A'}",
                f"Balance: {format_amount(balance)}",
                "Transacciones:",
            ]
        )
        for txn in sorted(tag.transactions, key=lambda t: (t.transaction_date, t.id)):
            kind = "Ingreso" if txn.is_income else "Gasto"
            lines.append(
                f"- {_iso(txn.transaction_date)} | {kind} | "
                f"{format_amount(txn.amount_cents)} | {txn.description or ''}"
            )
    lines.extend(["", CONTEXT_RULES])
    return "\n".join(lines)


def build_prompt(context: str, question: str) -> str:
    return f"{context}\n\nPregunta: {question}"


class GeminiAssistant:
    def __init__(
        self, api_key: Optional[str] = None, model_name: Optional[str] = None
    ) -> None:
        settings = get_settings()
        self.api_key = api_key or settings.gemini_api_key
        self.model_name = model_name or settings.gemini_model
        self._model = None

    def _configure_genai(self):
        if not self.api_key:
            raise AssistantError("El asistente no está configurado")
        genai.configure(api_key=self.api_key)
        self._model = genai.GenerativeModel(model_name=self.model_name)
        return self._model

    def ask(self, context: str, question: str) -> str:
        model = self._model or self._configure_genai()
        try:
            response = model.generate_content(build_prompt(context, question))
            text = response.text
        except Exception as exc:
            logger.exception(f"assistant_failed: model={self.model_name}")
            raise AssistantError("No se pudo obtener respuesta del asistente") from exc
        return (text or "").strip()
