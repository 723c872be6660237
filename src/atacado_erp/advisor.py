"""Consumers of the generative AI collaborator.

The model itself is a black box: callers hand in a ``generate(prompt,
schema) -> str`` callable. Everything it returns is treated as untrusted.
A response is parsed completely before anything is used, and a single bad
entry rejects the whole response with
:class:`~atacado_erp.errors.AdvisorResponseError`.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Union

from . import data_manager, log
from .catalog import find_product_by_code
from .constants import MONEY_QUANTUM, TransactionKind
from .core_logic import RuntimeContext, Session, generate_document_id, invalidate_cache
from .errors import AdvisorResponseError, ValidationError
from .finance import expenses_by_category
from .permissions import Capability, require_capability

Generate = Callable[[str, Mapping[str, Any]], str]

SUMMARY_WINDOW_DAYS = 60
TOP_EXPENSES = 10
TIP_PRIORITIES = ("Alta", "Média", "Baixa")
DEFAULT_PRODUCT_GROUP = "Geral"

TIPS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "tips": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Título curto e impactante da dica"},
                    "description": {"type": "string", "description": "Explicação prática de como economizar"},
                    "priority": {"type": "string", "enum": list(TIP_PRIORITIES)},
                    "category": {"type": "string", "description": "Categoria relacionada (ex: Alimentação, Fixos)"},
                },
                "required": ["title", "description", "priority"],
            },
        }
    },
    "required": ["tips"],
}

PRODUCT_EXTRACTION_SCHEMA: Dict[str, Any] = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "code": {"type": "string"},
            "description": {"type": "string"},
            "group": {"type": "string"},
            "price": {"type": "number"},
        },
        "required": ["code", "description", "group", "price"],
    },
}

PRODUCT_EXTRACTION_PROMPT = (
    "Analise este arquivo PDF de catálogo ou tabela de preços. "
    "Extraia todos os produtos encontrados. Para cada produto, identifique: "
    "1. Código (se houver, senão crie um sequencial) "
    "2. Descrição completa "
    "3. Grupo/Categoria (ex: Grãos, Limpeza, Bebidas) "
    "4. Preço unitário (apenas números). "
    "Retorne estritamente um array JSON válido."
)


@dataclass(frozen=True)
class SpendingSummary:
    """What the tips prompt is told about the user's recent finances."""

    start: date
    transaction_count: int
    total_income: Decimal
    total_expense: Decimal
    balance: Decimal
    expenses_by_category: Dict[str, Decimal]
    top_expenses: List[str]

    def to_payload(self) -> Dict[str, Any]:
        return {
            "totalIncome": float(self.total_income),
            "totalExpense": float(self.total_expense),
            "balance": float(self.balance),
            "expensesByCategory": {name: float(value) for name, value in self.expenses_by_category.items()},
            "topExpenses": list(self.top_expenses),
        }


@dataclass(frozen=True)
class Tip:
    title: str
    description: str
    priority: str
    category: str


@dataclass(frozen=True)
class ExtractedProduct:
    code: str
    description: str
    group: str
    price: Decimal


def summarize_spending(
    transactions: Iterable[data_manager.TransactionRow],
    today: date,
    *,
    days: int = SUMMARY_WINDOW_DAYS,
) -> SpendingSummary:
    """Condense transactions due from ``today - days`` onwards.

    Returns:
        SpendingSummary: Income and expense totals, balance, expenses per
            category and the ten largest expenses formatted as
            ``"description (category): R$ 0.00"``.
    """

    start = today - timedelta(days=days)
    recent = [row for row in transactions if row.due_date >= start]
    expenses = [row for row in recent if row.kind is TransactionKind.EXPENSE]
    income = sum((row.amount for row in recent if row.kind is TransactionKind.INCOME), Decimal("0.00"))
    spent = sum((row.amount for row in expenses), Decimal("0.00"))
    largest = sorted(expenses, key=lambda row: row.amount, reverse=True)[:TOP_EXPENSES]
    return SpendingSummary(
        start=start,
        transaction_count=len(recent),
        total_income=income,
        total_expense=spent,
        balance=income - spent,
        expenses_by_category=expenses_by_category(expenses),
        top_expenses=[f"{row.description} ({row.category}): R$ {row.amount:.2f}" for row in largest],
    )


def build_tips_prompt(summary: SpendingSummary) -> str:
    data = json.dumps(summary.to_payload(), ensure_ascii=False)
    return (
        "Atue como um consultor financeiro pessoal experiente. Analise os seguintes dados "
        f"financeiros de um usuário brasileiro (Moeda BRL) dos últimos {SUMMARY_WINDOW_DAYS} dias:\n"
        f"{data}\n\n"
        "Gere 4 dicas de economia personalizadas, práticas e acionáveis. "
        "Foque em onde o usuário está gastando mais e como ele pode otimizar. "
        "Se o saldo for negativo, foque em cortes de emergência. "
        "Se for positivo, foque em investimentos ou reserva."
    )


def _load_json(raw: Union[str, bytes, Any]) -> Any:
    if not isinstance(raw, (str, bytes)):
        return raw
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        log.warning("Discarded AI response: invalid JSON (%s)", exc)
        raise AdvisorResponseError("AI response is not valid JSON") from exc


def _required_text(entry: Mapping[str, Any], key: str, index: int) -> str:
    value = entry.get(key)
    if not isinstance(value, str) or not value.strip():
        raise AdvisorResponseError(f"Entry {index}: '{key}' must be a non-empty string")
    return value.strip()


def parse_tips(raw: Union[str, bytes, Mapping[str, Any]]) -> List[Tip]:
    """Validate a tips response. Any malformed entry discards all of it."""

    payload = _load_json(raw)
    if not isinstance(payload, Mapping) or not isinstance(payload.get("tips"), list):
        raise AdvisorResponseError("AI response must be an object with a 'tips' list")

    tips: List[Tip] = []
    for index, entry in enumerate(payload["tips"]):
        if not isinstance(entry, Mapping):
            raise AdvisorResponseError(f"Entry {index}: expected an object")
        priority = _required_text(entry, "priority", index)
        if priority not in TIP_PRIORITIES:
            raise AdvisorResponseError(f"Entry {index}: unsupported priority {priority!r}")
        category = entry.get("category")
        tips.append(
            Tip(
                title=_required_text(entry, "title", index),
                description=_required_text(entry, "description", index),
                priority=priority,
                category=category.strip() if isinstance(category, str) and category.strip() else "Geral",
            )
        )
    return tips


def request_tips(generate: Generate, summary: SpendingSummary) -> List[Tip]:
    """Ask the AI collaborator for savings tips.

    Raises:
        ValidationError: If there are no recent transactions to analyse.
        AdvisorResponseError: If the response does not match
            :data:`TIPS_SCHEMA`.
    """

    if summary.transaction_count == 0:
        raise ValidationError("Add recent transactions before asking for tips")
    raw = generate(build_tips_prompt(summary), TIPS_SCHEMA)
    tips = parse_tips(raw)
    log.info("Received %d tips from the AI collaborator", len(tips))
    return tips


def parse_extracted_products(raw: Union[str, bytes, Sequence[Any]]) -> List[ExtractedProduct]:
    """Validate catalog rows extracted from a price-list PDF.

    A blank ``code`` is accepted (one is generated on import) and a blank
    ``group`` falls back to ``"Geral"``. Any other defect discards the whole
    response.
    """

    payload = _load_json(raw)
    if not isinstance(payload, list):
        raise AdvisorResponseError("AI response must be a JSON array")

    products: List[ExtractedProduct] = []
    for index, entry in enumerate(payload):
        if not isinstance(entry, Mapping):
            raise AdvisorResponseError(f"Entry {index}: expected an object")
        price_raw = entry.get("price")
        if isinstance(price_raw, bool) or not isinstance(price_raw, (int, float, str)):
            raise AdvisorResponseError(f"Entry {index}: 'price' must be a number")
        try:
            price = Decimal(str(price_raw).replace(",", "."))
        except InvalidOperation as exc:
            raise AdvisorResponseError(f"Entry {index}: 'price' must be a number") from exc
        if not price.is_finite() or price < 0:
            raise AdvisorResponseError(f"Entry {index}: 'price' must be zero or positive")
        code = entry.get("code")
        group = entry.get("group")
        products.append(
            ExtractedProduct(
                code=str(code).strip().upper() if code is not None else "",
                description=_required_text(entry, "description", index),
                group=group.strip() if isinstance(group, str) and group.strip() else DEFAULT_PRODUCT_GROUP,
                price=price.quantize(MONEY_QUANTUM),
            )
        )
    return products


def import_extracted_products(
    context: RuntimeContext,
    session: Session,
    products: Sequence[ExtractedProduct],
) -> List[data_manager.ProductRow]:
    """Add extracted rows to the catalog in one atomic batch.

    Rows whose code already exists in the catalog (or earlier in the same
    import) are skipped. Rows without a code get an ``IA-`` code.

    Returns:
        list[data_manager.ProductRow]: The products actually created.
    """

    require_capability(session, Capability.MANAGE_ALL_PRODUCTS)
    seen: set = set()
    created: List[data_manager.ProductRow] = []
    for product in products:
        code = product.code or f"IA-{uuid.uuid4().hex[:6].upper()}"
        if code in seen or find_product_by_code(context, code) is not None:
            log.warning("Skipping imported product with existing code '%s'", code)
            continue
        seen.add(code)
        created.append(
            data_manager.ProductRow(
                product_id=generate_document_id(prefix="P"),
                code=code,
                description=product.description,
                group=product.group,
                price=product.price,
                is_active=True,
            )
        )

    data_manager.batch_write(
        context.workbook,
        [
            data_manager.WriteOperation.create(data_manager.PRODUCTS_SHEET, data_manager.serialize_product(row))
            for row in created
        ],
        max_operations=context.settings.max_batch_operations,
    )
    invalidate_cache(context, data_manager.PRODUCTS_SHEET)
    log.info("Imported %d of %d extracted products", len(created), len(products))
    return created
