"""Gateway to the hosted generative-AI service.

Three capabilities are exposed, each a single request/response:

* structured receipt extraction (``extract_receipt``)
* best-effort merchant detection (``detect_merchant``)
* free-text financial feedback and question answering (``get_feedback``,
  ``answer_query``)

:class:`GeminiGateway` implements them with the ``google-genai`` SDK.  The
response parsing helpers are plain functions so they can be tested without
the network.
"""

from __future__ import annotations

import io
import json
import math
import re
from datetime import date
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from PIL import Image, UnidentifiedImageError

from . import config
from .currency import format_currency, is_supported
from .errors import AdvisoryFailed, ExtractionFailed
from .logger import get_logger
from .models import INCOME_CATEGORY, ReceiptData, ReceiptItem, Transaction
from .periods import FinancialPeriod, to_date

logger = get_logger(__name__)

_JSON_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)

# Upper bound on transactions sent along with a question.
MAX_QUERY_TRANSACTIONS = 500

RECEIPT_PROMPT = """
Analyze this receipt image. Extract the following information:
1. The merchant (store) name.
2. The date of the transaction. If you can't find one, use today's date. Format it as YYYY-MM-DD.
3. The ISO 4217 currency code of the amounts (e.g. USD, EUR, SEK).
4. A list of all individual items purchased, along with their price.
5. The total amount paid.
6. The tax amount, if it is shown separately. Use 0 if there is none.

Do not include taxes or discounts as separate items, but ensure the total reflects the final amount paid.
"""

MERCHANT_PROMPT = (
    "What is the name of the store or merchant on this receipt? "
    "Reply with the name only, or an empty reply if you cannot tell."
)


class AdvisoryGateway(Protocol):
    """Boundary between the core and the AI service."""

    async def extract_receipt(self, image_bytes: bytes, fallback_currency: str = 'USD') -> ReceiptData: ...

    async def detect_merchant(self, image_bytes: bytes) -> str: ...

    async def get_feedback(
        self,
        transactions: Sequence[Transaction],
        primary_currency: str,
        category_rule_map: Mapping[str, str],
        period: Optional[FinancialPeriod] = None,
    ) -> str: ...

    async def answer_query(
        self,
        question: str,
        transactions: Sequence[Transaction],
        primary_currency: str,
    ) -> str: ...


def _receipt_schema():
    from google.genai import types

    return types.Schema(
        type=types.Type.OBJECT,
        properties={
            'merchant': types.Schema(type=types.Type.STRING, description="The store or merchant name."),
            'date': types.Schema(
                type=types.Type.STRING,
                description="The date of the transaction in YYYY-MM-DD format.",
            ),
            'currency': types.Schema(type=types.Type.STRING, description="ISO 4217 currency code."),
            'items': types.Schema(
                type=types.Type.ARRAY,
                description="List of all items purchased from the receipt.",
                items=types.Schema(
                    type=types.Type.OBJECT,
                    properties={
                        'name': types.Schema(type=types.Type.STRING, description="The item name. Be concise."),
                        'price': types.Schema(type=types.Type.NUMBER, description="The price of the item."),
                    },
                    required=['name', 'price'],
                ),
            ),
            'total': types.Schema(type=types.Type.NUMBER, description="The total amount on the receipt."),
            'tax': types.Schema(type=types.Type.NUMBER, description="The tax amount, 0 if none."),
        },
        required=['date', 'items', 'total'],
    )


def strip_json_fences(text: str) -> str:
    return _JSON_FENCE_RE.sub('', text or '').strip()


def sniff_image_mime(image_bytes: bytes) -> str:
    """Return the MIME type of an image.

    Raises:
        ExtractionFailed: If the bytes are not a readable image
    """
    if not image_bytes:
        raise ExtractionFailed("The receipt image is empty.")
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ExtractionFailed("The receipt image could not be read.") from e
    return Image.MIME.get(fmt or '', 'image/jpeg')


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.replace(',', '').strip()
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return result if math.isfinite(result) else None


def parse_receipt_payload(
    payload: Any,
    fallback_currency: str,
    today: Optional[date] = None,
) -> ReceiptData:
    """Validate and normalize a decoded extraction response.

    Items with a blank name or a non-numeric price are dropped.  A missing or
    invalid date becomes ``today``; a missing or unsupported currency becomes
    ``fallback_currency``; ``tax`` is kept only when it is a positive number.

    Raises:
        ExtractionFailed: If the payload is not an object or has no item list
    """
    if isinstance(payload, str):
        try:
            payload = json.loads(strip_json_fences(payload))
        except json.JSONDecodeError as e:
            raise ExtractionFailed("The AI service returned malformed receipt data.") from e
    if not isinstance(payload, dict):
        raise ExtractionFailed("The AI service returned malformed receipt data.")
    raw_items = payload.get('items')
    if not isinstance(raw_items, list):
        raise ExtractionFailed("The AI service did not return a list of items.")

    items: List[ReceiptItem] = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            continue
        name = str(raw.get('name') or '').strip()
        price = _number(raw.get('price'))
        if not name or price is None:
            logger.debug(f"Skipping unusable receipt line: {raw!r}")
            continue
        items.append(ReceiptItem(name=name, price=price))

    today = today or date.today()
    try:
        receipt_date = to_date(payload.get('date')).isoformat() if payload.get('date') else today.isoformat()
    except (TypeError, ValueError):
        receipt_date = today.isoformat()

    currency = str(payload.get('currency') or '').strip().upper()
    if not is_supported(currency):
        currency = fallback_currency

    total = _number(payload.get('total'))
    if total is None:
        total = sum(item.price for item in items)
    tax = _number(payload.get('tax'))

    return ReceiptData(
        merchant=str(payload.get('merchant') or '').strip(),
        date=receipt_date,
        currency=currency,
        items=items,
        total=total,
        tax=tax if tax is not None and tax > 0 else None,
    )


def _expense_summary(transactions: Sequence[Transaction]) -> Dict[str, float]:
    summary: Dict[str, float] = {}
    for txn in transactions:
        if txn.category == INCOME_CATEGORY:
            continue
        amount = _number(txn.amount) or 0.0
        summary[txn.category] = round(summary.get(txn.category, 0.0) + amount, 2)
    return summary


def build_feedback_prompt(
    transactions: Sequence[Transaction],
    primary_currency: str,
    category_rule_map: Mapping[str, str],
    period: Optional[FinancialPeriod] = None,
) -> str:
    """Prompt for the free-text feedback request."""
    summary = {
        category: format_currency(amount, primary_currency)
        for category, amount in _expense_summary(transactions).items()
    }
    income = sum(_number(t.amount) or 0.0 for t in transactions if t.category == INCOME_CATEGORY)
    in_period = [t for t in transactions if period is None or period.contains(t.date)]
    period_line = (
        f"The user's financial month runs from {period.start_date} to {period.end_date}. "
        f"Spending in this financial month by category: "
        f"{json.dumps(_expense_summary(in_period), sort_keys=True)}"
        if period is not None else ''
    )
    return f"""
As a friendly financial advisor, analyze the following expense summary and provide feedback.
The user wants to understand their spending habits better. All amounts are in {primary_currency}.

Expense Summary (all time):
{json.dumps(summary, indent=2, ensure_ascii=False)}

Total income recorded: {format_currency(income, primary_currency)}
Category to 50/30/20 bucket mapping (Needs 50%, Wants 30%, Savings 20%):
{json.dumps(dict(category_rule_map), indent=2, ensure_ascii=False)}
{period_line}

Please provide:
1. A brief, encouraging opening.
2. An observation about the category with the highest spending.
3. How the spending compares with the 50/30/20 rule.
4. One or two practical and actionable suggestions for areas where they could potentially save money.
5. A positive concluding remark.

Keep the tone supportive and helpful, not judgmental. Use markdown for simple formatting like bolding if needed.
"""


def build_query_prompt(question: str, transactions: Sequence[Transaction], primary_currency: str) -> str:
    """Prompt for answering a question over the transaction history."""
    recent = sorted(transactions, key=lambda t: t.date, reverse=True)[:MAX_QUERY_TRANSACTIONS]
    rows = [
        {
            'date': t.date,
            'name': t.name,
            'merchant': t.merchant,
            'category': t.category,
            'amount': round(_number(t.amount) or 0.0, 2),
            'originalAmount': t.original_amount,
            'originalCurrency': t.original_currency,
            'tags': t.tags,
        }
        for t in recent
    ]
    return f"""
You answer questions about the user's personal transaction history.
Amounts in "amount" are in {primary_currency}. Transactions with category "{INCOME_CATEGORY}" are income.
Today's date is {date.today().isoformat()}.

Transactions (JSON):
{json.dumps(rows, ensure_ascii=False)}

Question: {question}

Answer concisely using only the data above. If the data does not contain the answer, say so.
"""


class GeminiGateway:
    """``AdvisoryGateway`` backed by Google's Gemini models."""

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, client: Any = None):
        self.api_key = api_key if api_key is not None else config.get_api_key()
        self.model = model or config.MODEL_NAME
        self._client = client

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise RuntimeError("GEMINI_API_KEY is not configured")
            from google import genai

            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def _generate(self, contents: Any, generation_config: Any = None) -> str:
        client = self._get_client()
        response = await client.aio.models.generate_content(
            model=self.model,
            contents=contents,
            config=generation_config,
        )
        return (getattr(response, 'text', None) or '').strip()

    async def extract_receipt(self, image_bytes: bytes, fallback_currency: str = 'USD') -> ReceiptData:
        from google.genai import types

        mime_type = sniff_image_mime(image_bytes)
        try:
            text = await self._generate(
                [types.Part.from_bytes(data=image_bytes, mime_type=mime_type), RECEIPT_PROMPT],
                types.GenerateContentConfig(
                    response_mime_type='application/json',
                    response_schema=_receipt_schema(),
                ),
            )
        except Exception as e:
            logger.error(f"Receipt extraction request failed: {e}", exc_info=True)
            raise ExtractionFailed(
                "Failed to analyze receipt. The AI model might be unavailable or the image could not be processed."
            ) from e
        if not text:
            raise ExtractionFailed("The AI service returned an empty response.")
        return parse_receipt_payload(text, fallback_currency)

    async def detect_merchant(self, image_bytes: bytes) -> str:
        try:
            from google.genai import types

            mime_type = sniff_image_mime(image_bytes)
            text = await self._generate(
                [types.Part.from_bytes(data=image_bytes, mime_type=mime_type), MERCHANT_PROMPT]
            )
        except Exception as e:
            logger.info(f"Merchant detection failed: {e}")
            return ''
        lines = text.strip().splitlines()
        return lines[0].strip().strip('"\'').strip() if lines else ''

    async def get_feedback(
        self,
        transactions: Sequence[Transaction],
        primary_currency: str,
        category_rule_map: Mapping[str, str],
        period: Optional[FinancialPeriod] = None,
    ) -> str:
        prompt = build_feedback_prompt(transactions, primary_currency, category_rule_map, period)
        try:
            text = await self._generate(prompt)
        except Exception as e:
            logger.error(f"Financial feedback request failed: {e}", exc_info=True)
            raise AdvisoryFailed("Failed to get financial feedback from the AI model.") from e
        if not text:
            raise AdvisoryFailed("The AI model returned no feedback.")
        return text

    async def answer_query(
        self,
        question: str,
        transactions: Sequence[Transaction],
        primary_currency: str,
    ) -> str:
        prompt = build_query_prompt(question, transactions, primary_currency)
        try:
            text = await self._generate(prompt)
        except Exception as e:
            logger.error(f"Question answering request failed: {e}", exc_info=True)
            raise AdvisoryFailed("Failed to get an answer from the AI model.") from e
        if not text:
            raise AdvisoryFailed("The AI model returned no answer.")
        return text
