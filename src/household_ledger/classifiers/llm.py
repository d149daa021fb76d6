import json
import os
import re
from typing import Any

from openai import OpenAI

from household_ledger.core.settings import DEFAULT_OPENAI_MODEL, get_ai_timeout
from household_ledger.logger import get_logger
from household_ledger.models import (
    CategorizationResult,
    Category,
    ClassificationContext,
    ClassificationRequest,
)

from .base import Classifier

logger = get_logger(__name__)

LLM_CONFIDENCE = 0.9

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)

INSTRUCTIONS = "You are a financial categorisation engine for an Australian household budget tracker."

PROMPT_TEMPLATE = """
The household has these bank accounts:
{accounts}

Available categories (id: name):
{categories}

For EACH transaction below return:
1. "categoryId": the best matching category id from the list above
2. "isTransfer": true if this moves money between the household's own accounts
   (everyday to savings, paying their own mortgage or loan). Payments to other people are NOT transfers.
3. "cleanDescription": a short clean merchant or payee name
   (e.g. "VISA PURCHASE Card 1234 WOOLWORTHS SYDNEY" -> "Woolworths")

Key rules:
- Use "Savings Transfer" for transfers to savings accounts
- Use "Loan Repayment" for payments to loan or mortgage accounts
- Use "Personal Loan Repayment" for personal loan payments
- BPAY to the household's own loan or mortgage is a transfer; BPAY to external billers is not
- Settlement, loan payout, discharge and refinance lump sums are transfers, category "Loan Repayment"
- Interest earned is "Other Income"; ATM withdrawals and bank fees are "Fees/Charges"

Transactions:
{transactions}

Return ONLY a valid JSON object mapping transaction id to result, for example:
{{"txId1": {{"categoryId": "catId", "isTransfer": false, "cleanDescription": "Woolworths"}}}}
"""


class LLMClassifier(Classifier):
    """
    Tier 2: one batch request to an OpenAI-compatible Responses endpoint.

    Every failure (no client, transport error, timeout, unparseable output)
    is logged and yields an empty mapping; callers never see an exception.
    """
    source = "ai"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_OPENAI_MODEL,
        base_url: str | None = None,
        timeout: float | None = None,
        client: Any = None,
    ):
        self.client = client or OpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url or os.getenv("OPENAI_BASE_URL") or None,
            timeout=timeout if timeout is not None else get_ai_timeout(),
        )
        self.model = model

    def classify_batch(
        self,
        requests: list[ClassificationRequest],
        context: ClassificationContext | None = None,
    ) -> dict[str, CategorizationResult]:
        if not requests:
            return {}
        context = context or ClassificationContext()
        try:
            # One request per chunk
            response = self.client.responses.create(
                model=self.model,
                instructions=INSTRUCTIONS,
                input=self.build_prompt(requests, context),
                temperature=0.0,
            )
            # Handle both SDK response shapes
            output = self._extract_output_text(response)
            if output is None:
                logger.error(f"[AI] Empty response for batch of {len(requests)} transactions.")
                return {}
            return self.parse_response(output, requests, context)
        except Exception as e:
            logger.error(f"LLM Error: {e}")
            return {}

    @staticmethod
    def build_prompt(requests: list[ClassificationRequest], context: ClassificationContext) -> str:
        accounts = "\n".join(f"  - {account.name} ({account.type})" for account in context.accounts)
        categories = "\n".join(
            f'  "{category.id}": "{category.name}"' for category in context.categories if category.id
        )
        transactions = {
            request.id: {
                "desc": request.description,
                "amount": f"{'-' if request.direction == 'debit' else '+'}${request.amount}",
                "account": request.account_name,
                "accountType": request.account_type,
                "date": request.date,
            }
            for request in requests
        }
        return PROMPT_TEMPLATE.format(
            accounts=accounts or "  (none)",
            categories=categories,
            transactions=json.dumps(transactions, indent=2),
        )

    @staticmethod
    def parse_response(
        text: str,
        requests: list[ClassificationRequest],
        context: ClassificationContext,
    ) -> dict[str, CategorizationResult]:
        match = _JSON_BLOCK.search(text)
        if not match:
            logger.error("[AI] No JSON object in response.")
            return {}
        parsed = json.loads(match.group(0))
        if not isinstance(parsed, dict):
            return {}

        requested = {request.id for request in requests}
        names = {category.id: category.name for category in context.categories if category.id}
        fallback_id = context.fallback_category_id

        results: dict[str, CategorizationResult] = {}
        for tx_id, entry in parsed.items():
            # Ignore ids we never asked about and malformed entries
            if tx_id not in requested or not isinstance(entry, dict):
                continue
            category_id = entry.get("categoryId")
            if not isinstance(category_id, str):
                continue
            # Never trust an unvalidated category reference
            if category_id not in names:
                if not fallback_id or fallback_id not in names:
                    logger.warning(f"[AI] Unknown category '{category_id}' for {tx_id} and no fallback; ignoring.")
                    continue
                logger.warning(f"[AI] Unknown category '{category_id}' for {tx_id}; using fallback.")
                category_id = fallback_id

            clean_description = entry.get("cleanDescription")
            results[tx_id] = CategorizationResult(
                category=Category(id=category_id, name=names[category_id]),
                confidence=LLM_CONFIDENCE,
                source="ai",
                is_transfer=entry.get("isTransfer") is True,
                clean_description=clean_description if isinstance(clean_description, str) else None,
            )

        logger.info(f"[AI] Parsed {len(results)}/{len(requests)} results.")
        return results

    @staticmethod
    def _extract_output_text(response: object) -> str | None:
        output_text = getattr(response, "output_text", None)
        if output_text:
            return output_text

        output = getattr(response, "output", None)
        if not output:
            return None

        parts: list[str] = []
        for item in output:
            content = getattr(item, "content", None)
            if not content:
                continue
            for block in content:
                block_type = getattr(block, "type", None)
                if block_type in {"output_text", "text"}:
                    text = getattr(block, "text", None)
                    if text:
                        parts.append(text)

        if parts:
            return "".join(parts)
        return None
