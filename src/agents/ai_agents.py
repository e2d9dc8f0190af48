"""
AI Agents for Ledger Gate

DESIGN DECISION: Gemini is called directly through google-generativeai.
Each agent owns one narrow task and a deterministic fallback, so a model
outage degrades a feature instead of breaking a screen.

CRITICAL BOUNDARIES:

1. LEDGER INSIGHT AGENT:
   - CAN: Summarize metrics the search engine already computed
   - CANNOT: See individual rows or run queries
   - MUST: Return the fixed fallback text when the model fails

2. FORENSIC AUDIT AGENT:
   - CAN: Answer questions about the most recent ledger rows it is given
   - CANNOT: Read storage itself
   - MUST: Surface failures as a visible CRITICAL_ERROR message

3. RECEIPT SCAN AGENT:
   - CAN: Propose amount, source, mode and date from a receipt image
   - CANNOT: Persist anything; the user commits the proposal
   - CANNOT: Return a proposal without a numeric amount and a source

The LLM is an ASSISTANT, not a LEDGER.
It never writes financial data.
"""

import json
import re
from io import BytesIO
from typing import Any, Callable, Literal, Optional

import google.generativeai as genai
import structlog
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field, ValidationError

from src.config import GeminiSettings, get_settings
from src.models.transaction import LedgerStats, ReceiptExtraction, Transaction


logger = structlog.get_logger(__name__)

FALLBACK_INSIGHT = "Statistical patterns stable. Anomaly check nominal."

AUDIT_SYSTEM_PROMPT = """You are "FinTrack Intelligence Core", a high-level Forensic Accountant and Data Auditor.
Objective: Analyze financial signals within the provided ledger context to detect anomalies, patterns, and velocity shifts.
Guidelines:
1. PRECISION: Use exact figures from context.
2. ANOMALY DETECTION: Flag potential duplicates or unusual patterns.
3. CLARITY: Keep responses concise and helpful."""

AUDIT_GREETING = "Intelligence Core synchronized. Ready for forensic analysis."
AUDIT_STANDBY = "Terminal buffers cleared. Monitoring standby."
AUDIT_EMPTY_RESPONSE = "Consensus node timeout."
CRITICAL_ERROR_PREFIX = "CRITICAL_ERROR: "

RECEIPT_PROMPT = (
    "Extract financial record details strictly as JSON. amount (number), "
    "source (merchant string), payment_mode ('cash','bank','upi'), "
    "and date (ISO string if found)."
)

_MARKDOWN_FENCE = re.compile(r"```(json)?", re.IGNORECASE)


class AIServiceError(Exception):
    """The model could not be reached or returned nothing usable."""
    pass


class ReceiptScanError(AIServiceError):
    """A receipt image could not be turned into a proposal."""
    pass


def _generation_config(settings: GeminiSettings, max_tokens: Optional[int] = None) -> dict:
    return {
        "temperature": settings.temperature,
        "max_output_tokens": max_tokens or settings.max_tokens,
    }


class LedgerInsightAgent:
    """
    Writes a one-line forensic summary of the current search metrics.

    BOUNDARIES:
    - Only sees aggregates (total, average, count, modes, a few sources)
    - Never raises; model trouble yields FALLBACK_INSIGHT
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model: Optional[Any] = None,
    ):
        self._settings = settings or get_settings().gemini
        if model is None:
            genai.configure(api_key=self._settings.api_key)
            model = genai.GenerativeModel(
                model_name=self._settings.fast_model_name,
                generation_config=_generation_config(self._settings, max_tokens=128),
            )
        self._model = model

    @staticmethod
    def build_prompt(stats: LedgerStats) -> str:
        summary = {
            "totalValue": float(stats.total_value),
            "averageValue": float(stats.average_value),
            "transactionCount": stats.transaction_count,
            "topModes": stats.mode_distribution,
            "sampleSources": ", ".join(stats.sample_sources),
        }
        return (
            "Analyze these ledger metrics for patterns or anomalies: "
            f"{json.dumps(summary)}. "
            "Return a high-density forensic summary (max 35 words). "
            "Focus on behavioral trends."
        )

    async def summarize(self, stats: LedgerStats) -> Optional[str]:
        """
        Summarize metrics.

        Returns:
            None when nothing matched (the model is not called),
            otherwise the model's summary or FALLBACK_INSIGHT
        """
        if stats.transaction_count == 0:
            return None

        try:
            response = await self._model.generate_content_async(self.build_prompt(stats))
            text = (response.text or "").strip()
        except Exception as e:
            logger.warning("ledger_insight_failed", error=str(e))
            return FALLBACK_INSIGHT

        return text or FALLBACK_INSIGHT


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class AuditConversation(BaseModel):
    """Message history shown in the audit terminal."""

    messages: list[ChatMessage] = Field(
        default_factory=lambda: [ChatMessage(role="assistant", content=AUDIT_GREETING)]
    )

    def add_user(self, content: str) -> None:
        self.messages.append(ChatMessage(role="user", content=content))

    def add_assistant(self, content: str) -> None:
        self.messages.append(ChatMessage(role="assistant", content=content))

    def clear(self) -> None:
        self.messages = [ChatMessage(role="assistant", content=AUDIT_STANDBY)]

    @property
    def last(self) -> ChatMessage:
        return self.messages[-1]


def format_ledger_context(rows: list[Transaction]) -> str:
    """One "[created_at] source: ₹amount" line per row; "No data" when empty."""
    if not rows:
        return "No data"
    return "\n".join(
        f"[{row.created_at.isoformat()}] {row.source}: ₹{row.amount}" for row in rows
    )


ModelFactory = Callable[[str], Any]


class ForensicAuditAgent:
    """
    Chat assistant over the most recent ledger rows.

    The ledger context is part of the system instruction, so a model is
    built per question from the rows passed in.
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        model_factory: Optional[ModelFactory] = None,
    ):
        self._settings = settings or get_settings().gemini
        if model_factory is None:
            genai.configure(api_key=self._settings.api_key)
            model_factory = self._default_model
        self._model_factory = model_factory

    def _default_model(self, system_instruction: str) -> Any:
        return genai.GenerativeModel(
            model_name=self._settings.model_name,
            system_instruction=system_instruction,
            generation_config=_generation_config(self._settings),
        )

    @staticmethod
    def build_system_instruction(rows: list[Transaction]) -> str:
        return f"{AUDIT_SYSTEM_PROMPT}\n\n[LEDGER_CONTEXT]\n{format_ledger_context(rows)}"

    async def ask(self, question: str, ledger: list[Transaction]) -> str:
        """
        Answer one question.

        Raises:
            AIServiceError: If the model call fails
        """
        try:
            model = self._model_factory(self.build_system_instruction(ledger))
            response = await model.generate_content_async(question)
            text = (response.text or "").strip()
        except Exception as e:
            raise AIServiceError(str(e)) from e
        return text or AUDIT_EMPTY_RESPONSE

    async def respond(
        self,
        conversation: AuditConversation,
        question: str,
        ledger: list[Transaction],
    ) -> ChatMessage:
        """
        Add the question and the answer to a conversation.

        Failures become a CRITICAL_ERROR assistant message instead of raising.
        Blank questions are ignored.
        """
        question = question.strip()
        if not question:
            return conversation.last

        conversation.add_user(question)
        try:
            answer = await self.ask(question, ledger)
        except AIServiceError as e:
            logger.error("forensic_audit_failed", error=str(e))
            answer = f"{CRITICAL_ERROR_PREFIX}{e}"
        conversation.add_assistant(answer)
        return conversation.last


def strip_markdown_fences(text: str) -> str:
    if "```" not in text:
        return text.strip()
    return _MARKDOWN_FENCE.sub("", text).replace("```", "").strip()


def parse_receipt_response(text: str) -> ReceiptExtraction:
    """
    Turn the vision model's JSON answer into a proposal.

    Raises:
        ReceiptScanError: If it is not JSON, or lacks a numeric amount
            or a source
    """
    try:
        data = json.loads(strip_markdown_fences(text or ""))
    except json.JSONDecodeError:
        raise ReceiptScanError(
            "Could not decrypt AI intelligence into structured ledger data."
        )

    amount = data.get("amount") if isinstance(data, dict) else None
    if (
        not isinstance(amount, (int, float))
        or isinstance(amount, bool)
        or not data.get("source")
    ):
        raise ReceiptScanError("Validation mismatch in extracted neural data.")

    try:
        return ReceiptExtraction(
            amount=str(amount),
            source=str(data["source"]),
            payment_mode=data.get("payment_mode"),
            date=data.get("date"),
        )
    except ValidationError as e:
        raise ReceiptScanError(f"Validation mismatch in extracted neural data: {e}")


class ReceiptScanAgent:
    """
    Reads a receipt photo with the vision model.

    BOUNDARIES:
    - NEVER persists data
    - Unknown payment modes become bank, unreadable dates become "now"
      at commit time
    """

    def __init__(
        self,
        settings: Optional[GeminiSettings] = None,
        max_upload_bytes: Optional[int] = None,
        model: Optional[Any] = None,
    ):
        self._settings = settings or get_settings().gemini
        self._max_upload_bytes = (
            max_upload_bytes
            if max_upload_bytes is not None
            else get_settings().app.max_upload_size_bytes
        )
        if model is None:
            genai.configure(api_key=self._settings.api_key)
            model = genai.GenerativeModel(
                model_name=self._settings.vision_model_name,
                generation_config={
                    "temperature": 0.0,
                    "response_mime_type": "application/json",
                },
            )
        self._model = model

    def load_image(self, image_bytes: bytes) -> Image.Image:
        """
        Raises:
            ReceiptScanError: If the file is too large or not an image
        """
        if len(image_bytes) > self._max_upload_bytes:
            limit_mb = self._max_upload_bytes // (1024 * 1024)
            raise ReceiptScanError(f"File size limit ({limit_mb}MB) exceeded.")
        try:
            image = Image.open(BytesIO(image_bytes))
            image.load()
        except (UnidentifiedImageError, OSError) as e:
            raise ReceiptScanError(f"Disk read failure: {e}")
        return image

    async def extract(self, image_bytes: bytes) -> ReceiptExtraction:
        """
        Propose a transaction from a receipt image.

        Raises:
            ReceiptScanError: If the image, the model call or its answer
                is unusable
        """
        image = self.load_image(image_bytes)
        try:
            response = await self._model.generate_content_async([image, RECEIPT_PROMPT])
            text = response.text
        except Exception as e:
            logger.error("receipt_scan_failed", error=str(e))
            raise ReceiptScanError(f"Failed to analyze document: {e}")

        extraction = parse_receipt_response(text)
        logger.info(
            "receipt_extracted",
            amount=str(extraction.amount),
            payment_mode=extraction.payment_mode.value,
        )
        return extraction
