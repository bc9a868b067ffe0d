"""
Intent Classifier Module

Maps a customer message onto one label of a closed intent set.

The primary path asks the configured LLM for a strict JSON answer
({"intent": ..., "confidence": ...}) with at most the last three turns as
context. Anything outside that contract (provider error, timeout, malformed
JSON, unknown label) drops to a deterministic keyword table, so
classification never raises.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Pattern, Tuple

from ferrebot.exceptions import ClassifierUnavailableError
from ferrebot.llm_service import LLMService

logger = logging.getLogger(__name__)


class Intent(str, Enum):
    """Closed set of customer intents."""

    GREETING = "greeting"
    FAQ_PRODUCT = "faq_product"
    FAQ_SERVICE = "faq_service"
    FAQ_SCHEDULE = "faq_schedule"
    PRODUCT_INQUIRY = "product_inquiry"
    REQUEST_QUOTE = "request_quote"
    PLACE_ORDER = "place_order"
    CONFIRM_ORDER = "confirm_order"
    CANCEL_ORDER = "cancel_order"
    CHECK_ORDER_STATUS = "check_order_status"
    GOODBYE = "goodbye"
    UNKNOWN = "unknown"


FAQ_INTENTS = frozenset({Intent.FAQ_PRODUCT, Intent.FAQ_SERVICE, Intent.FAQ_SCHEDULE})


@dataclass
class IntentResult:
    """
    Attributes:
        intent: Detected intent
        confidence: 0-1
        source: "llm" or "fallback"
    """
    intent: Intent
    confidence: float
    source: str = "llm"


# Ordered (pattern, intent, confidence); first match wins
FALLBACK_RULES: List[Tuple[Pattern, Intent, float]] = [
    (re.compile(r"^\s*[¡!]?\s*(hola|buen[oa]s|hey|saludos)"), Intent.GREETING, 0.8),
    (re.compile(r"cotiza|cotizaci[oó]n|precio|costo|cu[aá]nto.*cuesta|valor"), Intent.REQUEST_QUOTE, 0.7),
    (re.compile(r"pedido|comprar|ordenar|quiero.*llevar"), Intent.PLACE_ORDER, 0.7),
    (re.compile(r"horario|\bhoras?\b|cu[aá]ndo.*abre|cu[aá]ndo.*cierra|atiend"), Intent.FAQ_SCHEDULE, 0.7),
    (re.compile(r"entrega|env[ií]o|delivery|pago|transferencia"), Intent.FAQ_SERVICE, 0.7),
    (re.compile(r"producto|tienes|tienen|\bhay\b|stock|disponible|venden"), Intent.PRODUCT_INQUIRY, 0.6),
    (re.compile(r"confirm|\bs[ií]\b|\bok\b|\bdale\b|correcto"), Intent.CONFIRM_ORDER, 0.6),
    (re.compile(r"cancel|\bno\b|negativo|mejor.*no"), Intent.CANCEL_ORDER, 0.6),
    (re.compile(r"chao|adi[oó]s|gracias|hasta"), Intent.GOODBYE, 0.7),
]

DEFAULT_FALLBACK = (Intent.UNKNOWN, 0.3)

SYSTEM_PROMPT = """Eres un asistente que identifica la intención de los mensajes de usuarios en una ferretería.

Intenciones posibles:
- greeting: Saludos iniciales (hola, buenos días, etc.)
- faq_product: Preguntas sobre características de productos
- faq_service: Preguntas sobre servicios (entrega, pagos, garantías)
- faq_schedule: Preguntas sobre horarios de atención
- product_inquiry: Consulta de productos disponibles o búsqueda
- request_quote: Solicitud de cotización
- place_order: Quiere realizar un pedido
- confirm_order: Confirma un pedido
- cancel_order: Cancela un pedido
- check_order_status: Consulta estado de pedido
- goodbye: Despedida
- unknown: No está claro

Responde SOLO con el nombre de la intención y un nivel de confianza (0.0 a 1.0) en formato JSON:
{"intent": "nombre_intención", "confidence": 0.95}"""

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$")


def fallback_classify(message: str) -> IntentResult:
    """
    Classify with the ordered keyword table.

    Args:
        message: Raw customer text

    Returns:
        IntentResult with source="fallback"
    """
    text = (message or "").lower()

    for pattern, intent, confidence in FALLBACK_RULES:
        if pattern.search(text):
            return IntentResult(intent=intent, confidence=confidence, source="fallback")

    intent, confidence = DEFAULT_FALLBACK
    return IntentResult(intent=intent, confidence=confidence, source="fallback")


def parse_classifier_output(content: str) -> Tuple[Intent, float]:
    """
    Validate the LLM's JSON answer.

    Raises:
        ClassifierUnavailableError: On malformed JSON, unknown label or bad confidence
    """
    cleaned = _CODE_FENCE.sub("", (content or "").strip())

    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ClassifierUnavailableError("Classifier returned invalid JSON", details=content) from e

    if not isinstance(payload, dict):
        raise ClassifierUnavailableError("Classifier returned a non-object", details=content)

    try:
        intent = Intent(str(payload.get("intent", "")).strip().lower())
    except ValueError as e:
        raise ClassifierUnavailableError("Classifier returned an unknown intent", details=content) from e

    try:
        confidence = float(payload.get("confidence"))
    except (TypeError, ValueError) as e:
        raise ClassifierUnavailableError("Classifier returned no usable confidence", details=content) from e

    return intent, min(max(confidence, 0.0), 1.0)


class IntentClassifier:
    """
    LLM intent classifier with a keyword fallback.

    Example:
        classifier = IntentClassifier(LLMService())
        result = classifier.identify("quiero hacer un pedido", recent_context)
        print(result.intent, result.confidence)
    """

    def __init__(
        self,
        llm_service: Optional[LLMService] = None,
        context_turns: int = 3,
        temperature: float = 0.3,
        max_tokens: int = 100,
    ):
        """
        Args:
            llm_service: Chat provider; None means keyword classification only
            context_turns: How many prior turns are sent with the message
            temperature: Sampling temperature for the LLM
            max_tokens: Response cap for the LLM
        """
        self.llm_service = llm_service
        self.context_turns = context_turns
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_messages(
        self,
        message: str,
        recent_context: Optional[List[Dict[str, str]]] = None,
    ) -> List[Dict[str, str]]:
        """Assemble system prompt, the capped context window and the message."""
        history = list(recent_context or [])
        if self.context_turns > 0:
            history = history[-self.context_turns:]
        else:
            history = []

        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        messages.extend(
            {"role": turn["role"], "content": turn["content"]}
            for turn in history
            if turn.get("content")
        )
        messages.append({"role": "user", "content": message})
        return messages

    def _classify_with_llm(
        self,
        message: str,
        recent_context: Optional[List[Dict[str, str]]],
    ) -> IntentResult:
        if self.llm_service is None:
            raise ClassifierUnavailableError("No LLM configured")

        try:
            response = self.llm_service.chat(
                self.build_messages(message, recent_context),
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                json_mode=True,
            )
        except Exception as e:
            raise ClassifierUnavailableError("LLM request failed", details=str(e)) from e

        intent, confidence = parse_classifier_output(response.content)
        logger.debug(f"Intent identified: {intent.value} (confidence: {confidence})")
        return IntentResult(intent=intent, confidence=confidence, source="llm")

    def identify(
        self,
        message: str,
        recent_context: Optional[List[Dict[str, str]]] = None,
    ) -> IntentResult:
        """
        Classify a message. Never raises.

        Args:
            message: Customer text
            recent_context: Prior turns as [{"role", "content"}], oldest first

        Returns:
            IntentResult
        """
        try:
            return self._classify_with_llm(message, recent_context)
        except ClassifierUnavailableError as e:
            logger.warning(f"Intent classifier unavailable, using keywords: {e.message}")
            return fallback_classify(message)

    async def identify_async(
        self,
        message: str,
        recent_context: Optional[List[Dict[str, str]]] = None,
        timeout: float = 8.0,
    ) -> IntentResult:
        """
        Run identify() off the event loop with an upper bound on its duration.

        A timeout yields the keyword classification.
        """
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, lambda: self.identify(message, recent_context)),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Intent classification timed out after {timeout}s")
            return fallback_classify(message)
