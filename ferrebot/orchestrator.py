"""
Dialogue Orchestrator

The conversation state machine. For every inbound message it:

1. acknowledges receipt and shows the typing indicator
2. classifies the intent
3. stores the inbound message with its intent and confidence
4. reads the user's conversation state
5. runs the transition for (intent, state)
6. stores the outbound reply
7. persists the new state
8. delivers the reply (fire-and-forget) and clears the typing indicator

Button and quick-reply payloads go through the same transitions as the
intents they stand for. Any exception inside a turn is logged and answered
with a generic apology; it never reaches the transport or other users.
"""

import asyncio
import functools
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Optional

from config.settings import Settings, get_settings
from ferrebot.exceptions import (
    DataInconsistencyError,
    InsufficientStockError,
    InvalidStateError,
    ProductNotFoundError,
)
from ferrebot.intent_classifier import FAQ_INTENTS, Intent, IntentClassifier, IntentResult
from ferrebot.messaging import Button, Card, Messenger, QuickReply, Reply, deliver_reply, safe_send
from ferrebot.parsing import (
    extract_search_terms,
    format_price,
    parse_cart_lines,
    parse_contact_data,
)
from ferrebot.persistence import OrderLine, OrderRequest, Persistence, Product, User
from ferrebot.retriever import RetrievalResult, SemanticRetriever
from ferrebot.state_store import ConversationStateStore, StoredState
from ferrebot.states import CartLine, DialogueContext, DialogueState

logger = logging.getLogger(__name__)


APOLOGY = "Disculpa, tuve un problema procesando tu mensaje. ¿Podrías intentar de nuevo?"

CAPABILITIES = (
    "No estoy seguro de entender. Puedo ayudarte con:\n\n"
    "• Información de productos\n"
    "• Realizar cotizaciones\n"
    "• Hacer pedidos\n"
    "• Horarios y servicios\n\n"
    "¿Qué necesitas?"
)

FAQ_NOT_FOUND = (
    "No tengo esa información exacta, pero puedo ayudarte con:\n\n"
    "• Información de productos\n"
    "• Horarios de atención\n"
    "• Métodos de pago y entrega\n"
    "• Realizar pedidos\n\n"
    "¿Sobre qué te gustaría saber?"
)

PRODUCT_FORMAT_HINT = (
    "Ejemplo:\n"
    "• Cemento x 3\n"
    "• Clavos x 2\n"
    "• Pintura blanca x 1"
)

CONTACT_PROMPT = (
    "Para confirmar tu pedido, necesito algunos datos:\n\n"
    "Por favor envíame:\n"
    "• Tu nombre completo\n"
    "• Número de celular\n"
    "• Dirección de entrega completa\n\n"
    "Ejemplo:\n"
    "Juan Pérez\n"
    "987654321\n"
    "Av. Principal 123, San Isidro"
)

ORDER_STATUS_LABELS = {
    "pending": "Pendiente",
    "confirmed": "Confirmado",
    "processing": "En preparación",
    "shipped": "En camino",
    "delivered": "Entregado",
    "cancelled": "Cancelado",
}

# Intents that always win over state-scoped free-text parsing
_EXIT_INTENTS = frozenset({Intent.GREETING, Intent.CANCEL_ORDER, Intent.GOODBYE})

POSTBACK_INTENTS: Dict[str, Intent] = {
    "GREETING": Intent.GREETING,
    "GET_STARTED": Intent.GREETING,
    "PLACE_ORDER": Intent.PLACE_ORDER,
    "CONFIRM_ORDER": Intent.CONFIRM_ORDER,
    "CANCEL_ORDER": Intent.CANCEL_ORDER,
    "CHECK_ORDER_STATUS": Intent.CHECK_ORDER_STATUS,
}

ADD_PRODUCT_PREFIX = "ADD_PRODUCT_"


@dataclass
class Transition:
    """
    Result of handling one turn.

    Attributes:
        reply: What to send back
        state: New state, or None to keep the current one
        context: New context (used together with state)
        merge: Keys to shallow-merge into the context when state is None
    """
    reply: Reply
    state: Optional[DialogueState] = None
    context: Optional[DialogueContext] = None
    merge: Optional[Dict[str, Any]] = None


@dataclass
class InboundEvent:
    """One webhook entry: either a text message or a button payload."""
    channel_id: str
    text: Optional[str] = None
    payload: Optional[str] = None


@dataclass
class TurnStats:
    turns: int = 0
    postbacks: int = 0
    errors: int = 0
    orders_created: int = 0
    intents: Dict[str, int] = field(default_factory=dict)


class DialogueOrchestrator:
    """
    Routes every turn through classification, state transition and reply.

    Example:
        orchestrator = DialogueOrchestrator(classifier, retriever, state_store, persistence, messenger)
        reply = await orchestrator.process_message("1234", "hola")
        reply = await orchestrator.process_postback("1234", "VIEW_PRODUCTS")
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        retriever: Optional[SemanticRetriever],
        state_store: ConversationStateStore,
        persistence: Persistence,
        messenger: Optional[Messenger] = None,
        settings: Optional[Settings] = None,
    ):
        self.classifier = classifier
        self.retriever = retriever
        self.state_store = state_store
        self.persistence = persistence
        self.messenger = messenger
        self.settings = settings or get_settings()

        self.stats = TurnStats()

    # Helpers

    def _price(self, amount: float) -> str:
        return format_price(amount, self.settings.bot.currency_symbol)

    async def _blocking(self, fn, *args, timeout: Optional[float] = None, **kwargs):
        """Run a synchronous collaborator call in the default executor."""
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))
        if timeout is None:
            return await future
        return await asyncio.wait_for(future, timeout=timeout)

    async def _retrieve(self, question: str, threshold: float) -> RetrievalResult:
        if self.retriever is None:
            return RetrievalResult(found=False)

        timeout = self.settings.timeouts.retrieval
        try:
            return await self._blocking(
                self.retriever.get_best_answer, question, threshold, timeout=timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Retrieval timed out after {timeout}s")
            return RetrievalResult(found=False)

    async def _search_products(self, text: str, limit: int = 5) -> List[Product]:
        """Try the whole text first, then its significant words."""
        candidates = [text.strip()] + extract_search_terms(text)
        for term in candidates:
            if not term:
                continue
            products = await self._blocking(self.persistence.search_products, term, limit)
            if products:
                return products
        return []

    def _count_intent(self, intent: Intent) -> None:
        self.stats.intents[intent.value] = self.stats.intents.get(intent.value, 0) + 1

    # Turn pipeline

    async def process_message(self, channel_id: str, text: str) -> Reply:
        """
        Handle one inbound text message.

        Args:
            channel_id: Opaque user identity on the chat channel
            text: Message text

        Returns:
            The reply that was (or would have been) delivered
        """
        logger.info(f"Processing message from {channel_id}: {text}")
        self.stats.turns += 1
        await self._acknowledge(channel_id)

        try:
            user = await self._blocking(self.persistence.find_or_create_user, channel_id)
            recent = await self._blocking(self.persistence.get_recent_context, user.id, 5)

            result = await self.classifier.identify_async(
                text,
                recent[-self.settings.retrieval.context_turns:] if recent else [],
                timeout=self.settings.timeouts.classify,
            )
            self._count_intent(result.intent)

            await self._blocking(
                self.persistence.save_message,
                user.id, "user", text, result.intent.value, result.confidence,
            )

            stored = await self._blocking(self.state_store.get, channel_id)
            transition = await self._handle_message(user, stored, result, text)
            await self._commit(user, channel_id, transition)
            reply = transition.reply

        except Exception as e:
            logger.error(f"Error processing message from {channel_id}: {e}", exc_info=True)
            self.stats.errors += 1
            reply = Reply(text=APOLOGY)

        await self._deliver(channel_id, reply)
        return reply

    async def process_postback(self, channel_id: str, payload: str) -> Reply:
        """
        Handle a button or quick-reply payload.

        Payloads behave as the intents they stand for; ADD_PRODUCT_<id>
        appends one unit of the product to the cart without changing state.
        """
        logger.info(f"Processing postback from {channel_id}: {payload}")
        self.stats.postbacks += 1
        await self._acknowledge(channel_id)

        try:
            user = await self._blocking(self.persistence.find_or_create_user, channel_id)
            intent = POSTBACK_INTENTS.get(payload)

            await self._blocking(
                self.persistence.save_message,
                user.id, "user", f"[{payload}]", intent.value if intent else None, 1.0,
            )

            stored = await self._blocking(self.state_store.get, channel_id)
            transition = await self._handle_postback(user, stored, payload)
            await self._commit(user, channel_id, transition)
            reply = transition.reply

        except Exception as e:
            logger.error(f"Error processing postback from {channel_id}: {e}", exc_info=True)
            self.stats.errors += 1
            reply = Reply(text=APOLOGY)

        await self._deliver(channel_id, reply)
        return reply

    async def process_event(self, event: InboundEvent) -> Optional[Reply]:
        if event.payload:
            return await self.process_postback(event.channel_id, event.payload)
        if event.text and event.text.strip():
            return await self.process_message(event.channel_id, event.text)

        logger.debug(f"Ignoring empty event from {event.channel_id}")
        return None

    async def process_batch(self, events: Iterable[InboundEvent]) -> List[Optional[Reply]]:
        """
        Process many inbound events concurrently.

        One event failing never cancels or affects the others.
        """
        events = list(events)
        semaphore = asyncio.Semaphore(max(1, self.settings.bot.max_concurrent_events))

        async def run(event: InboundEvent):
            async with semaphore:
                return await self.process_event(event)

        results = await asyncio.gather(*(run(e) for e in events), return_exceptions=True)

        replies: List[Optional[Reply]] = []
        for event, result in zip(events, results):
            if isinstance(result, BaseException):
                logger.error(f"Event from {event.channel_id} failed: {result}")
                replies.append(None)
            else:
                replies.append(result)
        return replies

    async def _acknowledge(self, channel_id: str) -> None:
        if self.messenger is None:
            return
        timeout = self.settings.timeouts.messaging
        await safe_send("seen", self.messenger.mark_seen(channel_id), timeout)
        await safe_send("typing", self.messenger.set_typing(channel_id, True), timeout)

    async def _deliver(self, channel_id: str, reply: Reply) -> None:
        if self.messenger is None:
            return
        timeout = self.settings.timeouts.messaging
        await deliver_reply(self.messenger, channel_id, reply, timeout=timeout)
        await safe_send("typing", self.messenger.set_typing(channel_id, False), timeout)

    async def _commit(self, user: User, channel_id: str, transition: Transition) -> None:
        """Store the outbound message, then the new state."""
        if transition.reply.text:
            await self._blocking(
                self.persistence.save_message, user.id, "assistant", transition.reply.text
            )

        if transition.state is not None:
            context = transition.context.to_dict() if transition.context else {}
            await self._blocking(self.state_store.set, channel_id, transition.state, context)
        else:
            # Refreshes last_interaction without touching state
            await self._blocking(self.state_store.merge_context, channel_id, transition.merge or {})

    # Routing

    async def _handle_message(
        self,
        user: User,
        stored: StoredState,
        result: IntentResult,
        text: str,
    ) -> Transition:
        state = stored.state
        context = DialogueContext.from_dict(stored.context)

        intent = result.intent
        if result.confidence < self.settings.retrieval.min_intent_confidence:
            intent = Intent.UNKNOWN

        if state == DialogueState.COLLECTING_USER_DATA and intent not in _EXIT_INTENTS:
            contact = parse_contact_data(text)
            if contact is not None:
                return await self._collect_contact(user, context, contact)

        if (
            state == DialogueState.AWAITING_PRODUCTS
            and intent not in _EXIT_INTENTS
            and intent not in (Intent.PLACE_ORDER, Intent.CONFIRM_ORDER)
        ):
            lines = parse_cart_lines(text)
            if lines:
                return await self._add_cart_lines(context, lines)

        return await self._dispatch(intent, user, state, context, text)

    async def _handle_postback(self, user: User, stored: StoredState, payload: str) -> Transition:
        state = stored.state
        context = DialogueContext.from_dict(stored.context)

        if payload.startswith(ADD_PRODUCT_PREFIX):
            return await self._add_product(context, payload[len(ADD_PRODUCT_PREFIX):])

        if payload == "VIEW_PRODUCTS":
            return await self._show_categories()

        if payload in ("FAQ", "ASK_AGAIN"):
            return Transition(Reply(
                text="¿Qué te gustaría saber? Puedo ayudarte con información sobre "
                     "productos, servicios, horarios, etc."
            ))

        if payload == "ADD_MORE":
            return Transition(Reply(
                text="¿Qué otro producto necesitas? Escríbelo con la cantidad.\n\n" + PRODUCT_FORMAT_HINT
            ))

        if payload == "VIEW_SUMMARY":
            if context.has_products:
                return await self._order_summary(context)
            return await self._place_order(state, context)

        intent = POSTBACK_INTENTS.get(payload)
        if intent is None:
            logger.warning(f"Unknown postback payload: {payload}")
            return Transition(Reply(text=CAPABILITIES))

        return await self._dispatch(intent, user, state, context, payload)

    async def _dispatch(
        self,
        intent: Intent,
        user: User,
        state: DialogueState,
        context: DialogueContext,
        text: str,
    ) -> Transition:
        logger.debug(f"Handling intent: {intent.value}, state: {state.value}")

        try:
            if intent == Intent.GREETING:
                return self._greeting(user)
            if intent in FAQ_INTENTS:
                return await self._faq(text)
            if intent == Intent.PRODUCT_INQUIRY:
                return await self._product_inquiry(text)
            if intent == Intent.REQUEST_QUOTE:
                return self._request_quote()
            if intent == Intent.PLACE_ORDER:
                return await self._place_order(state, context)
            if intent == Intent.CONFIRM_ORDER:
                return await self._confirm_order(user, state, context)
            if intent == Intent.CANCEL_ORDER:
                return self._cancel()
            if intent == Intent.CHECK_ORDER_STATUS:
                return await self._order_status(user)
            if intent == Intent.GOODBYE:
                return self._goodbye()
            return await self._unknown(text)

        except InvalidStateError as e:
            logger.info(f"Ignored {intent.value} in state {state.value}: {e.code}")
            return Transition(Reply(text=e.message))

    # Handlers

    def _greeting(self, user: User) -> Transition:
        name = f" {user.first_name}" if user.first_name else ""
        text = (
            f"¡Hola{name}! 👋 Bienvenido a {self.settings.bot.store_name}.\n\n"
            "¿En qué puedo ayudarte hoy?"
        )
        reply = Reply(
            text=text,
            buttons=[
                Button("🛠️ Ver Productos", "VIEW_PRODUCTS"),
                Button("💰 Hacer Pedido", "PLACE_ORDER"),
                Button("❓ Preguntas Frecuentes", "FAQ"),
            ],
        )
        return Transition(reply, state=DialogueState.INITIAL, context=DialogueContext())

    async def _faq(self, question: str) -> Transition:
        result = await self._retrieve(question, self.settings.retrieval.faq_threshold)

        if not result.found:
            return Transition(Reply(text=FAQ_NOT_FOUND))

        logger.debug(f"FAQ answered from {result.source} ({result.confidence:.3f})")
        return Transition(Reply(
            text=result.answer,
            quick_replies=[
                QuickReply("Ver productos", "VIEW_PRODUCTS"),
                QuickReply("Hacer pedido", "PLACE_ORDER"),
                QuickReply("Otra pregunta", "ASK_AGAIN"),
            ],
        ))

    async def _show_categories(self) -> Transition:
        categories = await self._blocking(self.persistence.get_categories)
        text = (
            "Nuestras categorías:\n\n"
            + "\n".join(f"• {c}" for c in categories)
            + "\n\n¿Qué categoría te interesa?"
        )
        return Transition(Reply(text=text))

    async def _product_inquiry(self, text: str) -> Transition:
        products = await self._search_products(text, limit=5)

        if not products:
            categories = await self._blocking(self.persistence.get_categories)
            followups = []
            if categories:
                followups.append("Categorías disponibles:\n" + "\n".join(f"• {c}" for c in categories))
            return Transition(Reply(
                text="No encontré productos con ese nombre. ¿Podrías ser más específico? "
                     "O puedo mostrarte nuestras categorías disponibles.",
                followups=followups,
            ))

        cards = [
            Card(
                title=p.name,
                subtitle=f"{self._price(p.price)} - Stock: {p.stock} {p.unit}",
                image_url=p.image_url,
                buttons=[Button("Agregar a pedido", f"{ADD_PRODUCT_PREFIX}{p.id}")],
            )
            for p in products[:3]
        ]

        followups = []
        if len(products) > 3:
            followups.append(
                f"Encontré {len(products)} productos. Te muestro los primeros 3. ¿Quieres ver más?"
            )

        noun = "producto" if len(products) == 1 else "productos"
        return Transition(Reply(
            text=f"Encontré {len(products)} {noun}:",
            cards=cards,
            followups=followups,
        ))

    def _request_quote(self) -> Transition:
        text = (
            "¡Perfecto! Para cotizar, necesito que me digas qué productos te interesan.\n\n"
            "Puedes escribir el nombre del producto o enviármelo en este formato:\n"
            "• Cemento x 3\n"
            "• Fierro 1/2\" x 5\n"
            "• Pintura blanca x 2"
        )
        return Transition(
            Reply(text=text),
            state=DialogueState.AWAITING_PRODUCTS,
            context=DialogueContext(action="quote"),
        )

    async def _place_order(self, state: DialogueState, context: DialogueContext) -> Transition:
        if state == DialogueState.INITIAL or not context.has_products:
            text = "Para hacer un pedido, primero dime qué productos necesitas.\n\n" + PRODUCT_FORMAT_HINT
            return Transition(
                Reply(text=text),
                state=DialogueState.AWAITING_PRODUCTS,
                context=DialogueContext(action="order", selected_products=[]),
            )

        return await self._order_summary(context)

    async def _order_summary(self, context: DialogueContext) -> Transition:
        lines = context.selected_products or []
        products = await self._blocking(
            self.persistence.get_products_by_ids, [line.id for line in lines]
        )
        by_id = {p.id: p for p in products}

        resolved: List[CartLine] = []
        missing: List[int] = []
        total = 0.0
        summary = "📋 *Resumen de tu pedido:*\n\n"

        for line in lines:
            product = by_id.get(line.id)
            if product is None:
                missing.append(line.id)
                continue

            subtotal = product.price * line.quantity
            total += subtotal
            resolved.append(line)
            summary += f"{len(resolved)}. {product.name}\n"
            summary += f"   Cantidad: {line.quantity} {product.unit}\n"
            summary += f"   Precio: {self._price(product.price)} c/u\n"
            summary += f"   Subtotal: {self._price(subtotal)}\n\n"

        if missing:
            error = DataInconsistencyError(
                "Cart references unknown products", details={"product_ids": missing}
            )
            logger.warning(f"{error.message}: {error.details}")

        if not resolved:
            return Transition(Reply(
                text="No pude encontrar los productos de tu pedido. "
                     "¿Podrías indicarme nuevamente qué necesitas?"
            ))

        if missing:
            summary += "⚠️ Algunos productos ya no están disponibles y los quité del pedido.\n\n"

        total = round(total, 2)
        summary += f"💰 *Total: {self._price(total)}*\n\n"
        summary += "¿Deseas confirmar este pedido?"

        new_context = replace(context, selected_products=resolved, total=total)
        return Transition(
            Reply(
                text=summary,
                quick_replies=[
                    QuickReply("✅ Sí, confirmar", "CONFIRM_ORDER"),
                    QuickReply("❌ No, cancelar", "CANCEL_ORDER"),
                ],
                quick_reply_prompt="Confirmar pedido:",
            ),
            state=DialogueState.AWAITING_CONFIRMATION,
            context=new_context,
        )

    async def _confirm_order(
        self,
        user: User,
        state: DialogueState,
        context: DialogueContext,
    ) -> Transition:
        if state != DialogueState.AWAITING_CONFIRMATION:
            raise InvalidStateError(
                "No hay ningún pedido pendiente de confirmar. ¿Quieres hacer un pedido nuevo?",
                details={"state": state.value},
            )

        if not user.has_delivery_data:
            return Transition(
                Reply(text=CONTACT_PROMPT),
                state=DialogueState.COLLECTING_USER_DATA,
                context=context,
            )

        return await self._create_order(user, context)

    async def _collect_contact(self, user: User, context: DialogueContext, contact) -> Transition:
        user = await self._blocking(
            self.persistence.update_user,
            user.id,
            first_name=contact.first_name,
            last_name=contact.last_name,
            phone=contact.phone,
            address=contact.address,
        )
        logger.info(f"Stored delivery data for user {user.id}")

        if not context.has_products:
            return Transition(
                Reply(
                    text="¡Gracias! Registré tus datos de entrega.\n\n"
                         "Tu pedido no tiene productos. Escribe los productos que necesitas.\n\n"
                         + PRODUCT_FORMAT_HINT
                ),
                state=DialogueState.AWAITING_PRODUCTS,
                context=DialogueContext(action="order", selected_products=[]),
            )

        transition = await self._create_order(user, context)
        transition.reply = replace(
            transition.reply,
            text="¡Gracias! Registré tus datos de entrega.\n\n" + transition.reply.text,
        )
        return transition

    async def _create_order(self, user: User, context: DialogueContext) -> Transition:
        retry = [
            QuickReply("🔁 Reintentar", "CONFIRM_ORDER"),
            QuickReply("❌ Cancelar", "CANCEL_ORDER"),
        ]

        if not context.has_products:
            raise InvalidStateError(
                "Tu pedido no tiene productos. Escribe los productos que necesitas.\n\n"
                + PRODUCT_FORMAT_HINT
            )

        request = OrderRequest(
            user_id=user.id,
            items=[OrderLine(line.id, line.quantity) for line in context.selected_products],
            delivery_address=user.address,
            delivery_phone=user.phone,
            notes=context.notes,
        )

        try:
            order = await self._blocking(
                self.persistence.create_order, request, timeout=self.settings.timeouts.order
            )
        except InsufficientStockError as e:
            logger.warning(f"Order rejected for user {user.id}: {e.message}")
            text = (
                f"No tenemos stock suficiente de {e.product_name} "
                f"(disponible: {e.available}). Ajusta la cantidad o intenta nuevamente."
            )
            return Transition(
                Reply(text=text, quick_replies=retry, quick_reply_prompt="¿Qué deseas hacer?"),
                state=DialogueState.AWAITING_CONFIRMATION,
                context=context,
            )
        except ProductNotFoundError as e:
            logger.warning(f"Order rejected for user {user.id}: {e.message}")
            return Transition(
                Reply(
                    text="Uno de los productos de tu pedido ya no está disponible. "
                         "Por favor revisa tu pedido e intenta nuevamente.",
                    quick_replies=retry,
                    quick_reply_prompt="¿Qué deseas hacer?",
                ),
                state=DialogueState.AWAITING_CONFIRMATION,
                context=context,
            )
        except Exception as e:
            if isinstance(e, asyncio.TimeoutError):
                logger.error(f"Order creation timed out for user {user.id}")
            else:
                logger.error(f"Order creation failed for user {user.id}: {e}", exc_info=True)
            return Transition(
                Reply(
                    text="Hubo un error al procesar tu pedido. Por favor intenta nuevamente "
                         "o contáctanos directamente.",
                    quick_replies=retry,
                    quick_reply_prompt="¿Qué deseas hacer?",
                ),
                state=DialogueState.AWAITING_CONFIRMATION,
                context=context,
            )

        self.stats.orders_created += 1
        text = (
            "✅ *¡Pedido confirmado!*\n\n"
            f"📦 Número de pedido: *{order.order_number}*\n"
            f"💰 Total: {self._price(order.total_amount)}\n\n"
            f"📍 Entrega en: {order.delivery_address}\n"
            f"📞 Contacto: {order.delivery_phone}\n\n"
            "Procesaremos tu pedido pronto. ¡Gracias por tu compra! 🎉"
        )
        return Transition(
            Reply(text=text),
            state=DialogueState.ORDER_CONFIRMED,
            context=DialogueContext(order_id=order.id),
        )

    def _cancel(self) -> Transition:
        return Transition(
            Reply(text="Pedido cancelado. ¿Hay algo más en lo que pueda ayudarte?"),
            state=DialogueState.INITIAL,
            context=DialogueContext(),
        )

    async def _order_status(self, user: User) -> Transition:
        orders = await self._blocking(self.persistence.find_orders_by_user, user.id, 3)

        if not orders:
            return Transition(Reply(
                text="Aún no tienes pedidos registrados. ¿Quieres hacer uno?",
                quick_replies=[QuickReply("Hacer pedido", "PLACE_ORDER")],
                quick_reply_prompt="Opciones:",
            ))

        lines = [
            f"📦 {o.order_number} - {ORDER_STATUS_LABELS.get(o.status, o.status)} - "
            f"{self._price(o.total_amount)}"
            for o in orders
        ]
        return Transition(Reply(text="Tus últimos pedidos:\n\n" + "\n".join(lines)))

    def _goodbye(self) -> Transition:
        return Transition(
            Reply(text="¡Hasta pronto! Fue un gusto ayudarte. Estamos disponibles cuando nos necesites. 👋"),
            state=DialogueState.INITIAL,
            context=DialogueContext(),
        )

    async def _unknown(self, text: str) -> Transition:
        result = await self._retrieve(text, self.settings.retrieval.fallback_threshold)
        if result.found:
            return Transition(Reply(text=result.answer))
        return Transition(Reply(text=CAPABILITIES))

    async def _add_product(self, context: DialogueContext, raw_id: str) -> Transition:
        try:
            product_id = int(raw_id)
        except ValueError:
            return Transition(Reply(text="Producto no encontrado."))

        product = await self._blocking(self.persistence.get_product, product_id)
        if product is None:
            return Transition(Reply(text="Producto no encontrado."))

        selected = list(context.selected_products or [])
        selected.append(CartLine(id=product.id, quantity=1))

        return Transition(
            Reply(
                text=f"✅ {product.name} agregado a tu pedido.\n\n"
                     "¿Quieres agregar más productos o proceder con el pedido?",
                quick_replies=[
                    QuickReply("Agregar más", "ADD_MORE"),
                    QuickReply("Ver resumen", "VIEW_SUMMARY"),
                    QuickReply("Cancelar", "CANCEL_ORDER"),
                ],
                quick_reply_prompt="Opciones:",
            ),
            merge={"selectedProducts": [line.to_dict() for line in selected]},
        )

    async def _add_cart_lines(self, context: DialogueContext, lines) -> Transition:
        added = []
        not_found = []

        for name, quantity in lines:
            products = await self._search_products(name, limit=1)
            if products:
                added.append((products[0], quantity))
            else:
                not_found.append(name)

        if not added:
            return Transition(Reply(
                text="No encontré esos productos: " + ", ".join(not_found)
                     + ". ¿Podrías escribirlos de otra forma?"
            ))

        selected = list(context.selected_products or [])
        selected.extend(CartLine(id=p.id, quantity=q) for p, q in added)
        new_context = replace(
            context,
            action=context.action or "order",
            selected_products=selected,
        )

        text = "✅ Agregué a tu pedido:\n"
        for product, quantity in added:
            text += f"• {product.name} x {quantity} - {self._price(product.price * quantity)}\n"
        if not_found:
            text += "\n⚠️ No encontré: " + ", ".join(not_found) + "\n"

        if new_context.action == "quote":
            products = await self._blocking(
                self.persistence.get_products_by_ids, [line.id for line in selected]
            )
            prices = {p.id: p.price for p in products}
            quote_total = round(
                sum(prices.get(line.id, 0.0) * line.quantity for line in selected), 2
            )
            new_context = replace(new_context, total=quote_total)
            text += f"\n💰 Total cotizado: {self._price(quote_total)}"
            quick_replies = [
                QuickReply("Agregar más", "ADD_MORE"),
                QuickReply("Hacer pedido", "VIEW_SUMMARY"),
                QuickReply("Cancelar", "CANCEL_ORDER"),
            ]
        else:
            quick_replies = [
                QuickReply("Agregar más", "ADD_MORE"),
                QuickReply("Ver resumen", "VIEW_SUMMARY"),
                QuickReply("Cancelar", "CANCEL_ORDER"),
            ]

        return Transition(
            Reply(text=text.rstrip(), quick_replies=quick_replies, quick_reply_prompt="Opciones:"),
            state=DialogueState.AWAITING_PRODUCTS,
            context=new_context,
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "turns": self.stats.turns,
            "postbacks": self.stats.postbacks,
            "errors": self.stats.errors,
            "orders_created": self.stats.orders_created,
            "intents": dict(self.stats.intents),
        }
