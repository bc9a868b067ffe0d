"""
Persistence Module

Contract for the store's users, catalogue, orders and message log, plus an
in-memory implementation used by default and in tests.

create_order() is all-or-nothing: every line is validated before any stock
moves, and stock is decremented and the order stored inside one critical
section. A ProductNotFoundError or InsufficientStockError leaves stock and
orders exactly as they were.
"""

import copy
import logging
import threading
import unicodedata
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from ferrebot.exceptions import InsufficientStockError, ProductNotFoundError
from ferrebot.memory import ConversationManager

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fold(text: str) -> str:
    """Lowercase and strip accents so "latex" finds "Látex"."""
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


@dataclass
class User:
    id: int
    channel_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def has_delivery_data(self) -> bool:
        return bool(self.phone and self.address)


@dataclass
class Product:
    id: int
    name: str
    price: float
    stock: int
    unit: str = "Unidad"
    description: str = ""
    category: str = ""
    image_url: Optional[str] = None
    is_active: bool = True


@dataclass
class OrderItem:
    product_id: int
    product_name: str
    quantity: int
    unit_price: float

    @property
    def subtotal(self) -> float:
        return round(self.unit_price * self.quantity, 2)


@dataclass
class Order:
    id: int
    order_number: str
    user_id: int
    items: List[OrderItem]
    total_amount: float
    delivery_address: str
    delivery_phone: str
    notes: str = ""
    status: str = "pending"
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class OrderLine:
    product_id: int
    quantity: int


@dataclass
class OrderRequest:
    user_id: int
    items: List[OrderLine]
    delivery_address: str
    delivery_phone: str
    notes: str = ""


ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled")


class Persistence(ABC):
    """
    Storage contract used by the dialogue orchestrator.
    """

    @abstractmethod
    def find_or_create_user(self, channel_id: str) -> User:
        pass

    @abstractmethod
    def update_user(
        self,
        user_id: int,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        phone: Optional[str] = None,
        address: Optional[str] = None,
    ) -> User:
        """Overwrite only the fields that are given and non-empty."""
        pass

    @abstractmethod
    def get_product(self, product_id: int) -> Optional[Product]:
        pass

    @abstractmethod
    def get_products_by_ids(self, product_ids: Iterable[int]) -> List[Product]:
        pass

    @abstractmethod
    def search_products(self, term: str, limit: int = 10) -> List[Product]:
        """Active products whose name or description contains term, by name."""
        pass

    @abstractmethod
    def get_categories(self) -> List[str]:
        pass

    @abstractmethod
    def create_order(self, request: OrderRequest) -> Order:
        """
        Raises:
            ProductNotFoundError: A line references an unknown or inactive product
            InsufficientStockError: A line asks for more than is in stock
        """
        pass

    @abstractmethod
    def find_order_by_number(self, order_number: str) -> Optional[Order]:
        pass

    @abstractmethod
    def find_orders_by_user(self, user_id: int, limit: int = 10) -> List[Order]:
        """Most recent first."""
        pass

    @abstractmethod
    def update_order_status(self, order_id: int, status: str) -> Order:
        pass

    @abstractmethod
    def save_message(
        self,
        user_id: int,
        role: str,
        text: str,
        intent: Optional[str] = None,
        confidence: Optional[float] = None,
    ) -> None:
        pass

    @abstractmethod
    def get_recent_context(self, user_id: int, limit: int = 5) -> List[Dict[str, str]]:
        """Last ``limit`` messages as [{"role", "content"}], oldest first."""
        pass

    @abstractmethod
    def delete_old_messages(self, days: int = 30) -> int:
        """Drop message logs idle for more than ``days``; returns how many."""
        pass


DEFAULT_CATALOG: List[Product] = [
    Product(1, "Cemento Portland Tipo I (Bolsa 42.5 kg)", 28.50, 150, "Bolsa",
            "Cemento de alta resistencia ideal para estructuras, muros y pisos.",
            "Materiales de Construcción", "https://example.com/images/cemento.jpg"),
    Product(2, 'Fierro Corrugado 1/2" x 9 m', 32.00, 200, "Unidad",
            "Varilla de acero corrugado para refuerzo de concreto en obras de construcción.",
            "Materiales de Construcción", "https://example.com/images/fierro.jpg"),
    Product(3, 'Clavo de acero 2" (caja x 1 kg)', 9.90, 80, "Caja",
            "Clavos galvanizados para carpintería y estructuras livianas.",
            "Ferretería", "https://example.com/images/clavos.jpg"),
    Product(4, "Pintura Látex Blanca 1 galón", 45.00, 60, "Galón",
            "Pintura de acabado mate para interiores, de fácil aplicación y secado rápido.",
            "Pinturas", "https://example.com/images/pintura.jpg"),
    Product(5, 'Brocha de 2" de cerda sintética', 8.50, 100, "Unidad",
            "Brocha económica y duradera, ideal para pintura en muros y superficies lisas.",
            "Herramientas", "https://example.com/images/brocha.jpg"),
    Product(6, 'Taladro Percutor 1/2" 710W (marca Truper)', 189.00, 25, "Unidad",
            "Taladro eléctrico de doble función (perforar y percutir) con mango auxiliar.",
            "Herramientas Eléctricas", "https://example.com/images/taladro.jpg"),
    Product(7, "Cinta Métrica de 5 metros", 17.00, 75, "Unidad",
            "Cinta de acero retráctil con gancho imantado y carcasa ergonómica.",
            "Herramientas", "https://example.com/images/cinta.jpg"),
    Product(8, 'Llave Stillson 14" (ajustable)', 46.00, 40, "Unidad",
            "Llave ajustable para tuberías metálicas, de cuerpo robusto y dientes templados.",
            "Herramientas", "https://example.com/images/llave.jpg"),
    Product(9, "Guantes de Seguridad de Nitrilo (par)", 11.50, 120, "Par",
            "Guantes resistentes a cortes y productos químicos, ideales para trabajos industriales.",
            "Seguridad", "https://example.com/images/guantes.jpg"),
    Product(10, "Foco LED 12W rosca E27 (luz fría)", 7.90, 200, "Unidad",
            "Foco LED de bajo consumo y larga duración, equivalente a 100W incandescente.",
            "Eléctricos", "https://example.com/images/foco.jpg"),
]


class InMemoryPersistence(Persistence):
    """
    Process-local implementation of the Persistence contract.

    Example:
        persistence = InMemoryPersistence()  # seeded with DEFAULT_CATALOG
        user = persistence.find_or_create_user("discord:123")
        order = persistence.create_order(OrderRequest(user.id, [OrderLine(1, 2)], "Av. Lima 1", "987654321"))
    """

    def __init__(
        self,
        products: Optional[List[Product]] = None,
        history: Optional[ConversationManager] = None,
    ):
        """
        Args:
            products: Catalogue (defaults to a copy of DEFAULT_CATALOG)
            history: Message log (defaults to a new ConversationManager)
        """
        catalog = products if products is not None else DEFAULT_CATALOG
        self._products: Dict[int, Product] = {p.id: copy.copy(p) for p in catalog}
        self._users: Dict[int, User] = {}
        self._users_by_channel: Dict[str, int] = {}
        self._orders: Dict[int, Order] = {}
        self._daily_sequence: Dict[str, int] = {}
        self.history = history or ConversationManager()

        self._lock = threading.RLock()
        self._next_user_id = 1
        self._next_order_id = 1

        logger.info(f"InMemoryPersistence initialized with {len(self._products)} products")

    # Users

    def find_or_create_user(self, channel_id: str) -> User:
        with self._lock:
            user_id = self._users_by_channel.get(channel_id)
            if user_id is not None:
                return copy.copy(self._users[user_id])

            user = User(id=self._next_user_id, channel_id=channel_id)
            self._next_user_id += 1
            self._users[user.id] = user
            self._users_by_channel[channel_id] = user.id
            logger.info(f"Created user {user.id} for {channel_id}")
            return copy.copy(user)

    def update_user(self, user_id, first_name=None, last_name=None, phone=None, address=None) -> User:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise KeyError(f"User {user_id} not found")

            for attr, value in (
                ("first_name", first_name),
                ("last_name", last_name),
                ("phone", phone),
                ("address", address),
            ):
                if value:
                    setattr(user, attr, value)
            return copy.copy(user)

    # Catalogue

    def get_product(self, product_id: int) -> Optional[Product]:
        with self._lock:
            product = self._products.get(product_id)
            if product is None or not product.is_active:
                return None
            return copy.copy(product)

    def get_products_by_ids(self, product_ids: Iterable[int]) -> List[Product]:
        wanted = set(product_ids)
        with self._lock:
            return [
                copy.copy(p) for p in self._products.values()
                if p.id in wanted and p.is_active
            ]

    def search_products(self, term: str, limit: int = 10) -> List[Product]:
        needle = _fold(term.strip())
        if not needle:
            return []

        with self._lock:
            matches = [
                copy.copy(p) for p in self._products.values()
                if p.is_active and (needle in _fold(p.name) or needle in _fold(p.description))
            ]
        matches.sort(key=lambda p: p.name)
        return matches[:limit]

    def get_categories(self) -> List[str]:
        with self._lock:
            return sorted({p.category for p in self._products.values() if p.is_active and p.category})

    # Orders

    def _next_order_number(self, now: datetime) -> str:
        day = now.strftime("%Y%m%d")
        sequence = self._daily_sequence.get(day, 0) + 1
        self._daily_sequence[day] = sequence
        return f"ORD-{day}-{sequence:03d}"

    def create_order(self, request: OrderRequest) -> Order:
        if not request.items:
            raise ValueError("An order needs at least one item")

        with self._lock:
            # Validate every line before touching stock
            requested: Dict[int, int] = {}
            for line in request.items:
                if line.quantity <= 0:
                    raise ValueError(f"Invalid quantity {line.quantity} for product {line.product_id}")
                product = self._products.get(line.product_id)
                if product is None or not product.is_active:
                    raise ProductNotFoundError(line.product_id)
                requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity

            for product_id, quantity in requested.items():
                product = self._products[product_id]
                if product.stock < quantity:
                    raise InsufficientStockError(product.name, quantity, product.stock)

            items = [
                OrderItem(
                    product_id=line.product_id,
                    product_name=self._products[line.product_id].name,
                    quantity=line.quantity,
                    unit_price=self._products[line.product_id].price,
                )
                for line in request.items
            ]

            for product_id, quantity in requested.items():
                self._products[product_id].stock -= quantity

            now = _utcnow()
            order = Order(
                id=self._next_order_id,
                order_number=self._next_order_number(now),
                user_id=request.user_id,
                items=items,
                total_amount=round(sum(item.subtotal for item in items), 2),
                delivery_address=request.delivery_address,
                delivery_phone=request.delivery_phone,
                notes=request.notes,
                created_at=now,
            )
            self._next_order_id += 1
            self._orders[order.id] = order

        logger.info(f"Order created: {order.order_number} for user {request.user_id}")
        return copy.deepcopy(order)

    def find_order_by_number(self, order_number: str) -> Optional[Order]:
        with self._lock:
            for order in self._orders.values():
                if order.order_number == order_number:
                    return copy.deepcopy(order)
        return None

    def find_orders_by_user(self, user_id: int, limit: int = 10) -> List[Order]:
        with self._lock:
            orders = [copy.deepcopy(o) for o in self._orders.values() if o.user_id == user_id]
        orders.sort(key=lambda o: (o.created_at, o.id), reverse=True)
        return orders[:limit]

    def update_order_status(self, order_id: int, status: str) -> Order:
        if status not in ORDER_STATUSES:
            raise ValueError(f"Unknown order status: {status}")

        with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise KeyError(f"Order {order_id} not found")
            order.status = status
            logger.info(f"Order {order.order_number} status -> {status}")
            return copy.deepcopy(order)

    # Message log

    def save_message(self, user_id, role, text, intent=None, confidence=None) -> None:
        memory = self.history.get_memory(str(user_id))
        if role == "user":
            memory.add_user_message(text, intent=intent, confidence=confidence)
        else:
            memory.add_assistant_message(text)

    def get_recent_context(self, user_id: int, limit: int = 5) -> List[Dict[str, str]]:
        return self.history.get_memory(str(user_id)).get_messages_for_llm(limit)

    def get_intent_stats(self) -> Dict[str, int]:
        return self.history.intent_stats()

    def delete_old_messages(self, days: int = 30) -> int:
        return self.history.cleanup_old_conversations(max_age_hours=days * 24)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "products": len(self._products),
                "users": len(self._users),
                "orders": len(self._orders),
            }
