"""
FAQ knowledge base.

Each entry pairs the text that gets embedded (question plus context) with
the short answer sent back to the customer.
"""

import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnowledgeDocument:
    """
    A single FAQ entry.

    Attributes:
        id: Stable identifier, reported as the answer source
        text: Text that is embedded and matched against questions
        category: faq_product, faq_service or faq_schedule
        answer: Reply sent to the user
    """
    id: str
    text: str
    category: str
    answer: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeDocument":
        return cls(
            id=str(data["id"]),
            text=data["text"],
            category=data.get("category", "faq_product"),
            answer=data.get("answer", data["text"]),
        )


DEFAULT_KNOWLEDGE_BASE: List[KnowledgeDocument] = [
    KnowledgeDocument(
        id="faq_001",
        text=(
            "¿Qué es el fierro corrugado y para qué se utiliza en construcción? "
            "El fierro corrugado es una varilla de acero con relieves en su superficie "
            "que mejora la adherencia al concreto. Se usa como refuerzo estructural en "
            "columnas, vigas y losas."
        ),
        category="faq_product",
        answer=(
            "El fierro corrugado es una varilla de acero con relieves que mejora su "
            "adherencia al concreto. Se utiliza como refuerzo estructural en columnas, "
            "vigas y losas de construcción."
        ),
    ),
    KnowledgeDocument(
        id="faq_002",
        text=(
            "¿Qué tipo de cemento se recomienda para estructuras resistentes? Para "
            "estructuras que requieren alta resistencia, se recomienda el Cemento Portland "
            "Tipo I, por su durabilidad y desempeño en obras generales."
        ),
        category="faq_product",
        answer=(
            "Para estructuras resistentes recomendamos el Cemento Portland Tipo I, por su "
            "alta durabilidad y excelente desempeño en obras de construcción general."
        ),
    ),
    KnowledgeDocument(
        id="faq_003",
        text=(
            "¿Qué ventajas tiene usar pintura látex en interiores? La pintura látex es "
            "ideal para interiores por su bajo olor, fácil aplicación, rápido secado y "
            "posibilidad de limpieza sin dañar el acabado."
        ),
        category="faq_product",
        answer=(
            "La pintura látex tiene varias ventajas: bajo olor, fácil aplicación, secado "
            "rápido y se puede limpiar fácilmente sin dañar el acabado. Es ideal para interiores."
        ),
    ),
    KnowledgeDocument(
        id="faq_004",
        text=(
            "¿Qué herramientas básicas se necesitan para trabajos domésticos? Las "
            "herramientas esenciales incluyen taladro, cinta métrica, brochas, llave "
            "ajustable, guantes de seguridad y destornilladores."
        ),
        category="faq_product",
        answer=(
            "Para trabajos domésticos necesitas: taladro, cinta métrica, brochas, llave "
            "ajustable, guantes de seguridad y destornilladores."
        ),
    ),
    KnowledgeDocument(
        id="faq_005",
        text=(
            "¿Qué beneficios ofrece un foco LED frente a uno tradicional? Los focos LED "
            "consumen menos energía, duran más tiempo y generan menos calor, lo que los "
            "hace más eficientes y seguros."
        ),
        category="faq_product",
        answer=(
            "Los focos LED consumen hasta 80% menos energía, duran mucho más tiempo (hasta "
            "25,000 horas) y generan menos calor, haciéndolos más eficientes y seguros que "
            "los focos tradicionales."
        ),
    ),
    KnowledgeDocument(
        id="faq_006",
        text=(
            "¿Qué información se necesita para registrar un pedido? Para registrar un "
            "pedido se requiere nombre completo, número de celular, dirección de entrega "
            "y una descripción clara de los productos."
        ),
        category="faq_service",
        answer=(
            "Para registrar tu pedido necesitamos: tu nombre completo, número de celular, "
            "dirección de entrega completa y la lista de productos que deseas."
        ),
    ),
    KnowledgeDocument(
        id="faq_007",
        text=(
            "¿La ferretería ofrece servicio de entrega a domicilio? Sí, ofrecemos servicio "
            "de entrega a domicilio."
        ),
        category="faq_service",
        answer="Sí, ofrecemos servicio de entrega a domicilio en Lima.",
    ),
    KnowledgeDocument(
        id="faq_008",
        text="¿Qué métodos de pago aceptan? Aceptamos transferencias bancarias, Yape y Plin.",
        category="faq_service",
        answer="Aceptamos los siguientes métodos de pago: transferencias bancarias, Yape y Plin.",
    ),
    KnowledgeDocument(
        id="faq_009",
        text=(
            "¿Cuál es el horario de atención? Atendemos de lunes a sábado entre 8:00 a.m. "
            "y 6:00 p.m."
        ),
        category="faq_schedule",
        answer="Nuestro horario de atención es de lunes a sábado de 8:00 AM a 6:00 PM.",
    ),
    KnowledgeDocument(
        id="faq_010",
        text="¿Atienden los domingos o feriados? No atendemos domingos ni feriados.",
        category="faq_schedule",
        answer=(
            "No, no atendemos los domingos ni días feriados. Estamos disponibles de lunes "
            "a sábado."
        ),
    ),
    KnowledgeDocument(
        id="faq_011",
        text=(
            "¿Puedo dejar un pedido fuera del horario de atención? Sí, puedes dejar tu "
            "solicitud. Será atendida en el siguiente horario hábil."
        ),
        category="faq_schedule",
        answer=(
            "Sí, puedes dejar tu pedido en cualquier momento a través del chat. Será "
            "procesado en nuestro próximo horario de atención."
        ),
    ),
]


def load_knowledge_base(path: Optional[str] = None) -> List[KnowledgeDocument]:
    """
    Load FAQ entries from a JSON file, or the built-in set when no path is given.

    The file holds a list of objects with id, text, category and answer.

    Raises:
        ValueError: If two entries share an id
    """
    if not path:
        return list(DEFAULT_KNOWLEDGE_BASE)

    with open(Path(path), "r", encoding="utf-8") as f:
        raw = json.load(f)

    documents = [KnowledgeDocument.from_dict(item) for item in raw]

    seen = set()
    for doc in documents:
        if doc.id in seen:
            raise ValueError(f"Duplicate knowledge document id: {doc.id}")
        seen.add(doc.id)

    logger.info(f"Loaded {len(documents)} knowledge documents from {path}")
    return documents
