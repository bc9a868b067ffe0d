"""
Ferrebot - Conversational sales assistant for a hardware store.

Core components:
- EmbeddingService / VectorIndex / SemanticRetriever: FAQ answers by similarity
- LLMService / IntentClassifier: intent detection with a keyword fallback
- ConversationStateStore: per-user dialogue state
- Persistence: users, catalogue, orders and message log
- DialogueOrchestrator: the conversation state machine
- Assistant: wires everything together for a transport
"""

from .exceptions import FerrebotError
from .embeddings import EmbeddingService
from .vector_store import VectorIndex, SearchHit
from .knowledge_base import KnowledgeDocument, load_knowledge_base
from .retriever import SemanticRetriever, RetrievalResult
from .llm_service import LLMService, LLMResponse
from .intent_classifier import Intent, IntentClassifier, IntentResult
from .states import DialogueState, DialogueContext
from .state_store import ConversationStateStore
from .persistence import Persistence, InMemoryPersistence
from .messaging import Messenger, Reply
from .orchestrator import DialogueOrchestrator, InboundEvent
from .assistant import Assistant, build_assistant

__all__ = [
    "FerrebotError",
    # Retrieval
    "EmbeddingService",
    "VectorIndex",
    "SearchHit",
    "KnowledgeDocument",
    "load_knowledge_base",
    "SemanticRetriever",
    "RetrievalResult",
    # Classification
    "LLMService",
    "LLMResponse",
    "Intent",
    "IntentClassifier",
    "IntentResult",
    # Dialogue
    "DialogueState",
    "DialogueContext",
    "ConversationStateStore",
    "Persistence",
    "InMemoryPersistence",
    "Messenger",
    "Reply",
    "DialogueOrchestrator",
    "InboundEvent",
    "Assistant",
    # Factory functions
    "build_assistant",
]
