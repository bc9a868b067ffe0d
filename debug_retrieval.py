"""
Debug Retrieval Script

Shows how FAQ questions score against the knowledge base, to tune the
similarity thresholds:
1. Index - How many documents, which model, which index type?
2. Similarity scores - What do sample questions get?
3. Threshold - Which questions clear the FAQ and fallback thresholds?

Usage:
    python debug_retrieval.py
    python debug_retrieval.py "¿Hacen delivery a Surco?"
"""

import sys
import tempfile
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from config.settings import get_settings
from ferrebot.embeddings import EmbeddingService
from ferrebot.retriever import SemanticRetriever


SAMPLE_QUESTIONS = [
    "¿Cuál es el horario de atención?",
    "¿A qué hora abren los domingos?",
    "¿Hacen delivery?",
    "¿Aceptan tarjeta?",
    "¿Dónde están ubicados?",
    "¿Tienen garantía los taladros?",
    "¿Cuánto cuesta un auto?",
]


def print_section(title: str):
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


def build_retriever() -> SemanticRetriever:
    print_section("1. INDEX")

    settings = get_settings()
    embedding_service = EmbeddingService(config=settings.embedding)

    print(f"\n🔢 Model: {embedding_service.model_name}")
    print(f"🔢 Dimension: {embedding_service.dimension}")
    print(f"🗂️ Index type: {settings.vector_store.index_type}")

    # Throwaway directory so debugging never touches the persisted index
    retriever = SemanticRetriever(
        embedding_service,
        config=settings.vector_store,
        index_dir=tempfile.mkdtemp(prefix="ferrebot-debug-"),
    )
    retriever.initialize()
    print(f"📄 Documents indexed: {retriever.document_count}")
    return retriever


def debug_scores(retriever: SemanticRetriever, questions):
    print_section("2. SIMILARITY SCORES")

    retrieval = get_settings().retrieval
    print(f"\n🎯 FAQ threshold: {retrieval.faq_threshold}")
    print(f"🎯 Fallback threshold: {retrieval.fallback_threshold}")

    for question in questions:
        print(f"\n❓ {question}")
        for match in retriever.search_similar(question, k=3):
            doc = match["document"]
            score = match["similarity"]
            if score >= retrieval.faq_threshold:
                marker = "✅"
            elif score >= retrieval.fallback_threshold:
                marker = "🟡"
            else:
                marker = "❌"
            print(f"   {marker} {score:.3f}  [{doc.id}] {doc.text[:60]}")


def main():
    questions = sys.argv[1:] or SAMPLE_QUESTIONS
    retriever = build_retriever()
    debug_scores(retriever, questions)


if __name__ == "__main__":
    main()
