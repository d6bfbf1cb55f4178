"""RAG service constants and prompts.

Centralized configuration for the answer pipeline including the
per-mode system prompts, the citation instruction and canned replies.
"""

# Chunk boundaries, most preferred first
DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", " ")

# Study modes
MODE_GENERAL = "general"
MODE_QUARTERLY = "quarterly"
MODE_DEVOTIONAL = "devotional"

MODE_PROMPTS: dict[str, str] = {
    MODE_GENERAL: (
        "You are a knowledgeable Bible study assistant. Answer questions based on "
        "the provided context from devotionals, quarterlies, and Bible passages. "
        "Always cite your sources. Be respectful and doctrinally sound."
    ),
    MODE_QUARTERLY: (
        "You are helping a student study their current Sabbath School quarterly. "
        "Answer questions based on the provided lesson content. Cite specific "
        "lessons and days. Help them understand the material deeply."
    ),
    MODE_DEVOTIONAL: (
        "You are a spiritual companion helping with daily devotional study. "
        "Answer questions based on the devotional content provided. Be "
        "encouraging and practical in your responses."
    ),
}

CITATION_INSTRUCTION = (
    "Important: When answering, cite your sources using the format [1], [2], "
    "etc. corresponding to the context numbers provided."
)

# Context block
NO_CONTEXT_SENTINEL = "No relevant context found."
CONTEXT_SEPARATOR = "\n\n---\n\n"
UNKNOWN_SOURCE_LABEL = "Unknown source"

# Returned instead of calling the LLM when retrieval finds nothing
NO_RESULTS_ANSWER = "I couldn't find relevant information to answer your question."

# Inbound query limits
QUERY_MIN_LENGTH = 1
QUERY_MAX_LENGTH = 1000
