"""Scripture study retrieval-augmented answering service."""
