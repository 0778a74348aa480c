"""Embedding, similarity lookup, knowledge retrieval and destination resolution."""
