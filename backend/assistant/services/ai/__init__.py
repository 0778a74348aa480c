"""
LLM-facing services: intent classification, chat tools and the streaming
chat orchestrator.
"""
