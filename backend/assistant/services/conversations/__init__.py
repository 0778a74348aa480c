"""Conversation persistence: in-flight checkpoints and final history."""
