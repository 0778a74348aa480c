"""
Assistant routing & retrieval core.

Turns a free-text utterance into a navigation action, grounding passages,
a persona decision and a checkpointed streaming response.
"""
