"""
Services Layer

Business logic for slot swapping:
- Accept domain inputs (IDs, sessions, etc.)
- Return domain outputs (models, dataclasses)
- Do NOT depend on HTTP request/response objects
- Raise slotswap.services.errors.SwapError subclasses on failure
"""
