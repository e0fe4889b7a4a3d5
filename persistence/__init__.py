"""
Persistence module.

Provides game-state storage built on top of the engine:
- Save (slots, validation, binary envelopes, auto-save)
"""
