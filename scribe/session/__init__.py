"""
Encounter session state.

Design intent:
- Hold transcript, suggestions and orders in one immutable snapshot per session.
- Apply every update as a pure replace-the-snapshot reducer.
"""
