"""
Structured evidence boundary.

Design intent:
- Validate tool-call payloads from the live model before they touch session state.
- Keep every category list bounded and newest-first.
- Promote labs/tests and treatments into suggested orders.
"""
