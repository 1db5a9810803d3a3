"""
Encounter packet boundary.

Design intent:
- Synthesize a signable SOAP packet from the transcript and visual findings.
- Never propagate a malformed model response to callers.
"""
