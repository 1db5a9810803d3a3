"""
Transcript consolidation boundary.

Design intent:
- Turn raw transcription fragments into ordered speaker turns.
- Honour explicit role labels spoken or typed into a fragment.
"""
