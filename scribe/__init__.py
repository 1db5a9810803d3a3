"""
Silent Scribe backend package.

Design intent:
- Consolidate live transcription fragments and model tool calls into one encounter record.
- Keep domain modules (transcript/evidence/note/live) independent from the HTTP surface.
"""
