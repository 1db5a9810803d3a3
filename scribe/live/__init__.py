"""
Live ingestion boundary.

Design intent:
- Own the single streaming connection to the hosted model per session.
- Route transcription and tool-call events into session reducers.
- Drop late events from stopped streams.
"""
