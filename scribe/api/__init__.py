"""
API orchestration boundary for the Silent Scribe backend.

Design intent:
- Expose thin, typed endpoints over session state and the live stream.
- Convert boundary failures into explicit HTTP status codes or visible session state.
"""
