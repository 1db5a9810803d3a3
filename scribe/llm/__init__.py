"""
Request/response model adapters (structured generation, visual analysis).
"""
