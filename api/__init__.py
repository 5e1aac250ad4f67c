"""
API package: FastAPI routers for chat, analysis, sessions and health.
"""
