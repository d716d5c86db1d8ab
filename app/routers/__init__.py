# API Routers - EduChain document portal

from app.routers import auth, documents, health

__all__ = ["auth", "documents", "health"]
