from app.routers import admin

__all__ = ["admin"]
