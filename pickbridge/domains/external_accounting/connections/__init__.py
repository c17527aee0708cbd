from .service import ConnectionService

__all__ = ["ConnectionService"]
