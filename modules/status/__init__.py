from modules.status.module import StatusModule

__all__ = ["StatusModule"]
