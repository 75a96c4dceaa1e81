from .html import inject

__all__ = ["inject"]
