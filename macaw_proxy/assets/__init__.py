from .loader import InjectionPayload, load_payload

__all__ = ["InjectionPayload", "load_payload"]
