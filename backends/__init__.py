from backends.base import BackendClient as BackendClient
from backends.gemini import GeminiBackend as GeminiBackend

__all__ = ["BackendClient", "GeminiBackend"]
