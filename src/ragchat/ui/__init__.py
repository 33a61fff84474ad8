"""Chat client and Gradio UI for ragchat.

``ragchat.ui.app`` pulls in Gradio and is imported on demand.
"""

from .client import ERROR_MESSAGE, APIError, ChatClient, Conversation, SSEDecoder

__all__ = ["APIError", "ChatClient", "Conversation", "ERROR_MESSAGE", "SSEDecoder"]
