from __future__ import annotations  # Re-export llm_gateway public API

from .llm_gateway import Completion, HttpClient, LlmGatewayError, complete

__all__ = ["Completion", "HttpClient", "LlmGatewayError", "complete"]
