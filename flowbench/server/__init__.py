"""Token stream server (optional dependency).

Provides a FastAPI app that emits a paced, framed token sequence over a
long-lived HTTP response. Install with: pip install flowbench[server]
"""

from flowbench.server.content import CONTENT_CYCLE, Section, generate_tokens, tokenize

__all__ = [
    "CONTENT_CYCLE",
    "Section",
    "generate_tokens",
    "tokenize",
]
