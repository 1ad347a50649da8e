"""
api/encoder.py -- Success-response serialization.

Route handlers decide WHAT to return (a status code and a JSON-able payload)
and hand it to the Encoder stored on app.state.encoder; the Encoder decides
HOW the bytes are produced. Because the encoder is chosen in the lifespan
rather than being a module-level function, tests can inject a failing one
for a single client without racing other tests.

If encoding fails the exception propagates to the generic handler in
api/main.py and the client receives a bare 500 envelope.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder


class Encoder:
    """Pretty-printed JSON, one trailing newline."""

    media_type = "application/json"

    def encode(self, payload: Any) -> bytes:
        return (json.dumps(jsonable_encoder(payload), indent="\t", ensure_ascii=False) + "\n").encode("utf-8")

    def render(self, payload: Any, status_code: int = 200, headers: dict[str, str] | None = None) -> Response:
        return Response(
            content=self.encode(payload),
            status_code=status_code,
            headers=headers,
            media_type=self.media_type,
        )


def respond(request: Request, payload: Any, status_code: int = 200, headers: dict[str, str] | None = None) -> Response:
    """Render payload with the app's configured Encoder."""
    return request.app.state.encoder.render(payload, status_code=status_code, headers=headers)
