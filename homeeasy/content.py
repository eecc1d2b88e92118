"""Content negotiation: accept markdown (with YAML frontmatter) or JSON."""

from __future__ import annotations

import json
from typing import TypeVar

import frontmatter
from fastapi import Request, Response
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ValidationError

from homeeasy.errors import InvalidArgument

M = TypeVar("M", bound=BaseModel)

# Fields rendered as the markdown body instead of frontmatter, in priority order.
BODY_KEYS = ("content", "description", "message")


async def parse_body(request: Request, body_field: str = "description") -> dict:
    """Parse request body as JSON or markdown with YAML frontmatter.

    For markdown, the text after the frontmatter lands in ``body_field``.
    """
    content_type = request.headers.get("content-type", "")
    raw = await request.body()
    text = raw.decode("utf-8").strip()

    if not text:
        return {}

    if "application/json" in content_type:
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            raise InvalidArgument("Invalid request body") from None
        if not isinstance(data, dict):
            raise InvalidArgument("Invalid request body")
        return data

    # Try JSON first (some clients send JSON without content-type),
    # but only if it looks like JSON and content-type isn't explicitly markdown
    if text.startswith("{") and "text/markdown" not in content_type:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

    post = frontmatter.loads(text)
    result = dict(post.metadata)
    if post.content.strip():
        result[body_field] = post.content.strip()
    return result


def wants_json(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return "application/json" in accept or "text/markdown" not in accept


def render_response(
    request: Request,
    data: dict | BaseModel,
    status_code: int = 200,
    headers: dict | None = None,
) -> Response:
    """Return JSON or markdown based on Accept header."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    data = jsonable_encoder(data)

    if wants_json(request):
        return Response(
            content=json.dumps(data, indent=2),
            status_code=status_code,
            media_type="application/json",
            headers=headers,
        )

    # Markdown: structured fields as YAML frontmatter, one text field as body
    body_key = next((k for k in BODY_KEYS if isinstance(data.get(k), str)), None)
    body = data.pop(body_key) if body_key else ""
    content = frontmatter.dumps(frontmatter.Post(body, **data)) if data else body

    return Response(
        content=content,
        status_code=status_code,
        media_type="text/markdown",
        headers=headers,
    )


async def parse_model(request: Request, model: type[M], body_field: str = "description") -> M:
    """Parse the body and validate it into ``model``; 400 on any mismatch."""
    body = await parse_body(request, body_field=body_field)
    try:
        return model.model_validate(body)
    except ValidationError:
        raise InvalidArgument("Invalid request body") from None
