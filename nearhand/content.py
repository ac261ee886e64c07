"""Content negotiation: accept markdown (with YAML frontmatter) or JSON."""

from __future__ import annotations

import json

import frontmatter
from fastapi import Request, Response
from pydantic import BaseModel

from nearhand.errors import MarketError


async def parse_body(request: Request) -> dict:
    """Parse request body as JSON or markdown with YAML frontmatter.

    In markdown, the body text becomes the task ``description``.
    """
    content_type = request.headers.get("content-type", "")
    raw = await request.body()
    text = raw.decode("utf-8").strip()

    if not text:
        return {}

    if "application/json" in content_type:
        return json.loads(text)

    # Clients often send JSON without a content-type
    if text.startswith("{") and "text/markdown" not in content_type:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass

    post = frontmatter.loads(text)
    result = dict(post.metadata)
    if post.content.strip():
        result["description"] = post.content.strip()
    return result


def wants_json(request: Request) -> bool:
    accept = request.headers.get("accept", "")
    return "application/json" in accept


def render_response(
    request: Request,
    data: dict | BaseModel,
    status_code: int = 200,
    headers: dict | None = None,
) -> Response:
    """Return JSON or markdown based on Accept header."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")

    if wants_json(request):
        return Response(
            content=json.dumps(data, indent=2),
            status_code=status_code,
            media_type="application/json",
            headers=headers,
        )

    # Copy before mutating so callers' dicts are not affected
    data = dict(data)

    # Markdown: structured fields as YAML frontmatter, prose field as body
    body_key = None
    for k in ("description", "message", "error"):
        if isinstance(data.get(k), str):
            body_key = k
            break

    if body_key:
        body = data.pop(body_key)
        if data:
            content = frontmatter.dumps(frontmatter.Post(body, **data))
        else:
            content = body
    else:
        content = frontmatter.dumps(frontmatter.Post("", **data))

    return Response(
        content=content,
        status_code=status_code,
        media_type="text/markdown",
        headers=headers,
    )


def render_error(request: Request, error: MarketError) -> Response:
    """Render a business-rule failure with its HTTP status and stable code."""
    return render_response(
        request,
        {"error": error.message, "code": error.code},
        status_code=error.status_code,
    )
