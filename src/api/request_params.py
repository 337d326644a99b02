"""
Request parameter collection for owner forms.

Owners read their submitted fields from a namespace named after the form
(e.g. `Article`). HTML forms post bracketed keys such as
`Article[related_article_ids][]`, which are nested here into
`{"Article": {"related_article_ids": [...]}}`. JSON bodies are expected to be
nested already.
"""
import re
from collections.abc import Iterable, Mapping
from typing import Any

from fastapi import HTTPException, Request

_BRACKET_KEY = re.compile(r"^(?P<namespace>[^\[\]]+)\[(?P<field>[^\[\]]+)\](?P<is_list>\[\])?$")


def is_form_request(request: Request) -> bool:
    """Check whether the request body is form encoded."""
    content_type = request.headers.get("content-type", "")
    return content_type.startswith("application/x-www-form-urlencoded") or \
        content_type.startswith("multipart/form-data")


def nest_form_items(items: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    """
    Nest bracketed form keys under their namespace.

    `Ns[field]` sets a single value and `Ns[field][]` appends to a list. A
    hidden empty `Ns[field]` followed by list entries yields just the list, so
    a form can post an empty value to mean "none selected".
    """
    params: dict[str, Any] = {}
    for key, value in items:
        match = _BRACKET_KEY.match(key)
        if match is None:
            params[key] = value
            continue

        namespace = params.get(match["namespace"])
        if not isinstance(namespace, dict):
            namespace = params[match["namespace"]] = {}
        field = match["field"]
        if match["is_list"]:
            if not isinstance(namespace.get(field), list):
                namespace[field] = []
            namespace[field].append(value)
        else:
            namespace[field] = value
    return params


async def collect_request_params(request: Request) -> dict[str, Any]:
    """
    Collect the parameters of a request.

    Body parameters (a JSON object or form data) take precedence. Requests
    without a body, such as searches, fall back to the query string.

    Raises:
        HTTPException: 400 if a JSON body is invalid or not an object.
    """
    body = await request.body()
    if body:
        if is_form_request(request):
            form = await request.form()
            return nest_form_items(form.multi_items())
        try:
            data = await request.json()
        except ValueError as e:
            raise HTTPException(status_code=400, detail="Invalid JSON body") from e
        if not isinstance(data, dict):
            raise HTTPException(status_code=400, detail="Request body must be a JSON object")
        return data
    return nest_form_items(request.query_params.multi_items())


def owner_params(
    params: Mapping[str, Any],
    form_name: str,
    fallback_param: str | None = None,
) -> dict[str, Any]:
    """
    Pick an owner's parameters out of the request parameters.

    Looks for the form name first (e.g. `Article`), then the fallback param
    (e.g. `article`). Returns an empty dict when neither is present, which
    leaves every relation untouched.
    """
    for name in (form_name, fallback_param):
        if name is not None and isinstance(params.get(name), Mapping):
            return dict(params[name])
    return {}
