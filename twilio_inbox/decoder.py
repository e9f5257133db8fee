"""
Request body decoding.

Twilio posts application/x-www-form-urlencoded; JSON is accepted as well so
callbacks can be replayed by hand while testing.
"""

import json
import logging
from typing import Any, List, Tuple

from starlette.datastructures import UploadFile
from starlette.requests import Request

from twilio_inbox.params import CallbackParams

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


class InvalidBodyError(Exception):
    """The request body could not be read."""


def is_form_content(content_type: str) -> bool:
    return any(form_type in content_type for form_type in FORM_CONTENT_TYPES)


def stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"))


def params_from_json(raw_body: bytes) -> CallbackParams:
    """
    Flatten a JSON object's top-level fields into params.

    Malformed JSON, or a document that isn't an object, gives empty params.
    """
    try:
        document = json.loads(raw_body) if raw_body else {}
    except ValueError as e:
        logger.warning(f"Body is not valid JSON, using empty params: {e}")
        return CallbackParams()

    if not isinstance(document, dict):
        logger.warning(f"JSON body is a {type(document).__name__}, using empty params")
        return CallbackParams()

    return CallbackParams((key, stringify(value)) for key, value in document.items())


async def decode_body(request: Request) -> CallbackParams:
    """
    Decode the request body according to its declared content type.

    Raises:
        InvalidBodyError: if the body could not be read or parsed as a form
    """
    content_type = request.headers.get("content-type", "")

    try:
        if is_form_content(content_type):
            form = await request.form()
            pairs: List[Tuple[str, str]] = []
            for key, value in form.multi_items():
                if isinstance(value, UploadFile):
                    value = value.filename or ""
                pairs.append((key, value))
            params = CallbackParams(pairs)
        else:
            params = params_from_json(await request.body())
    except Exception as e:
        logger.error(f"Failed to read request body: {e}")
        raise InvalidBodyError(str(e)) from e

    logger.debug(f"Decoded {len(params.pairs)} body params ({content_type or 'no content type'})")
    return params


def request_url(request: Request) -> str:
    """
    The request URL as the client sent it.

    Starlette rebuilds request.url from the percent-decoded path, so the
    path and query are taken from the raw ASGI scope instead.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path is None:
        return str(request.url)

    url = f"{request.url.scheme}://{request.url.netloc}{raw_path.decode('latin-1')}"
    query_string = request.scope.get("query_string", b"")
    if query_string:
        url += "?" + query_string.decode("latin-1")
    return url
