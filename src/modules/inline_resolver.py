"""
Inline Resource Resolver Module
Rewrites cid: references in an HTML body into base64 data URIs
"""

import base64
import logging
import re
from typing import Dict, Iterable

from .email_data import InlineResource


logger = logging.getLogger(__name__)

# Optional opening quote, the cid token, optional closing quote
CID_REFERENCE = re.compile(r"""(["']?)cid:([^"'\s>]+)(["']?)""", re.IGNORECASE)


def data_uri_mime_type(resource: InlineResource) -> str:
    """
    MIME type to use in the data URI

    A bare subtype such as "png" is assumed to be an image. This can
    mislabel non-image inline parts; it is kept for compatibility.
    """
    mime_type = resource.mime_type or resource.subtype
    if "/" not in mime_type:
        return f"image/{mime_type}"
    return mime_type


def embed_inline_images(html: str, inline_resources: Iterable[InlineResource], sink=None) -> str:
    """
    Replace cid: references with embedded data URIs

    References without a matching resource are left exactly as they were.
    Quotes around a reference are preserved.

    Args:
        html: Decoded HTML body
        inline_resources: Resources collected by the MIME walker
        sink: Optional IssueSink for unresolved references

    Returns:
        HTML with every resolvable cid: reference embedded
    """
    resources: Dict[str, InlineResource] = {}
    for resource in inline_resources or ():
        if resource.content_id and resource.content_id not in resources:
            resources[resource.content_id] = resource

    if not html or not resources or "cid:" not in html.lower():
        return html

    def replace(match: "re.Match[str]") -> str:
        opening, token, closing = match.groups()
        resource = resources.get(token)
        if resource is None:
            if sink is not None:
                sink.note(f"no inline resource for cid:{token}")
            return match.group(0)
        encoded = base64.b64encode(resource.content).decode("ascii")
        return f"{opening}data:{data_uri_mime_type(resource)};base64,{encoded}{closing}"

    return CID_REFERENCE.sub(replace, html)
