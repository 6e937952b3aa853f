import html
import logging
import math
import re
import time
from typing import Optional

import bleach
from bleach.css_sanitizer import CSSSanitizer
from bleach.html5lib_shim import Filter

logger = logging.getLogger(__name__)

_BLOCK_ATTRS = ["style", "class"]

POST_TAGS = {
    "h1", "h2", "h3", "h4", "h5", "h6",
    "p", "div", "span", "br",
    "strong", "b", "em", "i", "u", "s", "del",
    "a", "img",
    "ul", "ol", "li",
    "blockquote", "cite",
    "code", "pre",
    "table", "thead", "tbody", "tr", "td", "th",
    "hr",
}

POST_ATTRIBUTES = {
    "a": ["href", "title", "target", "rel"],
    "img": ["src", "alt", "title", "width", "height", "style"],
    "code": ["class"],
    "pre": ["class"],
}
for _tag in ("p", "div", "span", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote",
             "ul", "ol", "li", "table", "thead", "tbody", "tr", "td", "th"):
    POST_ATTRIBUTES[_tag] = _BLOCK_ATTRS

POST_PROTOCOLS = {"http", "https", "mailto", "data"}

POST_CSS_PROPERTIES = [
    "color", "background-color", "text-align",
    "font-size", "font-weight", "font-style", "text-decoration",
    "margin", "margin-top", "margin-bottom", "margin-left", "margin-right",
    "padding", "padding-top", "padding-bottom", "padding-left", "padding-right",
]

COMMENT_TAGS = {"p", "br", "strong", "b", "em", "i", "u", "a", "code"}
COMMENT_ATTRIBUTES = {"a": ["href", "title", "target", "rel"]}
COMMENT_PROTOCOLS = {"http", "https", "mailto"}

DELTA_ATTRIBUTES = {
    "bold", "italic", "underline", "strike",
    "color", "background", "size", "font",
    "align", "list", "indent",
    "header", "blockquote", "code-block",
    "link", "image",
}

UNSAFE_URL_PREFIXES = ("javascript:", "vbscript:", "data:text/", "data:application/")

WORDS_PER_MINUTE = 200

_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_UNCLOSED_SCRIPT_STYLE_RE = re.compile(r"<(script|style)\b[^>]*>.*\Z", re.IGNORECASE | re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


class ExternalLinkFilter(Filter):
    """Open absolute http(s) links in a new tab without leaking the opener."""

    def __iter__(self):
        for token in Filter.__iter__(self):
            if token["type"] in ("StartTag", "EmptyTag") and token["name"] == "a":
                attrs = token["data"]
                href = attrs.get((None, "href"), "")
                if href.lower().startswith(("http://", "https://")):
                    attrs[(None, "target")] = "_blank"
                    attrs[(None, "rel")] = "noopener noreferrer"
            yield token


def _post_attribute_allowed(tag, name, value):
    if name not in POST_ATTRIBUTES.get(tag, ()):
        return False
    # data: URIs are only meaningful as inline images
    if tag == "a" and name == "href" and value.strip().lower().startswith("data:"):
        return False
    return True


_post_cleaner = bleach.Cleaner(
    tags=POST_TAGS,
    attributes=_post_attribute_allowed,
    protocols=POST_PROTOCOLS,
    strip=True,
    strip_comments=True,
    css_sanitizer=CSSSanitizer(allowed_css_properties=POST_CSS_PROPERTIES),
    filters=[ExternalLinkFilter],
)

_comment_cleaner = bleach.Cleaner(
    tags=COMMENT_TAGS,
    attributes=COMMENT_ATTRIBUTES,
    protocols=COMMENT_PROTOCOLS,
    strip=True,
    strip_comments=True,
    filters=[ExternalLinkFilter],
)

_text_cleaner = bleach.Cleaner(tags=set(), attributes={}, strip=True, strip_comments=True)


def _drop_script_and_style(raw: str) -> str:
    raw = _SCRIPT_STYLE_RE.sub("", raw)
    return _UNCLOSED_SCRIPT_STYLE_RE.sub("", raw)


def sanitize_post_content(raw) -> str:
    """Clean rich post HTML against the post allow-list."""
    if not raw or not isinstance(raw, str):
        return ""
    return _post_cleaner.clean(_drop_script_and_style(raw))


def sanitize_comment(raw) -> str:
    """Clean comment HTML against the stricter comment allow-list."""
    if not raw or not isinstance(raw, str):
        return ""
    return _comment_cleaner.clean(_drop_script_and_style(raw))


def extract_plain_text(raw) -> str:
    if not raw or not isinstance(raw, str):
        return ""
    text = html.unescape(_text_cleaner.clean(_drop_script_and_style(raw)))
    return _WHITESPACE_RE.sub(" ", text).strip()


def generate_excerpt(raw, max_length: int = 200) -> str:
    """
    Build a plain-text excerpt that fits in max_length characters.

    The text is cut at the last whitespace before the limit and suffixed
    with an ellipsis; the ellipsis counts towards max_length. A single word
    longer than the limit is hard-cut.
    """
    text = extract_plain_text(raw)
    if len(text) <= max_length:
        return text

    limit = max(max_length - 3, 0)
    truncated = text[:limit]
    if limit < len(text) and not text[limit].isspace():
        last_space = truncated.rfind(" ")
        if last_space > 0:
            truncated = truncated[:last_space]
    return truncated.rstrip() + "..."


def sanitize_url(url) -> str:
    if not url or not isinstance(url, str):
        return ""
    if url.strip().lower().startswith(UNSAFE_URL_PREFIXES):
        return ""
    return url


def sanitize_delta(delta) -> Optional[dict]:
    """
    Keep only allow-listed formatting attributes on each Delta operation.

    Returns None when the input is not a Delta document (a dict with an
    ``ops`` list of operation dicts).
    """
    if not isinstance(delta, dict) or not isinstance(delta.get("ops"), list):
        return None

    ops = []
    for op in delta["ops"]:
        if not isinstance(op, dict):
            return None
        clean_op = dict(op)
        attributes = op.get("attributes")
        if attributes is not None:
            if not isinstance(attributes, dict):
                return None
            safe = {key: value for key, value in attributes.items() if key in DELTA_ATTRIBUTES}
            if "link" in safe and not sanitize_url(safe["link"]):
                del safe["link"]
            clean_op["attributes"] = safe
        ops.append(clean_op)

    return {"ops": ops}


def delta_has_text(delta: Optional[dict]) -> bool:
    if not delta:
        return False
    return any(
        isinstance(op.get("insert"), str) and op["insert"].strip()
        for op in delta.get("ops", [])
    )


def validate_content_length(raw, max_length: int = 50000) -> bool:
    return len(extract_plain_text(raw)) <= max_length


def normalize_text(text) -> str:
    if not text or not isinstance(text, str):
        return ""
    return _WHITESPACE_RE.sub(" ", text).strip()


def slugify(title: str) -> str:
    """Slug from the title plus a millisecond timestamp."""
    base = re.sub(r"[^a-zA-Z0-9\s-]", "", title or "").strip().lower()
    base = re.sub(r"[\s-]+", "-", base).strip("-")
    if not base:
        base = "untitled"
    return f"{base}-{int(time.time() * 1000)}"


def calculate_read_time(raw) -> int:
    words = len(extract_plain_text(raw).split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE))
