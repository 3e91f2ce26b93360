# utils/rendering.py
import hashlib

import markdown2
from django.utils.safestring import mark_safe

GRAVATAR_URL = "https://secure.gravatar.com/avatar/{hash}?s={size}"

# GitHub-flavoured extras; raw HTML in user text is escaped, never passed through
MARKDOWN_EXTRAS = ["fenced-code-blocks", "tables", "strike", "task_list", "cuddled-lists", "break-on-newline"]


def render_markdown(text):
    """
    Convert user-supplied markdown (trade descriptions, message bodies) to
    HTML that is safe to drop into a template.
    """
    if not text:
        return mark_safe("")
    html = markdown2.markdown(text, extras=MARKDOWN_EXTRAS, safe_mode="escape")
    return mark_safe(html)


def gravatar_hash(email):
    return hashlib.md5((email or "").strip().lower().encode("utf-8")).hexdigest()


def gravatar_url(email, size=200):
    return GRAVATAR_URL.format(hash=gravatar_hash(email), size=int(size))


def is_trade_author(user, trade):
    """True when `user` is signed in and owns `trade`"""
    return bool(user and user.is_authenticated and user.pk == trade.user_id)
