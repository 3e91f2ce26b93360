from django import template
from django.utils.html import format_html

from ..models import display_name as _display_name
from ..utils.rendering import gravatar_url, is_trade_author, render_markdown

register = template.Library()


@register.filter(name="markdown")
def markdown_filter(text):
    return render_markdown(text)


@register.filter
def trade_author(user, trade):
    """{% if request.user|trade_author:trade %}"""
    return is_trade_author(user, trade)


@register.filter
def display_name(user):
    return _display_name(user)


@register.simple_tag
def gravatar_for(user, size=200):
    return format_html(
        '<img src="{}" alt="{}" class="border-radius-50">',
        gravatar_url(user.email, size),
        _display_name(user),
    )


@register.simple_tag
def image_variant(trade_image, size="640x480"):
    return trade_image.variant(size)
