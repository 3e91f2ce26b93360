# trade_app/views.py
from django.contrib import messages
from django.contrib.auth.decorators import login_required
from django.db import transaction
from django.http import Http404, JsonResponse
from django.shortcuts import get_object_or_404, redirect, render
from django.views.decorators.http import require_http_methods, require_POST
import logging

from .exceptions import AuthorizationError, NotFoundError, ValidationError
from .forms import TradeForm
from .models import Conversation, Trade, TradeImage, display_name
from .utils.messaging import (
    append_message,
    find_or_create_conversation,
    list_conversations_for_user,
    list_messages,
)
from .utils.rendering import is_trade_author, render_markdown

logger = logging.getLogger(__name__)

SHOW_ALL_PARAM = "m"


def _is_ajax(request):
    return request.headers.get("X-Requested-With") == "XMLHttpRequest"


def _error_text(error):
    return " ".join(error.messages)


def _save_images(trade, images):
    start = trade.images.count()
    for index, img in enumerate(images, start=start):
        TradeImage.objects.create(trade=trade, image=img, order=index)


def trade_list(request):
    trades = Trade.objects.select_related("user").prefetch_related("images")
    return render(request, "trades/index.html", {"trades": trades})


def trade_detail(request, trade_id):
    trade = get_object_or_404(Trade.objects.select_related("user"), id=trade_id)
    context = {
        "trade": trade,
        "trade_images": trade.images.all(),
        "is_author": is_trade_author(request.user, trade),
    }
    return render(request, "trades/detail.html", context)


@login_required
def add_trade(request):
    if request.method == "POST":
        form = TradeForm(request.POST, request.FILES)
        if form.is_valid():
            with transaction.atomic():
                trade = form.save(commit=False)
                trade.user = request.user
                trade.save()
                _save_images(trade, form.cleaned_data["images"])
            logger.info(f"Trade {trade.id} created by user {request.user.id}")
            messages.success(request, "Trade was successfully created.")
            return redirect("trade_app:trade_detail", trade_id=trade.id)
    else:
        form = TradeForm()
    return render(request, "trades/form.html", {"form": form})


@login_required
def edit_trade(request, trade_id):
    trade = get_object_or_404(Trade, id=trade_id)
    if not is_trade_author(request.user, trade):
        messages.error(request, "You are not authorized to edit this trade.")
        return redirect("trade_app:trade_detail", trade_id=trade.id)

    if request.method == "POST":
        form = TradeForm(request.POST, request.FILES, instance=trade)
        if form.is_valid():
            with transaction.atomic():
                trade = form.save()
                _save_images(trade, form.cleaned_data["images"])
            messages.success(request, "Trade was successfully updated.")
            return redirect("trade_app:trade_detail", trade_id=trade.id)
    else:
        form = TradeForm(instance=trade)
    return render(request, "trades/form.html", {"form": form, "trade": trade})


@login_required
@require_POST
def delete_trade(request, trade_id):
    trade = get_object_or_404(Trade, id=trade_id)
    if not is_trade_author(request.user, trade):
        messages.error(request, "You are not authorized to delete this trade.")
        return redirect("trade_app:trade_detail", trade_id=trade.id)

    trade.delete()
    logger.info(f"Trade {trade_id} deleted by user {request.user.id}")
    messages.success(request, "Trade was successfully destroyed.")
    return redirect("trade_app:home")


@login_required
@require_http_methods(["GET", "POST"])
def conversations_view(request):
    """List the user's conversations, or start one with `recipient_id`"""
    if request.method == "POST":
        recipient_id = request.POST.get("recipient_id", "").strip()
        try:
            conversation, created = find_or_create_conversation(request.user.id, recipient_id)
        except NotFoundError:
            raise Http404("Recipient not found")
        except ValidationError as e:
            messages.error(request, _error_text(e))
            return redirect("trade_app:conversations")
        return redirect("trade_app:conversation_messages", conversation_id=conversation.id)

    conversations = [
        {
            "conversation": conv,
            "other_participant": conv.other_participant(request.user),
            "last_activity": conv.last_activity,
        }
        for conv in list_conversations_for_user(request.user.id)
    ]
    return render(request, "conversations/index.html", {"conversations": conversations})


def _message_data(message):
    return {
        "id": message.id,
        "user": message.user.username,
        "user_name": display_name(message.user),
        "body": message.body,
        "body_html": str(render_markdown(message.body)),
        "timestamp": message.created_at.strftime("%b %d, %Y %I:%M %p"),
    }


@login_required
@require_http_methods(["GET", "POST"])
def conversation_messages(request, conversation_id):
    """Show a conversation's messages and handle sending new ones"""
    conversation = get_object_or_404(
        Conversation.objects.select_related("sender", "recipient"), id=conversation_id
    )
    if not conversation.has_participant(request.user):
        logger.warning(
            f"User {request.user.id} is not a participant of conversation {conversation_id}"
        )
        return redirect("trade_app:conversations")

    if request.method == "POST":
        try:
            message = append_message(conversation.id, request.user.id, request.POST.get("body", ""))
        except (ValidationError, AuthorizationError) as e:
            error = _error_text(e) if isinstance(e, ValidationError) else str(e)
            if _is_ajax(request):
                return JsonResponse({"success": False, "error": error}, status=400)
            messages.error(request, error)
            return redirect("trade_app:conversation_messages", conversation_id=conversation.id)

        if _is_ajax(request):
            return JsonResponse({"success": True, "message": _message_data(message)})
        return redirect("trade_app:conversation_messages", conversation_id=conversation.id)

    show_all = request.GET.get(SHOW_ALL_PARAM) == "all"
    window = list_messages(conversation.id, show_all=show_all)
    context = {
        "conversation": conversation,
        "other_participant": conversation.other_participant(request.user),
        "messages_list": window.messages,
        "truncated": window.truncated,
        "total": window.total,
    }
    return render(request, "conversations/messages.html", context)
