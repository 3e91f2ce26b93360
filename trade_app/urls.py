from django.urls import path
from . import views

app_name = "trade_app"

urlpatterns = [
    path("", views.trade_list, name="home"),
    path("trades/new/", views.add_trade, name="add_trade"),
    path("trades/<int:trade_id>/", views.trade_detail, name="trade_detail"),
    path("trades/<int:trade_id>/edit/", views.edit_trade, name="edit_trade"),
    path("trades/<int:trade_id>/delete/", views.delete_trade, name="delete_trade"),
    path("conversations/", views.conversations_view, name="conversations"),
    path(
        "conversations/<int:conversation_id>/messages/",
        views.conversation_messages,
        name="conversation_messages",
    ),
]
