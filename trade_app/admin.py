from django.contrib import admin
from .models import Trade, TradeImage, Conversation, Message, display_name


class TradeImageInline(admin.TabularInline):
    model = TradeImage
    extra = 0
    readonly_fields = ["created_at"]


@admin.register(Trade)
class TradeAdmin(admin.ModelAdmin):
    list_display = ["id", "title", "user", "image_count", "created_at", "updated_at"]
    list_filter = ["created_at"]
    search_fields = ["title", "description", "user__username", "user__email"]
    readonly_fields = ["created_at", "updated_at"]
    inlines = [TradeImageInline]

    def image_count(self, obj):
        return obj.images.count()
    image_count.short_description = "Images"


@admin.register(Conversation)
class ConversationAdmin(admin.ModelAdmin):
    list_display = ["id", "get_participants", "pair_key", "created_at", "message_count"]
    list_filter = ["created_at"]
    search_fields = ["sender__username", "sender__email", "recipient__username", "recipient__email"]
    readonly_fields = ["pair_key", "created_at"]

    def get_participants(self, obj):
        return f"{display_name(obj.sender)}, {display_name(obj.recipient)}"
    get_participants.short_description = "Participants"

    def message_count(self, obj):
        return obj.messages.count()
    message_count.short_description = "Messages"


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ["id", "conversation", "user", "body_preview", "created_at"]
    list_filter = ["created_at"]
    search_fields = ["body", "user__username", "user__email"]
    readonly_fields = ["created_at"]
    date_hierarchy = "created_at"

    def body_preview(self, obj):
        return obj.body[:50] + "..." if len(obj.body) > 50 else obj.body
    body_preview.short_description = "Body"


admin.site.site_header = "Trade Market Admin"
admin.site.site_title = "Trade Market Admin Portal"
admin.site.index_title = "Welcome to Trade Market Admin Portal"
