from django import forms
from django.core.exceptions import ValidationError

from .models import Trade

MAX_TRADE_IMAGES = 5


class MultipleImageInput(forms.ClearableFileInput):
    allow_multiple_selected = True


class MultipleImageField(forms.ImageField):
    """ImageField accepting several uploads under one name"""

    def __init__(self, *args, **kwargs):
        kwargs.setdefault("widget", MultipleImageInput())
        super().__init__(*args, **kwargs)

    def clean(self, data, initial=None):
        single_clean = super().clean
        if isinstance(data, (list, tuple)):
            return [single_clean(d, initial) for d in data if d]
        return [single_clean(data, initial)] if data else []


class TradeForm(forms.ModelForm):
    images = MultipleImageField(required=False)

    class Meta:
        model = Trade
        fields = ["title", "description"]

    def clean_images(self):
        images = self.cleaned_data.get("images") or []
        existing = self.instance.images.count() if self.instance.pk else 0
        if existing + len(images) > MAX_TRADE_IMAGES:
            raise ValidationError(f"You can upload a maximum of {MAX_TRADE_IMAGES} images.")
        return images
