from django.core.exceptions import ObjectDoesNotExist, PermissionDenied, ValidationError

__all__ = ["ValidationError", "NotFoundError", "AuthorizationError"]


class NotFoundError(ObjectDoesNotExist):
    """A referenced user, trade or conversation does not exist"""


class AuthorizationError(PermissionDenied):
    """The acting user may not perform this operation"""
