"""Form validation package."""

from ledesc.validation.validator import FormResult, FormValidator

__all__ = ["FormResult", "FormValidator"]
