"""Find My Group: need posts, interest expressions, and group formation."""

from app.find_my_group.api import router

__all__ = ["router"]
