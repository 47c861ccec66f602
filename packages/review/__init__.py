"""Review submission and due-card selection."""

from packages.review.selector import DueCardSelector
from packages.review.service import ReviewService

__all__ = ["DueCardSelector", "ReviewService"]
