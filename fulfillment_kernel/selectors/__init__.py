"""Read-only query selectors."""

from fulfillment_kernel.selectors.activity_selector import ActivitySelector
from fulfillment_kernel.selectors.base import BaseSelector

__all__ = ["ActivitySelector", "BaseSelector"]
