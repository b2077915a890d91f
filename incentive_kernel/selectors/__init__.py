"""Read-only query selectors."""

from incentive_kernel.selectors.base import BaseSelector

__all__ = ["BaseSelector"]
