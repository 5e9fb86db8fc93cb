"""
Hardware encoder selection for VideoReview
"""

from .models import HWAccelType, EncoderProfile

__all__ = ["HWAccelType", "EncoderProfile"]
