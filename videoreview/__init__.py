"""
VideoReview - on-demand HLS segment transcoding for object-store video
"""

__version__ = "1.0.0"
__author__ = "VideoReview Contributors"

__all__ = ["__version__"]
