"""Utilities module for DevZ."""

from .file_utils import FileUtils
from .formatting import FormattingUtils

__all__ = ['FileUtils', 'FormattingUtils']
