"""
Document ingestion package for loading policy documents from disk.
"""

from .pdf_loader import load_pdf, load_pdf_text
from .policy_loader import PolicyStore, PolicyParseError, normalize_identifier, DEFAULT_EXTENSIONS

__all__ = ['load_pdf', 'load_pdf_text', 'PolicyStore', 'PolicyParseError',
           'normalize_identifier', 'DEFAULT_EXTENSIONS']
