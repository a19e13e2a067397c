"""Legal document rendering."""
from .legal_notice import render_document, CRPC_91_APPLICATION, UnknownTemplateError

__all__ = ["render_document", "CRPC_91_APPLICATION", "UnknownTemplateError"]
