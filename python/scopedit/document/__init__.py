from scopedit.document.base import DocumentModel, SemanticRanker, Span, SpanStyle

__all__ = ["DocumentModel", "SemanticRanker", "Span", "SpanStyle"]
