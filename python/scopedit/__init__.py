from importlib.metadata import PackageNotFoundError, version

from scopedit.article import ArticleLocator, find_article
from scopedit.document.docx_model import DocxDocumentModel
from scopedit.guard import EditGuard
from scopedit.instructions import InstructionContextExtractor, extract_tokens
from scopedit.redline.ledger import ChangeLedger
from scopedit.redline.proposal import DiffProposal
from scopedit.search import SearchResolver
from scopedit.session import EditSession, ScopedEditor

try:
    __version__ = version("scopedit")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

__all__ = [
    "ArticleLocator",
    "ChangeLedger",
    "DiffProposal",
    "DocxDocumentModel",
    "EditGuard",
    "EditSession",
    "InstructionContextExtractor",
    "ScopedEditor",
    "SearchResolver",
    "extract_tokens",
    "find_article",
    "__version__",
]
