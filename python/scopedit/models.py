import datetime
import secrets
import time
from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, Field, PrivateAttr, model_validator

from scopedit.document.base import Span


def new_change_id() -> str:
    return f"change_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class Paragraph(BaseModel):
    index: int
    text: str
    list_label: Optional[str] = None
    style: Optional[str] = None


class ArticleBoundary(BaseModel):
    """Paragraph range owned by one located article. Computed per instruction."""

    name: str
    start_paragraph_index: int
    end_paragraph_index: int
    content: str

    @model_validator(mode="after")
    def _check_order(self) -> "ArticleBoundary":
        if self.start_paragraph_index > self.end_paragraph_index:
            raise ValueError("start_paragraph_index must be <= end_paragraph_index")
        return self


class SearchOptions(BaseModel):
    match_case: bool = False
    match_whole_word: bool = False


class ArticleScope(BaseModel):
    article_start: int
    article_end: int


class ParagraphScope(BaseModel):
    target_paragraph: int
    target_end_paragraph: int

    @property
    def is_multi_paragraph(self) -> bool:
        return self.target_end_paragraph > self.target_paragraph


Scope = Union[ParagraphScope, ArticleScope]


class ChangeState(str, Enum):
    PROPOSED = "proposed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class InsertLocation(str, Enum):
    BEFORE = "before"
    AFTER = "after"
    BEGINNING = "beginning"
    END = "end"
    INLINE = "inline"


class FormatSpec(BaseModel):
    """Character formatting requested by a format operation. ``None`` means untouched."""

    bold: Optional[bool] = None
    italic: Optional[bool] = None
    underline: Optional[bool] = None
    font_size: Optional[float] = Field(None, description="Font size in points.")
    font_color: Optional[str] = Field(None, description="Hex RGB colour, e.g. 'FF0000'.")
    highlight_color: Optional[str] = Field(None, description="Highlight name, e.g. 'yellow'.")

    def is_empty(self) -> bool:
        return all(v is None for v in self.model_dump().values())


class _ChangeBase(BaseModel):
    id: str = Field(default_factory=new_change_id)
    state: ChangeState = ChangeState.PROPOSED
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    description: str = ""
    search_text: Optional[str] = None
    scope: Optional[Scope] = None
    render_warning: Optional[str] = None

    # Span captured by the operation that created the change. Only valid until the
    # next mutation, which is why it never leaves the process.
    _span: Optional[Span] = PrivateAttr(default=None)
    # Per-paragraph pieces of the old text for changes spanning several paragraphs.
    _pieces: List[str] = PrivateAttr(default_factory=list)

    @property
    def is_pending(self) -> bool:
        return self.state == ChangeState.PROPOSED


class EditChange(_ChangeBase):
    kind: Literal["edit"] = "edit"
    old_text: str
    new_text: str


class InsertChange(_ChangeBase):
    kind: Literal["insert"] = "insert"
    new_text: str
    location: InsertLocation


class DeleteChange(_ChangeBase):
    kind: Literal["delete"] = "delete"
    old_text: str


class FormatChange(_ChangeBase):
    kind: Literal["format"] = "format"
    search_text: str
    format: FormatSpec
    previous_format: Optional[FormatSpec] = None


Change = Annotated[
    Union[EditChange, InsertChange, DeleteChange, FormatChange],
    Field(discriminator="kind"),
]


class ToolResult(BaseModel):
    """
    Structured outcome of every read/write operation.
    This is the only channel through which the agent can self-correct.
    """

    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    attempted_variants: List[str] = Field(default_factory=list)
    preview: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None, warnings: Optional[List[str]] = None) -> "ToolResult":
        return cls(success=True, data=data, warnings=list(warnings or []))

    @classmethod
    def fail(
        cls,
        error: str,
        attempted: Optional[List[str]] = None,
        preview: Optional[str] = None,
        data: Any = None,
    ) -> "ToolResult":
        return cls(success=False, error=error, attempted_variants=list(attempted or []), preview=preview, data=data)
