from __future__ import annotations

"""
Pydantic schemas for the Scribe API (v1).

These models validate member requests (job submission, list edits, printer
registration) and the printer's acknowledgements. Limits default to the
env-driven values in scribe_printer.core.config and may be overridden through
the validation context, e.g. context={"limits": {"MAX_MESSAGE_LEN": 10}}.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationInfo, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from scribe_printer.core.config import MAX_ITEM_LEN, MAX_LIST_ITEMS, MAX_MESSAGE_LEN, MAX_TITLE_LEN


def _has_control_chars(s: str) -> bool:
    return any((ord(c) < 32 and c not in "\n\r\t") or ord(c) == 127 for c in s)


def _limit(info: ValidationInfo, name: str, default: int) -> int:
    limits = (info.context or {}).get("limits", {})
    return int(limits.get(name, default))


# ----- Job content -----------------------------------------------------------

# Rendered list lines carry a "[x] " / "[ ] " marker in front of the item text.
_MARKER_LEN = 4


class ListContent(BaseModel):
    """Snapshot of a list at print time: title plus pre-rendered lines."""
    title: str = Field(
        description="List title printed as the receipt header",
        examples=["Groceries"],
    )
    items: List[str] = Field(
        description="Ordered lines with checked-state markers",
        examples=[["[ ] Milk", "[x] Eggs"]],
    )

    @field_validator("title")
    @classmethod
    def _title_rules(cls, v: str, info: ValidationInfo) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("title required")
        max_len = _limit(info, "MAX_TITLE_LEN", MAX_TITLE_LEN)
        if len(v) > max_len:
            raise ValueError(f"title too long (max {max_len})")
        if _has_control_chars(v):
            raise ValueError("control characters not allowed")
        return v

    @field_validator("items")
    @classmethod
    def _items_rules(cls, v: List[str], info: ValidationInfo) -> List[str]:
        if not v:
            raise ValueError("items must be a non-empty list")
        max_items = _limit(info, "MAX_LIST_ITEMS", MAX_LIST_ITEMS)
        if len(v) > max_items:
            raise ValueError(f"too many items (max {max_items})")
        max_len = _limit(info, "MAX_ITEM_LEN", MAX_ITEM_LEN) + _MARKER_LEN
        for line in v:
            if len(line) > max_len:
                raise ValueError(f"item too long (max {max_len})")
            if _has_control_chars(line):
                raise ValueError("control characters not allowed")
        return v


class MessageContent(BaseModel):
    """Free-text note."""
    message: str = Field(description="Text to print", examples=["Be home soon"])

    @field_validator("message")
    @classmethod
    def _message_rules(cls, v: str, info: ValidationInfo) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("message required")
        max_len = _limit(info, "MAX_MESSAGE_LEN", MAX_MESSAGE_LEN)
        if len(v) > max_len:
            raise ValueError(f"message too long (max {max_len})")
        if _has_control_chars(v):
            raise ValueError("control characters not allowed")
        return v


class JobSubmitRequest(BaseModel):
    """Request to create a print job from a list snapshot or a message."""
    type: Literal["list", "message"] = Field(description="Job kind")
    content: Dict[str, Any] = Field(description="ListContent or MessageContent, per type")
    list_id: Optional[str] = Field(default=None, description="Source list for list jobs")
    clear_after_print: bool = Field(
        default=False,
        description="Delete the list's items once the printer reports the job done",
    )

    @model_validator(mode="after")
    def _content_matches_type(self, info: ValidationInfo) -> "JobSubmitRequest":
        model = ListContent if self.type == "list" else MessageContent
        if self.type == "list" and not self.list_id:
            raise ValueError("list_id required for list jobs")
        try:
            self.content = model.model_validate(self.content, context=info.context).model_dump()
        except PydanticValidationError as e:
            first = e.errors()[0]
            field = ".".join(str(p) for p in first.get("loc", ()))
            raise ValueError(f"content.{field}: {first.get('msg')}") from e
        if self.type == "message":
            self.list_id = None
            self.clear_after_print = False
        return self


class JobAcceptedResponse(BaseModel):
    """Response when a print job is stored."""
    id: str = Field(description="Print job id")
    status: str = Field(description="Initial job status", examples=["pending"])


# ----- Lists, items, printers ------------------------------------------------


class ListCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class ItemCreateRequest(BaseModel):
    text: str = Field(min_length=1)
    position: Optional[int] = Field(default=None, ge=0)

    @field_validator("text")
    @classmethod
    def _text_rules(cls, v: str, info: ValidationInfo) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("text required")
        max_len = _limit(info, "MAX_ITEM_LEN", MAX_ITEM_LEN)
        if len(v) > max_len:
            raise ValueError(f"item too long (max {max_len})")
        return v


class ItemUpdateRequest(BaseModel):
    checked: bool


class PrinterCreateRequest(BaseModel):
    name: str = Field(default="Scribe Printer", min_length=1, max_length=60)


def parse(model: type[BaseModel], data: Any, context: Optional[Dict[str, Any]] = None) -> Any:
    """
    Validate a request body, turning pydantic errors into a concise
    scribe_printer ValidationError.
    """
    from scribe_printer.core.errors import ValidationError

    if not isinstance(data, dict):
        raise ValidationError("Expected a JSON object body")
    try:
        return model.model_validate(data, context=context)
    except PydanticValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        msg = str(first.get("msg") or e)
        loc = ".".join(str(p) for p in first.get("loc", ()) if p != "__root__")
        raise ValidationError(f"{loc}: {msg}" if loc else msg) from e


__all__ = [
    "ItemCreateRequest",
    "ItemUpdateRequest",
    "JobAcceptedResponse",
    "JobSubmitRequest",
    "ListContent",
    "ListCreateRequest",
    "MessageContent",
    "PrinterCreateRequest",
    "parse",
]
