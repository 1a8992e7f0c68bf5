# app/models/extract_models.py
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime


class ExtractPage(BaseModel):
    page: int
    text_layer: str
    ocr_text: Optional[str] = None  # None: page could not be rasterized

    def combined(self) -> str:
        if self.ocr_text is None:
            return f"{self.text_layer}\n\n"
        return f"{self.text_layer}\n{self.ocr_text}\n\n"


def extracted_text_name(file_name: str) -> str:
    """`exam.pdf` -> `exam_extracted.txt`"""
    stem = file_name[:-4] if file_name.lower().endswith(".pdf") else file_name
    return f"{stem}_extracted.txt"


class ExtractedDocument(BaseModel):
    model_config = ConfigDict(frozen=True)

    file_name: str
    page_count: int = Field(..., ge=1)
    full_text: str


class ExtractionProgress(BaseModel):
    """
    `percent` is measured progress. `indeterminate` marks work whose length is
    unknown (remote generation); percent is then None instead of a made-up number.
    """
    percent: Optional[int] = Field(default=0, ge=0, le=100)
    indeterminate: bool = False

    @classmethod
    def unknown(cls) -> "ExtractionProgress":
        return cls(percent=None, indeterminate=True)


class UploadRecord(BaseModel):
    id: str
    owner_id: str
    file_name: str
    file_path: str
    extracted_text: Optional[str] = None
    created_at: datetime


class ExtractionOutcome(BaseModel):
    document: ExtractedDocument
    upload: Optional[UploadRecord] = None
    warning: Optional[str] = None  # non-fatal persistence failure message
