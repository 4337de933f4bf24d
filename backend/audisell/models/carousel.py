from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Text
from sqlmodel import Field, SQLModel

from audisell.core.clock import utcnow


class CarouselStatus(str, Enum):
    QUEUED = "QUEUED"
    TRANSCRIBING = "TRANSCRIBING"
    SCRIPTING = "SCRIPTING"
    GENERATING = "GENERATING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (CarouselStatus.COMPLETED, CarouselStatus.FAILED)


class TextMode(str, Enum):
    compact = "compact"
    creative = "creative"
    single = "single"


class CreativeTone(str, Enum):
    emotional = "emotional"
    professional = "professional"
    provocative = "provocative"


class Template(str, Enum):
    solid = "solid"
    gradient = "gradient"
    image_top = "image_top"


class SlideCountMode(str, Enum):
    auto = "auto"
    manual = "manual"


class SlideFormat(str, Enum):
    POST_SQUARE = "POST_SQUARE"
    POST_PORTRAIT = "POST_PORTRAIT"
    STORY = "STORY"


class SlideStyle(str, Enum):
    BLACK_WHITE = "BLACK_WHITE"
    WHITE_BLACK = "WHITE_BLACK"


class Carousel(SQLModel, table=True):
    """One audio recording and the slide carousel generated from it."""
    id: UUID = Field(default_factory=uuid4, primary_key=True, index=True)
    user_id: UUID = Field(foreign_key="user.id", index=True)
    status: CarouselStatus = Field(default=CarouselStatus.QUEUED, index=True)

    audio_url: Optional[str] = Field(default=None)
    audio_mime_type: Optional[str] = Field(default=None, max_length=80)
    audio_duration: Optional[float] = Field(default=None, description="Seconds, when the client reports it")

    transcription: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    script: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    tone: CreativeTone = Field(default=CreativeTone.professional)
    text_mode: TextMode = Field(default=TextMode.compact)
    slide_count_mode: SlideCountMode = Field(default=SlideCountMode.auto)
    requested_slide_count: int = Field(default=6)
    template: Template = Field(default=Template.solid)
    format: SlideFormat = Field(default=SlideFormat.POST_SQUARE)
    style: SlideStyle = Field(default=SlideStyle.BLACK_WHITE)
    language: str = Field(default="pt-BR", max_length=10)

    slide_count: Optional[int] = Field(default=None)
    image_urls: Optional[list] = Field(default=None, sa_column=Column(JSON))
    has_watermark: bool = Field(default=True)

    error_message: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    processing_time: Optional[float] = Field(default=None, description="Seconds from start to COMPLETED")

    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = Field(default=None)


class CarouselPublic(SQLModel):
    id: UUID
    status: CarouselStatus
    transcription: Optional[str] = None
    script: Optional[dict] = None
    tone: CreativeTone
    text_mode: TextMode
    template: Template
    format: SlideFormat
    style: SlideStyle
    language: str
    slide_count: Optional[int] = None
    image_urls: Optional[list] = None
    has_watermark: bool
    error_message: Optional[str] = None
    processing_time: Optional[float] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class CarouselStatusPublic(SQLModel):
    id: UUID
    status: CarouselStatus
    error_message: Optional[str] = None
    slide_count: Optional[int] = None
    updated_at: datetime
