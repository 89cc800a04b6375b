from datetime import datetime
from typing import Literal

from beanie import Document, Link
from pydantic import BaseModel, Field

from app.models.user import User

JobStatus = Literal["pending", "processing", "completed", "failed"]

DEFAULT_MODEL = "stabilityai/stable-diffusion-xl-base-1.0"
DEFAULT_SIZE = 1024


class JobParameters(BaseModel):
    width: int | None = None
    height: int | None = None


class GeneratedImage(BaseModel):
    url: str
    width: int
    height: int
    filename: str | None = None


class JobResult(BaseModel):
    images: list[GeneratedImage] = Field(default_factory=list)
    time_taken: int = 0  # ms
    model: str | None = None  # provider model that served the request
    note: str | None = None


class JobError(BaseModel):
    message: str


class Job(Document):
    user: Link[User]
    prompt: str
    negative_prompt: str | None = None
    model: str = DEFAULT_MODEL  # requested model choice, mapped to a provider model by the worker
    parameters: JobParameters = Field(default_factory=JobParameters)
    status: JobStatus = "pending"
    result: JobResult | None = None
    error: JobError | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "jobs"
        indexes = [
            [("user", 1), ("created_at", -1)],
            [("user", 1), ("status", 1), ("created_at", -1)],
            [("status", 1), ("updated_at", 1)],
        ]

    @property
    def width(self) -> int:
        return self.parameters.width or DEFAULT_SIZE

    @property
    def height(self) -> int:
        return self.parameters.height or DEFAULT_SIZE
