# survey_incentives/schemas/common.py
from typing import Generic, List, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class Page(BaseModel, Generic[T]):
    items: List[T]
    total: int
    skip: int
    limit: int


class Message(BaseModel):
    success: bool = True
    message: str
