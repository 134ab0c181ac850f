"""Task reference model for the external project directory."""
from typing import Optional

from pydantic import BaseModel


class TaskRef(BaseModel):
    """A task as resolved from the project directory."""

    id: str
    project_id: str
    title: Optional[str] = None
