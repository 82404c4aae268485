"""Typed task details, one variant per task type."""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class BaseTaskDetails(BaseModel):
    """Fields shared by every task."""

    model_config = ConfigDict(extra="ignore")

    name: str = ""
    description: str = ""
    order: int
    error: Optional[str] = None


class SetupDetails(BaseTaskDetails):
    type: Literal["setup"] = "setup"
    directories: List[str] = Field(default_factory=list)


class UrlDiscoveryDetails(BaseTaskDetails):
    type: Literal["url_discovery"] = "url_discovery"


class MetadataExtractionDetails(BaseTaskDetails):
    type: Literal["metadata_extraction"] = "metadata_extraction"


class FileGenerationDetails(BaseTaskDetails):
    type: Literal["file_generation"] = "file_generation"


class SetNextScheduleDetails(BaseTaskDetails):
    type: Literal["set_next_schedule"] = "set_next_schedule"


class CleanupDetails(BaseTaskDetails):
    type: Literal["cleanup"] = "cleanup"
    next_run: Optional[datetime] = None


TaskDetails = Annotated[
    Union[
        SetupDetails,
        UrlDiscoveryDetails,
        MetadataExtractionDetails,
        FileGenerationDetails,
        SetNextScheduleDetails,
        CleanupDetails,
    ],
    Field(discriminator="type"),
]

_details_adapter = TypeAdapter(TaskDetails)


def parse_details(task_type: str, details: Optional[Dict[str, Any]]) -> TaskDetails:
    """
    Parse a task's stored details into its typed variant.

    Raises:
        pydantic.ValidationError: If the type is unknown or fields are invalid
    """
    data = dict(details or {})
    data["type"] = task_type
    return _details_adapter.validate_python(data)


def dump_details(details: BaseTaskDetails) -> Dict[str, Any]:
    """Serialize details for the JSON column (type lives on the row)."""
    return details.model_dump(mode="json", exclude={"type"})
