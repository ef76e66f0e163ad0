"""Progress import ORM models (members, mappings, progress records, jobs, errors)."""

from program_ingestion.models.progress import (
    ImportErrorModel,
    ImportJobModel,
    MemberModel,
    ProgressProgramModel,
    ProgressRecordModel,
    ProgressUserMappingModel,
)

__all__ = [
    "ImportErrorModel",
    "ImportJobModel",
    "MemberModel",
    "ProgressProgramModel",
    "ProgressRecordModel",
    "ProgressUserMappingModel",
]
