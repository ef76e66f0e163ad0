"""Progress import services."""

from program_ingestion.services.import_service import (
    ProgressImportService,
    processed_file_path,
)

__all__ = ["ProgressImportService", "processed_file_path"]
