"""
program_ingestion -- Batch import of member progress spreadsheets.

Downloads a progress workbook, parses each row strictly, reconciles it
against read-once lookup snapshots with a recency rule, upserts accepted
rows in fixed-size batches and records per-row errors on an import job.

Architecture:
    program_ingestion/ is a top-level package. It owns the progress and
    import-job tables and never touches the program finance tables.
"""
