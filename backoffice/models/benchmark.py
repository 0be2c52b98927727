from typing import List
from pydantic import BaseModel

class ImportRowError(BaseModel):
    file: str
    row: int
    errors: List[str]

class ImportValidationResult(BaseModel):
    row_errors: List[ImportRowError] = []
    cross_file_errors: List[str] = []
    warnings: List[str] = []
    checksum: str = ""

    @property
    def ok(self) -> bool:
        return not self.row_errors and not self.cross_file_errors

class DryRunResult(BaseModel):
    inserts: int = 0
    updates: int = 0
    deletes: int = 0
    preview_count: int = 0
    version_id: str
