import json
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import jsonschema

from bulkgrant.errors import RequestValidationError


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
REQUEST_SCHEMA = "bulk-assignment-request.v1.schema.json"
PREVIEW_SCHEMA = "bulk-preview-request.v1.schema.json"


def schema_root() -> Path:
    return Path(__file__).resolve().parent


def split_emails(emails: Iterable[str]) -> Tuple[List[str], List[str]]:
    valid: List[str] = []
    invalid: List[str] = []
    for email in emails:
        cleaned = email.strip()
        if EMAIL_PATTERN.match(cleaned):
            valid.append(cleaned.lower())
        else:
            invalid.append(cleaned)
    return valid, invalid


def ordered_unique(values: Iterable[str]) -> List[str]:
    seen = set()
    result: List[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


class SchemaValidator:
    def __init__(self, schemas_dir: Optional[Path] = None):
        self.schemas_dir = schemas_dir or schema_root()
        self._cache: Dict[str, Dict[str, Any]] = {}

    def validate_request(self, request: Dict[str, Any], schema_name: str = REQUEST_SCHEMA) -> None:
        schema = self._load_schema(self.schemas_dir / schema_name)
        try:
            jsonschema.validate(instance=request, schema=schema)
        except jsonschema.ValidationError as exc:
            raise RequestValidationError(exc.message) from exc

    def normalize_request(
        self, request: Dict[str, Any], schema_name: str = REQUEST_SCHEMA
    ) -> Tuple[List[str], List[str]]:
        """Validate a request and return its de-duplicated emails and project ids."""
        self.validate_request(request, schema_name)
        valid, invalid = split_emails(request["user_emails"])
        if invalid:
            raise RequestValidationError("invalid email addresses", invalid_emails=invalid)
        project_ids = ordered_unique(project_id.strip() for project_id in request["project_ids"])
        if not all(project_ids):
            raise RequestValidationError("project ids must not be blank")
        return ordered_unique(valid), project_ids

    def _load_schema(self, path: Path) -> Dict[str, Any]:
        cache_key = str(path)
        if cache_key in self._cache:
            return self._cache[cache_key]
        with path.open("r", encoding="utf-8") as handle:
            schema = json.load(handle)
        self._cache[cache_key] = schema
        return schema
