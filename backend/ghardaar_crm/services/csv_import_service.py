"""
CSV import service for loading CRM clients from spreadsheet exports.

Pipeline: raw text -> tokenize_csv() -> header auto-mapping ->
map_row_to_record() (enum / date normalisation) -> duplicate filtering ->
one bulk insert into the target sheet.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Tuple, Optional

from ..models.crm_client import LeadStage, LeadType, DealStatus
from .crm_repository import CLIENTS_TABLE, SHEETS_TABLE, PersistenceError
from .results import ErrorKind, OperationResult

logger = logging.getLogger(__name__)

# Target fields the mapper and transformer understand
IMPORT_FIELDS = (
    "client_name",
    "customer_number",
    "lead_stage",
    "lead_type",
    "location_category",
    "calling_comment",
    "expected_visit_date",
)

IMPORT_FIELD_LABELS = {
    "client_name": "Client Name",
    "customer_number": "Customer Number",
    "lead_stage": "Lead Stage",
    "lead_type": "Lead Type",
    "location_category": "Location Category",
    "calling_comment": "Calling Comment",
    "expected_visit_date": "Expected Visit Date",
}

# Columns mapped to "custom_<name>" end up in admin_notes
CUSTOM_PREFIX = "custom_"
CUSTOM_FIELDS_HEADER = "--- Custom Fields ---"


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

def tokenize_csv(text: str) -> List[List[str]]:
    """
    Split CSV text into rows of trimmed cells.

    Commas and line breaks inside double quotes are literal, "" is an escaped
    quote, and LF / CRLF both end a line. Every terminated line produces a
    row (a blank line gives [""]); a last line without terminator is kept only
    when it has content. Malformed quoting never raises: an unterminated quote
    runs to the end of the input.
    """
    rows: List[List[str]] = []
    row: List[str] = []
    cell: List[str] = []
    in_quotes = False
    i = 0
    length = len(text)

    while i < length:
        char = text[i]
        next_char = text[i + 1] if i + 1 < length else ""

        if char == '"':
            if in_quotes and next_char == '"':
                cell.append('"')
                i += 1  # Skip the escaped quote
            else:
                in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            row.append("".join(cell).strip())
            cell = []
        elif char in ("\r", "\n") and not in_quotes:
            if char == "\r" and next_char == "\n":
                i += 1
            row.append("".join(cell).strip())
            rows.append(row)
            row = []
            cell = []
        else:
            cell.append(char)
        i += 1

    if cell or row:
        row.append("".join(cell).strip())
        rows.append(row)

    return rows


# ---------------------------------------------------------------------------
# Header auto-mapping
# ---------------------------------------------------------------------------

def _match_header(header: str) -> Optional[str]:
    """Map one header to a field; the first matching rule wins."""
    lower = header.lower()
    if "client" in lower and "name" in lower:
        return "client_name"
    if "customer" in lower or "number" in lower or "phone" in lower:
        return "customer_number"
    if "lead" in lower and "stage" in lower:
        return "lead_stage"
    if "comment" in lower or "calling" in lower:
        return "calling_comment"
    if "lead" in lower and "type" in lower:
        return "lead_type"
    if "location" in lower or "category" in lower:
        return "location_category"
    if "date" in lower or "visit" in lower:
        return "expected_visit_date"
    return None


def detect_column_mapping(header_row: List[str]) -> Dict[str, str]:
    """
    Auto-detect column mapping from the header row.
    Returns {column_index (as str): field_name}; unrecognised headers are left out.
    """
    mapping: Dict[str, str] = {}
    for index, header in enumerate(header_row):
        field_name = _match_header(header or "")
        if field_name:
            mapping[str(index)] = field_name
    return mapping


def is_valid_target(field_name: Optional[str]) -> bool:
    """Whether a mapping target is an import field or a custom column."""
    if not field_name:
        return False
    if field_name.startswith(CUSTOM_PREFIX):
        return bool(field_name[len(CUSTOM_PREFIX):].strip())
    return field_name in IMPORT_FIELDS


# ---------------------------------------------------------------------------
# Value classification
# ---------------------------------------------------------------------------

def classify_lead_stage(raw: str) -> Optional[str]:
    """Classify free text into an importer lead stage, or None if unrecognised."""
    lower = (raw or "").lower()
    if "follow" in lower or "req" in lower:
        return LeadStage.FOLLOW_UP_REQ.value
    if "dnp" in lower:
        return LeadStage.DNP.value
    if "disqualified" in lower:
        return LeadStage.DISQUALIFIED.value
    if "cb" in lower or "callback" in lower or "month" in lower:
        return LeadStage.CALLBACK_LATER.value
    return None


def classify_lead_type(raw: str) -> str:
    """Classify free text into a lead type. Anything not hot or warm is cold."""
    lower = (raw or "").lower()
    if "hot" in lower:
        return LeadType.HOT.value
    if "warm" in lower:
        return LeadType.WARM.value
    return LeadType.COLD.value


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_DAY_FIRST_PATTERN = re.compile(r"^(\d{1,2})[-/](\d{1,2})[-/](\d{4})$")

# Unambiguous textual formats accepted besides ISO-8601
_TEXT_DATE_FORMATS = (
    "%d %b %Y",
    "%d %B %Y",
    "%d-%b-%Y",
    "%d-%B-%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%B %d %Y",
    "%Y/%m/%d",
)


def _parse_general_date(text: str) -> Optional[datetime]:
    # fromisoformat() only accepts a trailing Z from Python 3.11
    iso_text = text[:-1] + "+00:00" if text.endswith(("Z", "z")) else text
    try:
        return datetime.fromisoformat(iso_text)
    except ValueError:
        pass
    for fmt in _TEXT_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def normalize_date(raw: Optional[str]) -> Optional[str]:
    """
    Normalise a free-text date to YYYY-MM-DD, or None if it cannot be read.

    ISO and textual dates are parsed directly (aware values are taken in UTC);
    numeric D/M/YYYY or D-M-YYYY values are read day first.
    """
    if not raw:
        return None
    text = raw.strip()
    if not text:
        return None

    parsed = _parse_general_date(text)
    if parsed is not None:
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc)
        return parsed.date().isoformat()

    match = _DAY_FIRST_PATTERN.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        try:
            return datetime(year, month, day).date().isoformat()
        except ValueError:
            return None

    return None


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def new_client_record(sheet_id: Optional[str] = None) -> Dict[str, Any]:
    """Client record with import defaults for every field."""
    return {
        "client_name": "",
        "customer_number": None,
        "lead_stage": LeadStage.FOLLOW_UP_REQ.value,
        "lead_type": LeadType.COLD.value,
        "location_category": None,
        "calling_comment": None,
        "expected_visit_date": None,
        "deal_status": DealStatus.OPEN.value,
        "admin_notes": None,
        "sheet_id": sheet_id,
    }


def _ordered_mapping(column_mapping: Dict[str, str]) -> List[Tuple[int, str]]:
    """Mapping entries sorted by column index; non-numeric and negative keys are dropped."""
    entries = []
    for key, field_name in column_mapping.items():
        try:
            index = int(key)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring mapping for non-numeric column key {key!r}")
            continue
        if index < 0:
            logger.warning(f"Ignoring mapping for negative column key {key!r}")
            continue
        entries.append((index, field_name))
    return sorted(entries)


def map_row_to_record(
    row: List[str],
    column_mapping: Dict[str, str],
    sheet_id: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """
    Map one data row to a client record using the column mapping.

    Empty cells keep the field default. When two columns feed the same field
    the later non-empty column wins. Returns None when no client name results.
    """
    record = new_client_record(sheet_id)
    custom_data: Dict[str, str] = {}

    for column_index, field_name in _ordered_mapping(column_mapping):
        value = row[column_index].strip() if column_index < len(row) and row[column_index] else ""
        if not value:
            continue

        if field_name.startswith(CUSTOM_PREFIX):
            custom_data[field_name[len(CUSTOM_PREFIX):]] = value
        elif field_name == "lead_stage":
            stage = classify_lead_stage(value)
            if stage:
                record["lead_stage"] = stage
        elif field_name == "lead_type":
            record["lead_type"] = classify_lead_type(value)
        elif field_name == "expected_visit_date":
            record["expected_visit_date"] = normalize_date(value)
        elif field_name in IMPORT_FIELDS:
            record[field_name] = value

    if custom_data:
        lines = "\n".join(f"{key}: {val}" for key, val in custom_data.items())
        record["admin_notes"] = f"{CUSTOM_FIELDS_HEADER}\n{lines}"

    if not record["client_name"]:
        return None
    return record


# ---------------------------------------------------------------------------
# Duplicate detection
# ---------------------------------------------------------------------------

def normalize_phone(phone: Optional[str]) -> str:
    """Phone number with all whitespace removed."""
    return re.sub(r"\s+", "", phone or "")


def filter_duplicate_phones(
    records: List[Dict[str, Any]],
    existing_clients: List[Dict[str, Any]],
) -> Tuple[List[Dict[str, Any]], int]:
    """
    Drop records whose phone repeats within the file or already exists.
    Records without a phone are always kept. Returns (unique_records, skipped).
    """
    existing_phones = {
        normalize_phone(c.get("customer_number"))
        for c in existing_clients
        if normalize_phone(c.get("customer_number"))
    }
    seen_in_file: set = set()
    unique: List[Dict[str, Any]] = []

    for record in records:
        phone = normalize_phone(record.get("customer_number"))
        if not phone:
            unique.append(record)
            continue
        if phone in seen_in_file or phone in existing_phones:
            continue
        seen_in_file.add(phone)
        unique.append(record)

    return unique, len(records) - len(unique)


# ---------------------------------------------------------------------------
# Import draft (the state behind the import dialog)
# ---------------------------------------------------------------------------

class ImportDraft:
    """Parsed file plus the user-editable column mapping, kept until commit."""

    def __init__(self, has_headers: bool = True):
        self.rows: List[List[str]] = []
        self.has_headers = has_headers
        self.column_mapping: Dict[str, str] = {}

    def load(self, rows: List[List[str]]) -> None:
        """Load a tokenized matrix and infer the mapping from its header."""
        self.rows = rows
        self.infer_mapping()

    def load_text(self, text: str) -> None:
        self.load(tokenize_csv(text))

    def infer_mapping(self) -> Dict[str, str]:
        if self.rows and self.has_headers:
            self.column_mapping = detect_column_mapping(self.rows[0])
        else:
            self.column_mapping = {}
        return self.column_mapping

    def set_has_headers(self, has_headers: bool) -> None:
        """Change the header declaration; a change discards the mapping."""
        if has_headers != self.has_headers:
            self.has_headers = has_headers
            self.column_mapping = {}

    def set_column(self, column_index: int, field_name: Optional[str]) -> None:
        """Map a column to a field; None or an unknown target unmaps it."""
        key = str(column_index)
        if is_valid_target(field_name):
            self.column_mapping[key] = field_name
        else:
            if field_name:
                logger.warning(f"Unknown import field {field_name!r} for column {key}, leaving unmapped")
            self.column_mapping.pop(key, None)

    def auto_map_custom_columns(self) -> List[str]:
        """Map every unmapped, non-blank header to a custom column."""
        added: List[str] = []
        for index, header in enumerate(self.headers):
            key = str(index)
            name = header.strip()
            if key in self.column_mapping or not name:
                continue
            self.column_mapping[key] = f"{CUSTOM_PREFIX}{name}"
            if name not in added:
                added.append(name)
        return added

    @property
    def headers(self) -> List[str]:
        if not self.rows:
            return []
        if self.has_headers:
            return list(self.rows[0])
        return [f"Column {i + 1}" for i in range(len(self.rows[0]))]

    @property
    def data_rows(self) -> List[List[str]]:
        return self.rows[1:] if self.has_headers else list(self.rows)

    def build_records(self, sheet_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Transform all non-blank data rows, dropping rows without a name."""
        records = []
        for row in self.data_rows:
            if not any(cell.strip() for cell in row):
                continue
            record = map_row_to_record(row, self.column_mapping, sheet_id)
            if record is not None:
                records.append(record)
        return records

    def reset(self) -> None:
        self.rows = []
        self.column_mapping = {}


# ---------------------------------------------------------------------------
# Execute import
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ImportTarget:
    """Either an existing sheet id or the name of a sheet to create."""
    sheet_id: Optional[str] = None
    sheet_name: Optional[str] = None


@dataclass
class ImportSummary:
    sheet: Dict[str, Any]
    clients: List[Dict[str, Any]] = field(default_factory=list)
    duplicates_skipped: int = 0
    total_processed: int = 0

    @property
    def imported(self) -> int:
        return len(self.clients)


async def _resolve_sheet(repository, target: ImportTarget) -> OperationResult:
    """Fetch the existing target sheet or create a new one."""
    if target.sheet_id:
        sheets = await repository.select(SHEETS_TABLE, {"id": target.sheet_id})
        if not sheets:
            return OperationResult.failure(ErrorKind.NOT_FOUND, "Sheet not found")
        return OperationResult.success(sheets[0])

    name = target.sheet_name.strip()
    if await repository.select(SHEETS_TABLE, {"name": name}):
        return OperationResult.failure(
            ErrorKind.SHEET_EXISTS,
            "A sheet with this name already exists. Please choose a different name "
            "or select the existing sheet.",
        )
    try:
        created = await repository.insert(SHEETS_TABLE, [{
            "name": name,
            "description": f"Imported on {datetime.utcnow().strftime('%Y-%m-%d')}",
        }])
    except PersistenceError as e:
        if e.code == "integrity":
            return OperationResult.failure(ErrorKind.SHEET_EXISTS, "A sheet with this name already exists.")
        raise
    return OperationResult.success(created[0])


async def execute_import(
    repository,
    draft: ImportDraft,
    target: ImportTarget,
    existing_clients: Optional[List[Dict[str, Any]]] = None,
    store=None,
) -> OperationResult:
    """
    Execute the import: validate, de-duplicate and bulk insert the draft.

    The draft is reset only on success so a failed import can be retried
    without re-uploading. Inserted clients are merged into the store if given.
    """
    if not target.sheet_id and not (target.sheet_name or "").strip():
        return OperationResult.failure(
            ErrorKind.VALIDATION, "Please enter a sheet name or select an existing sheet."
        )

    records = draft.build_records()
    if not records:
        return OperationResult.failure(
            ErrorKind.NO_VALID_RECORDS,
            "No valid clients found to import. Please ensure Client Name is mapped.",
        )

    try:
        if existing_clients is None:
            existing_clients = await repository.select(CLIENTS_TABLE, order_by=None)

        unique_records, duplicate_count = filter_duplicate_phones(records, existing_clients)
        if not unique_records:
            return OperationResult.failure(
                ErrorKind.ALL_DUPLICATES,
                f"All {len(records)} clients were skipped as duplicates "
                f"(phone numbers already exist).",
            )

        sheet_result = await _resolve_sheet(repository, target)
        if not sheet_result.ok:
            return sheet_result
        sheet = sheet_result.value

        for record in unique_records:
            record["sheet_id"] = sheet["id"]
        inserted = await repository.insert(CLIENTS_TABLE, unique_records)

    except PersistenceError as e:
        logger.error(f"Error importing clients: {e}")
        return OperationResult.failure(ErrorKind.PERSISTENCE, f"Failed to import clients: {e}")

    if store is not None:
        store.merge_inserted(inserted)

    draft.reset()
    logger.info(
        f"Imported {len(inserted)} clients into sheet '{sheet['name']}' "
        f"({duplicate_count} duplicates skipped)"
    )
    return OperationResult.success(ImportSummary(
        sheet=sheet,
        clients=inserted,
        duplicates_skipped=duplicate_count,
        total_processed=len(records),
    ))
