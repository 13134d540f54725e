"""Entity tables collected by the testing app."""

from .record import Record
from .record_store import Table
from .schema import Column, ColumnType, TableSchema

CUSTOMERS = TableSchema(
    "customers",
    [
        Column("insight_user_name", ColumnType.TEXT),
        Column("first_name", ColumnType.TEXT),
        Column("last_name", ColumnType.TEXT),
        Column("dob", ColumnType.DATE),
    ],
)

DEBUG_EXAMS = TableSchema(
    "debug_exams",
    [
        Column("tested", ColumnType.TIMESTAMP),
        Column("status", ColumnType.TEXT, default="ok"),
        Column("study_name", ColumnType.TEXT),
        Column("sequence_number", ColumnType.INTEGER),
        Column("environment", ColumnType.TEXT),
        Column("share_with", ColumnType.TEXT),
        Column("server_user_name", ColumnType.TEXT),
        Column("device_id", ColumnType.INTEGER),
        Column("app_version", ColumnType.TEXT),
        Column("latitude", ColumnType.REAL),
        Column("longitude", ColumnType.REAL),
        Column("date_of_birth", ColumnType.DATE),
        Column("fitting_quality_left", ColumnType.REAL),
        Column("fitting_quality_right", ColumnType.REAL),
        Column("prescription_email", ColumnType.TEXT),
        Column("prescription_phone", ColumnType.TEXT),
    ],
)

ENTITY_SCHEMAS = (CUSTOMERS, DEBUG_EXAMS)


def customers_for_user(table: Table, username: str) -> list[Record]:
    """Customers registered under an insight account, newest first."""
    return table.find_by("insight_user_name", username)


def _present(value: str | None) -> bool:
    return value is not None and value.strip() != ""


def is_ready_to_prescribe(exam: Record) -> bool:
    """Whether an exam has enough data to issue a prescription.

    Requires a way to reach the patient (email or phone), a study name and
    a date of birth.
    """
    has_contact = _present(exam.fields.get("prescription_email")) or _present(
        exam.fields.get("prescription_phone")
    )
    return (
        has_contact
        and _present(exam.fields.get("study_name"))
        and exam.fields.get("date_of_birth") is not None
    )
