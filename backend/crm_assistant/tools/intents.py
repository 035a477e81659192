"""
Structured intents produced by the language model.

The model calls a single ``execute_operation`` tool; its arguments are parsed
into one variant of a closed, ``operation_type``-tagged union so handlers never
see free-form dicts.
"""

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

Action = Literal["create", "read", "update", "delete", "list", "search", "analyze", "help"]

OPERATION_TYPES = ["contact", "calendar", "alert", "settings", "duplicate_management", "general"]
ACTIONS = ["create", "read", "update", "delete", "list", "search", "analyze", "help"]


class BaseIntent(BaseModel):
    action: Action
    entity_data: Optional[Dict[str, Any]] = None
    search_criteria: Optional[Dict[str, Any]] = None
    user_request: str = ""

    @field_validator("entity_data", "search_criteria", mode="before")
    @classmethod
    def strip_nulls(cls, value):
        # Models fill unused schema fields with null; keep the maps sparse
        if not isinstance(value, dict):
            return None if value is None else value
        cleaned = {k: v for k, v in value.items() if v is not None}
        return cleaned or None

    @field_validator("user_request", mode="before")
    @classmethod
    def default_request(cls, value):
        return value or ""

    @property
    def entity(self) -> Dict[str, Any]:
        return self.entity_data or {}

    @property
    def criteria(self) -> Dict[str, Any]:
        return self.search_criteria or {}


class ContactIntent(BaseIntent):
    operation_type: Literal["contact"] = "contact"


class CalendarIntent(BaseIntent):
    operation_type: Literal["calendar"] = "calendar"


class AlertIntent(BaseIntent):
    operation_type: Literal["alert"] = "alert"


class SettingsIntent(BaseIntent):
    operation_type: Literal["settings"] = "settings"


class DuplicateIntent(BaseIntent):
    operation_type: Literal["duplicate_management"] = "duplicate_management"


class GeneralIntent(BaseIntent):
    operation_type: Literal["general"] = "general"


Intent = Annotated[
    Union[ContactIntent, CalendarIntent, AlertIntent, SettingsIntent, DuplicateIntent, GeneralIntent],
    Field(discriminator="operation_type"),
]

INTENT_TYPES = (ContactIntent, CalendarIntent, AlertIntent, SettingsIntent, DuplicateIntent, GeneralIntent)

_intent_adapter = TypeAdapter(Intent)


def parse_intent(arguments: Dict[str, Any]) -> BaseIntent:
    """Build the typed intent for a tool call. Raises pydantic's ValidationError on bad input."""
    return _intent_adapter.validate_python(arguments)


TOOL_NAME = "execute_operation"

CONTACT_FIELDS = {
    "first_name": {"type": "string"},
    "middle_name": {"type": "string"},
    "last_name": {"type": "string"},
    "nickname": {"type": "string"},
    "email": {"type": "string"},
    "phone": {"type": "string"},
    "mobile_phone": {"type": "string"},
    "work_phone": {"type": "string"},
    "company": {"type": "string"},
    "job_title": {"type": "string"},
    "street_address": {"type": "string"},
    "street_address_2": {"type": "string"},
    "city": {"type": "string"},
    "state_province": {"type": "string"},
    "postal_code": {"type": "string"},
    "country": {"type": "string"},
    "website": {"type": "string"},
    "birthday": {"type": "string", "description": "YYYY-MM-DD"},
    "notes": {"type": "string"},
}

EVENT_FIELDS = {
    "event_id": {"type": "string", "description": "Canonical event UUID from a previous search result"},
    "title": {"type": "string"},
    "description": {"type": "string"},
    "start_time": {"type": "string", "description": "ISO 8601 date-time"},
    "end_time": {"type": "string", "description": "ISO 8601 date-time"},
    "location": {"type": "string"},
    "is_all_day": {"type": "boolean"},
    "is_recurring": {"type": "boolean"},
    "recurrence_pattern": {"type": "string"},
}

ALERT_FIELDS = {
    "title": {"type": "string"},
    "description": {"type": "string"},
    "alert_type": {"type": "string", "description": "e.g. reminder, follow_up, birthday, task"},
    "due_date": {"type": "string", "description": "ISO 8601 date-time"},
    "priority": {"type": "string", "enum": ["low", "medium", "high"]},
    "status": {"type": "string", "enum": ["pending", "completed", "dismissed"]},
    "contact_id": {"type": "string"},
}

SETTINGS_FIELDS = {
    "settings": {"type": "object", "description": "User preference key/values to store"},
}

EXECUTE_OPERATION_TOOL = {
    "type": "function",
    "function": {
        "name": TOOL_NAME,
        "description": (
            "Execute a CRM operation on contacts, calendar events, alerts, settings or "
            "duplicate contacts. Call it once per operation; call it several times to "
            "perform several operations."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "operation_type": {
                    "type": "string",
                    "enum": OPERATION_TYPES,
                    "description": "Entity the operation applies to",
                },
                "action": {
                    "type": "string",
                    "enum": ACTIONS,
                    "description": "What to do with the entity",
                },
                "entity_data": {
                    "type": "object",
                    "description": "Field values for create/update operations",
                    "properties": {**CONTACT_FIELDS, **EVENT_FIELDS, **ALERT_FIELDS, **SETTINGS_FIELDS},
                },
                "search_criteria": {
                    "type": "object",
                    "description": "How to find existing records",
                    "properties": {
                        "search_term": {"type": "string", "description": "Name, email, company or title text"},
                        "contact_id": {"type": "string"},
                        "event_id": {"type": "string"},
                        "alert_id": {"type": "string"},
                        "company": {"type": "string"},
                        "status": {"type": "string"},
                        "upcoming": {"type": "boolean", "description": "Only the next 30 days"},
                        "start_date": {"type": "string", "description": "ISO 8601 range start"},
                        "end_date": {"type": "string", "description": "ISO 8601 range end"},
                        "max_results": {"type": "integer"},
                    },
                },
                "user_request": {
                    "type": "string",
                    "description": "The user's original request, verbatim",
                },
            },
            "required": ["operation_type", "action", "user_request"],
        },
    },
}
