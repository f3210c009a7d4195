"""Action-type catalogue for n8n workflow nodes.

Every node in a workflow graph carries an engine type string such as
``n8n-nodes-base.httpRequest``. This module turns those strings into a closed
``ActionType`` enum and classifies each member into an ``ActionKind``
(trigger / transform / side effect) with an exhaustive ``match``.

Three tables live here and are shared by the Feasibility Checker, the
Auto-Fix Engine and the Scoring Engine:

  ALLOWED_ACTION_TYPES — types that deploy without per-user credentials.
  BLOCKED_ACTION_TYPES — integrations that need per-user OAuth.
  SUBSTITUTES          — approved stand-ins for blocked integrations.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any


class ActionKind(Enum):
    TRIGGER = "trigger"
    TRANSFORM = "transform"
    SIDE_EFFECT = "side_effect"


class ActionType(str, Enum):
    """Known n8n node types, approved and blocked alike."""

    # triggers
    WEBHOOK = "n8n-nodes-base.webhook"
    SCHEDULE_TRIGGER = "n8n-nodes-base.scheduleTrigger"
    MANUAL_TRIGGER = "n8n-nodes-base.manualTrigger"
    ERROR_TRIGGER = "n8n-nodes-base.errorTrigger"
    INTERVAL = "n8n-nodes-base.interval"

    # data processing
    SET = "n8n-nodes-base.set"
    FUNCTION = "n8n-nodes-base.function"
    CODE = "n8n-nodes-base.code"
    IF = "n8n-nodes-base.if"
    SWITCH = "n8n-nodes-base.switch"
    MERGE = "n8n-nodes-base.merge"
    SPLIT_IN_BATCHES = "n8n-nodes-base.splitInBatches"
    ITEM_LISTS = "n8n-nodes-base.itemLists"
    AGGREGATE = "n8n-nodes-base.aggregate"
    LIMIT = "n8n-nodes-base.limit"
    SORT = "n8n-nodes-base.sort"
    REMOVE_DUPLICATES = "n8n-nodes-base.removeDuplicates"

    # communication
    HTTP_REQUEST = "n8n-nodes-base.httpRequest"
    EMAIL_SEND = "n8n-nodes-base.emailSend"
    RESPOND_TO_WEBHOOK = "n8n-nodes-base.respondToWebhook"
    MQTT = "n8n-nodes-base.mqtt"

    # files and data formats
    READ_BINARY_FILE = "n8n-nodes-base.readBinaryFile"
    WRITE_BINARY_FILE = "n8n-nodes-base.writeBinaryFile"
    MOVE_BINARY_DATA = "n8n-nodes-base.moveBinaryData"
    CSV = "n8n-nodes-base.csv"
    XML = "n8n-nodes-base.xml"
    HTML = "n8n-nodes-base.html"
    MARKDOWN = "n8n-nodes-base.markdown"
    SPREADSHEET_FILE = "n8n-nodes-base.spreadsheetFile"

    # utilities
    CRYPTO = "n8n-nodes-base.crypto"
    DATE_TIME = "n8n-nodes-base.dateTime"
    WAIT = "n8n-nodes-base.wait"
    NO_OP = "n8n-nodes-base.noOp"
    STOP_AND_ERROR = "n8n-nodes-base.stopAndError"

    # ai
    OPENAI = "n8n-nodes-base.openAi"
    LANGCHAIN_OPENAI = "@n8n/n8n-nodes-langchain.openAi"
    FIRECRAWL = "n8n-nodes-firecrawl"

    # databases
    POSTGRES = "n8n-nodes-base.postgres"
    REDIS = "n8n-nodes-base.redis"
    SUPABASE = "n8n-nodes-base.supabase"

    # OAuth integrations (blocked)
    GOOGLE_SHEETS = "n8n-nodes-base.googleSheets"
    GMAIL = "n8n-nodes-base.gmail"
    GOOGLE_DRIVE = "n8n-nodes-base.googleDrive"
    SLACK = "n8n-nodes-base.slack"
    DISCORD = "n8n-nodes-base.discord"
    TWITTER = "n8n-nodes-base.twitter"
    GITHUB = "n8n-nodes-base.github"
    NOTION = "n8n-nodes-base.notion"
    AIRTABLE = "n8n-nodes-base.airtable"
    HUBSPOT = "n8n-nodes-base.hubspot"
    SALESFORCE = "n8n-nodes-base.salesforce"
    MICROSOFT_TEAMS = "n8n-nodes-base.microsoftTeams"
    ZOOM = "n8n-nodes-base.zoom"

    @classmethod
    def parse(cls, type_name: str | None) -> ActionType | None:
        """Return the enum member for an engine type string, or None if unknown."""
        if not type_name:
            return None
        try:
            return cls(type_name)
        except ValueError:
            return None

    @property
    def short_name(self) -> str:
        """Type name without the package prefix, e.g. ``httpRequest``."""
        return self.value.rsplit(".", 1)[-1]


BLOCKED_ACTION_TYPES: frozenset[ActionType] = frozenset({
    ActionType.GOOGLE_SHEETS,
    ActionType.GMAIL,
    ActionType.GOOGLE_DRIVE,
    ActionType.SLACK,
    ActionType.DISCORD,
    ActionType.TWITTER,
    ActionType.GITHUB,
    ActionType.NOTION,
    ActionType.AIRTABLE,
    ActionType.HUBSPOT,
    ActionType.SALESFORCE,
    ActionType.MICROSOFT_TEAMS,
    ActionType.ZOOM,
})

ALLOWED_ACTION_TYPES: frozenset[ActionType] = frozenset(
    t for t in ActionType if t not in BLOCKED_ACTION_TYPES
)

# Nodes whose presence means the workflow produces a visible result.
OUTPUT_ACTION_TYPES: frozenset[ActionType] = frozenset({
    ActionType.RESPOND_TO_WEBHOOK,
    ActionType.EMAIL_SEND,
    ActionType.HTTP_REQUEST,
    ActionType.WRITE_BINARY_FILE,
})


def action_kind(action: ActionType) -> ActionKind:
    """Classify an action type. Adding an enum member without a case fails loudly."""
    match action:
        case (
            ActionType.WEBHOOK
            | ActionType.SCHEDULE_TRIGGER
            | ActionType.MANUAL_TRIGGER
            | ActionType.ERROR_TRIGGER
            | ActionType.INTERVAL
        ):
            return ActionKind.TRIGGER
        case (
            ActionType.SET
            | ActionType.FUNCTION
            | ActionType.CODE
            | ActionType.IF
            | ActionType.SWITCH
            | ActionType.MERGE
            | ActionType.SPLIT_IN_BATCHES
            | ActionType.ITEM_LISTS
            | ActionType.AGGREGATE
            | ActionType.LIMIT
            | ActionType.SORT
            | ActionType.REMOVE_DUPLICATES
            | ActionType.READ_BINARY_FILE
            | ActionType.MOVE_BINARY_DATA
            | ActionType.CSV
            | ActionType.XML
            | ActionType.HTML
            | ActionType.MARKDOWN
            | ActionType.SPREADSHEET_FILE
            | ActionType.CRYPTO
            | ActionType.DATE_TIME
            | ActionType.WAIT
            | ActionType.NO_OP
            | ActionType.STOP_AND_ERROR
            | ActionType.OPENAI
            | ActionType.LANGCHAIN_OPENAI
            | ActionType.FIRECRAWL
        ):
            return ActionKind.TRANSFORM
        case (
            ActionType.HTTP_REQUEST
            | ActionType.EMAIL_SEND
            | ActionType.RESPOND_TO_WEBHOOK
            | ActionType.MQTT
            | ActionType.WRITE_BINARY_FILE
            | ActionType.POSTGRES
            | ActionType.REDIS
            | ActionType.SUPABASE
            | ActionType.GOOGLE_SHEETS
            | ActionType.GMAIL
            | ActionType.GOOGLE_DRIVE
            | ActionType.SLACK
            | ActionType.DISCORD
            | ActionType.TWITTER
            | ActionType.GITHUB
            | ActionType.NOTION
            | ActionType.AIRTABLE
            | ActionType.HUBSPOT
            | ActionType.SALESFORCE
            | ActionType.MICROSOFT_TEAMS
            | ActionType.ZOOM
        ):
            return ActionKind.SIDE_EFFECT
    raise ValueError(f"Unclassified action type: {action!r}")


def is_allowed(type_name: str | None) -> bool:
    action = ActionType.parse(type_name)
    return action is not None and action in ALLOWED_ACTION_TYPES


def is_blocked(type_name: str | None) -> bool:
    action = ActionType.parse(type_name)
    return action is not None and action in BLOCKED_ACTION_TYPES


def is_trigger(type_name: str | None) -> bool:
    action = ActionType.parse(type_name)
    return action is not None and action_kind(action) is ActionKind.TRIGGER


def is_side_effect(type_name: str | None) -> bool:
    action = ActionType.parse(type_name)
    return action is not None and action_kind(action) is ActionKind.SIDE_EFFECT


# ---------------------------------------------------------------------------
# Substitutes for blocked integrations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Substitute:
    """Approved replacement for a blocked integration.

    hint:       Short text used in the "consider using ..." warning.
    target:     Replacement action type.
    """

    target: ActionType
    hint: str

    def parameters_for(self, blocked_type: ActionType, old: dict[str, Any]) -> dict[str, Any]:
        """Build replacement parameters, carrying over whatever the old node had."""
        match self.target:
            case ActionType.SPREADSHEET_FILE:
                return {"operation": "read", "fileFormat": "csv"}
            case ActionType.EMAIL_SEND:
                return {
                    "fromEmail": "={{$credentials.smtp.user}}",
                    "toEmail": old.get("toEmail") or old.get("sendTo") or '={{$json["email"]}}',
                    "subject": old.get("subject") or "Notification from n8n",
                    "text": old.get("message") or old.get("text") or '={{$json["message"]}}',
                }
            case ActionType.HTTP_REQUEST:
                service = blocked_type.short_name
                body = {"text": old.get("text") or old.get("message") or "Message from n8n"}
                return {
                    "url": f"={{{{$credentials.{service}.webhookUrl}}}}",
                    "method": "POST",
                    "sendBody": True,
                    "bodyParametersJson": json.dumps(body),
                    "options": {"headers": {"Content-Type": "application/json"}},
                }
            case _:
                return {}


_WEBHOOK_POST = Substitute(ActionType.HTTP_REQUEST, "n8n-nodes-base.httpRequest (with webhook URL)")
_API_POST = Substitute(ActionType.HTTP_REQUEST, "n8n-nodes-base.httpRequest (with API)")

SUBSTITUTES: dict[ActionType, Substitute] = {
    ActionType.GOOGLE_SHEETS: Substitute(ActionType.SPREADSHEET_FILE, ActionType.SPREADSHEET_FILE.value),
    ActionType.GMAIL: Substitute(ActionType.EMAIL_SEND, ActionType.EMAIL_SEND.value),
    ActionType.SLACK: _WEBHOOK_POST,
    ActionType.DISCORD: _WEBHOOK_POST,
    ActionType.MICROSOFT_TEAMS: _WEBHOOK_POST,
    ActionType.GITHUB: _API_POST,
    ActionType.NOTION: _API_POST,
    ActionType.AIRTABLE: _API_POST,
    ActionType.HUBSPOT: _API_POST,
}


def substitute_for(type_name: str | None) -> Substitute | None:
    action = ActionType.parse(type_name)
    if action is None:
        return None
    return SUBSTITUTES.get(action)
