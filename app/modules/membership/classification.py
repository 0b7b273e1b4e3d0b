"""Classification policy for failed add-member calls.

When members are added one at a time, each failure message is run through an
ordered list of rules:

1. Idempotence: the message says the user is already a member. The desired
   end state holds, so the item counts as a success.
2. Structured extraction: the message embeds a JSON object with a "message"
   field. The first string found depth-first inside that field becomes the
   reported reason.
3. Fallback: the raw message is the reported reason.

The policy is a pure function of the message text. It does not inspect
exception types from any transport library, so it can be table-tested without
a network stack.
"""

import json
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

ALREADY_MEMBER_PHRASES: Tuple[str, ...] = (
    "member already exists",
    "already a member",
)


@dataclass(frozen=True)
class AddFailureClassification:
    """Result of classifying one add-member failure message.

    Attributes:
        treated_as_success: The failure is reclassified as a success.
        reason: Text to report to the operator; empty when treated as success.
        rule: Name of the rule that produced the classification.
    """

    treated_as_success: bool
    reason: str
    rule: str


def first_string(value: Any) -> Optional[str]:
    """Return the first non-empty string found by depth-first traversal of value.

    Strings are returned as is; lists are scanned in order; dicts are scanned
    in key order. Empty strings are skipped. Anything else yields None.
    """
    if isinstance(value, str):
        return value or None
    if isinstance(value, (list, tuple)):
        for item in value:
            picked = first_string(item)
            if picked is not None:
                return picked
        return None
    if isinstance(value, dict):
        for item in value.values():
            picked = first_string(item)
            if picked is not None:
                return picked
    return None


def extract_json_payload(message: str) -> Optional[Any]:
    """Parse the span between the first '{' and the last '}' as JSON.

    Returns None when there is no such span or it is not valid JSON.
    """
    start = message.find("{")
    end = message.rfind("}")
    if start < 0 or end <= start:
        return None
    try:
        return json.loads(message[start : end + 1])
    except (json.JSONDecodeError, ValueError):
        return None


def _already_member_rule(message: str) -> Optional[AddFailureClassification]:
    lowered = message.lower()
    if any(phrase in lowered for phrase in ALREADY_MEMBER_PHRASES):
        return AddFailureClassification(
            treated_as_success=True, reason="", rule="already_member"
        )
    return None


def _structured_message_rule(message: str) -> Optional[AddFailureClassification]:
    payload = extract_json_payload(message)
    if not isinstance(payload, dict) or "message" not in payload:
        return None
    reason = first_string(payload["message"])
    return AddFailureClassification(
        treated_as_success=False,
        reason=reason if reason is not None else message,
        rule="structured_message",
    )


def _fallback_rule(message: str) -> Optional[AddFailureClassification]:
    return AddFailureClassification(
        treated_as_success=False, reason=message, rule="fallback"
    )


# Evaluated in order; the first rule returning a classification wins
ADD_FAILURE_RULES: Tuple[
    Tuple[str, Callable[[str], Optional[AddFailureClassification]]], ...
] = (
    ("already_member", _already_member_rule),
    ("structured_message", _structured_message_rule),
    ("fallback", _fallback_rule),
)


def classify_add_failure(message: str) -> AddFailureClassification:
    """Classify the failure message of a single add-member call.

    Args:
        message: Failure text reported by the remote directory client.

    Returns:
        AddFailureClassification for the first matching rule.
    """
    text = message if isinstance(message, str) else str(message)
    for _name, rule in ADD_FAILURE_RULES:
        classification = rule(text)
        if classification is not None:
            return classification
    # _fallback_rule always matches
    raise AssertionError("no add-failure rule matched")
