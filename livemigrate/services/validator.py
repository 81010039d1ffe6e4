"""Structural validation for trades, conversations and messages."""

import logging
from typing import Any, Callable, Dict, List, Mapping

from ..models.record import Conversation, Message, Trade, ValidationError

logger = logging.getLogger(__name__)


def _as_data(entity: Any) -> Mapping[str, Any]:
    """Stored-dict view of an entity or raw document."""
    if hasattr(entity, "to_dict"):
        return entity.to_dict()
    if isinstance(entity, Mapping):
        return entity
    return {}


class RecordValidator:
    """
    Validator for entities and stored documents.

    Supports:
    - Required string fields
    - List-typed fields
    - Custom validation rules per entity
    """

    def __init__(self):
        """Initialize the validator."""
        self._custom_validators: Dict[str, List[Callable[[Mapping[str, Any]], List[ValidationError]]]] = {}

    def register_validator(self, entity: str, func: Callable[[Mapping[str, Any]], List[ValidationError]]) -> None:
        """
        Register a custom validation rule.

        Args:
            entity: "trade", "conversation" or "message"
            func: Callable taking the stored dict and returning ValidationErrors
        """
        self._custom_validators.setdefault(entity, []).append(func)

    def validate_trade(self, trade: Any) -> List[ValidationError]:
        """Validate a Trade or a stored trade document."""
        data = _as_data(trade)
        errors = []

        errors.extend(self._require_string(data, "id"))
        errors.extend(self._require_string(data, "title", allow_empty=True))

        for field_name in ("skillsOffered", "skillsWanted"):
            value = data.get(field_name)
            if not isinstance(value, list):
                errors.append(ValidationError(
                    field=field_name,
                    message="Expected a list of skills",
                    error_type="type",
                    value=type(value).__name__,
                ))

        participants = data.get("participants")
        creator = participants.get("creator") if isinstance(participants, Mapping) else None
        if not isinstance(creator, str) or not creator:
            errors.append(ValidationError(
                field="participants.creator",
                message="Trade must have a creator",
                error_type="required",
            ))

        errors.extend(self._run_custom("trade", data))
        return errors

    def validate_conversation(self, conversation: Any) -> List[ValidationError]:
        """Validate a Conversation or a stored conversation document."""
        data = _as_data(conversation)
        errors = []

        errors.extend(self._require_string(data, "id"))

        participant_ids = data.get("participantIds")
        if not isinstance(participant_ids, list) or not participant_ids:
            errors.append(ValidationError(
                field="participantIds",
                message="Conversation must have at least one participant",
                error_type="required",
            ))
        else:
            for i, participant_id in enumerate(participant_ids):
                if not isinstance(participant_id, str) or not participant_id:
                    errors.append(ValidationError(
                        field=f"participantIds[{i}]",
                        message="Participant id must be a non-empty string",
                        error_type="type",
                        value=participant_id,
                    ))

        errors.extend(self._run_custom("conversation", data))
        return errors

    def validate_message(self, message: Any) -> List[ValidationError]:
        """Validate a Message or a stored message document."""
        data = _as_data(message)
        errors = []

        errors.extend(self._require_string(data, "id"))
        errors.extend(self._require_string(data, "conversationId"))
        errors.extend(self._require_string(data, "senderId"))
        errors.extend(self._require_string(data, "content", allow_empty=True))

        errors.extend(self._run_custom("message", data))
        return errors

    def validate(self, entity: Any) -> List[ValidationError]:
        """Dispatch on the entity type."""
        if isinstance(entity, Trade):
            return self.validate_trade(entity)
        if isinstance(entity, Conversation):
            return self.validate_conversation(entity)
        if isinstance(entity, Message):
            return self.validate_message(entity)
        return [ValidationError(
            field="",
            message=f"Cannot validate {type(entity).__name__}",
            error_type="type",
        )]

    def is_valid(self, errors: List[ValidationError]) -> bool:
        """Check if there are no error-severity validation errors."""
        return not any(e.severity == "error" for e in errors)

    def _require_string(self, data: Mapping[str, Any], field_name: str, allow_empty: bool = False) -> List[ValidationError]:
        value = data.get(field_name)
        if value is None:
            return [ValidationError(
                field=field_name,
                message="Required field is missing",
                error_type="required",
            )]
        if not isinstance(value, str):
            return [ValidationError(
                field=field_name,
                message=f"Expected string, got {type(value).__name__}",
                error_type="type",
                value=value,
            )]
        if not value and not allow_empty:
            return [ValidationError(
                field=field_name,
                message="Field must not be empty",
                error_type="required",
            )]
        return []

    def _run_custom(self, entity: str, data: Mapping[str, Any]) -> List[ValidationError]:
        errors = []
        for func in self._custom_validators.get(entity, []):
            try:
                errors.extend(func(data) or [])
            except Exception as e:
                logger.warning(f"Custom {entity} validator {getattr(func, '__name__', func)} failed: {e}")
                errors.append(ValidationError(
                    field="",
                    message=f"Custom validation failed: {e}",
                    error_type="custom",
                ))
        return errors
