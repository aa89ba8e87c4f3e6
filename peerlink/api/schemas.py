"""
Pydantic schemas mirroring the signaling wire contract.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, model_validator, validator

MessageType = Literal["register", "offer", "answer", "candidate"]

ROUTED_TYPES = frozenset({"offer", "answer", "candidate"})


class SignalMessage(BaseModel):
    """
    One signaling frame.

    On the wire the sender is ``id``, the target is ``target`` and the payload
    lives under the key named after the message type (``offer``, ``answer``
    or ``candidate``).  The relay never looks inside the payload.
    """

    type: MessageType
    sender_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("id", "sender_id", "senderId"),
        serialization_alias="id",
    )
    target_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("target", "target_id", "targetId"),
        serialization_alias="target",
    )
    offer: Optional[Any] = None
    answer: Optional[Any] = None
    candidate: Optional[Any] = None

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @validator("type", pre=True)
    def _normalise_type(cls, value: object) -> str:
        return str(value or "").strip().lower()

    @model_validator(mode="after")
    def _require_target(self) -> "SignalMessage":
        if self.type in ROUTED_TYPES and not self.target_id:
            raise ValueError(f"{self.type} requires a target")
        return self

    @property
    def is_routed(self) -> bool:
        return self.type in ROUTED_TYPES

    @property
    def payload(self) -> Optional[Any]:
        if self.type == "register":
            return None
        return getattr(self, self.type)

    @classmethod
    def parse_frame(cls, text: str) -> "SignalMessage":
        """Validate a raw text frame; raises ``ValueError`` when it is malformed."""

        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"invalid JSON: {exc.msg}") from exc
        if not isinstance(data, dict):
            raise ValueError("frame must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ValueError(str(exc)) from exc

    @classmethod
    def build(
        cls,
        type: str,
        sender_id: str,
        target_id: Optional[str] = None,
        payload: Optional[Any] = None,
    ) -> "SignalMessage":
        data: Dict[str, Any] = {"type": type, "id": sender_id}
        if target_id is not None:
            data["target"] = target_id
        if payload is not None and type in ROUTED_TYPES:
            data[type] = payload
        return cls.model_validate(data)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class HealthModel(BaseModel):
    status: str = "ok"
    profile: str = "default"
    clients: int = 0
