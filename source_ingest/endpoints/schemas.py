from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.domain import InterfaceType, ProtocolType, SourceConfig


class ManagerAction(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"
    REMOVE = "remove"


class SourceConfigIn(BaseModel):
    # Mismo shape camelCase que la capa web
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[int] = None
    name: str = "unnamed"
    description: Optional[str] = None
    interface_type: InterfaceType = Field(..., alias="interfaceType")
    protocol_type: ProtocolType = Field(..., alias="protocolType")
    interface_config: Dict[str, Any] = Field(default_factory=dict, alias="interfaceConfig")
    protocol_config: Dict[str, Any] = Field(default_factory=dict, alias="protocolConfig")
    custom_config: Dict[str, Any] = Field(default_factory=dict, alias="customConfig")
    is_active: bool = Field(True, alias="isActive")

    def to_source_config(self, source_id: Optional[int] = None) -> SourceConfig:
        data = self.model_dump(by_alias=True)
        data["id"] = source_id if source_id is not None else (self.id or 0)
        return SourceConfig.from_dict(data)


class ManagerActionIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: ManagerAction
    source_id: Optional[int] = Field(None, alias="sourceId", ge=1)
    config: Optional[SourceConfigIn] = None


