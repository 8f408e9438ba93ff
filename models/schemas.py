from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional

class ComponentInstance(BaseModel):
    id: str
    type: str
    label: Optional[str] = None
    props: Dict[str, Any] = Field(default_factory=dict)
    styleSourceIds: List[str] = Field(default_factory=list)
    children: List["ComponentInstance"] = Field(default_factory=list)

ComponentInstance.model_rebuild()

class StyleSourceIn(BaseModel):
    type: Literal["local", "token", "preset"] = "local"
    name: Optional[str] = None
    id: Optional[str] = None  # optional feste ID (z.B. Import)

class StyleSourceRename(BaseModel):
    name: str

class StyleValueIn(BaseModel):
    styleSourceId: str
    property: str
    value: str
    breakpointId: Optional[str] = None

class StyleUploadOut(BaseModel):
    rows: int
    styleSources: int

class CapturedStyle(BaseModel):
    source: Dict[str, Any]
    styleValues: Dict[str, str]

class PrebuiltIn(BaseModel):
    name: str  # leer erlaubt, Prüfung macht das UI
    instance: ComponentInstance

class PrebuiltRename(BaseModel):
    name: str

class PrebuiltOut(BaseModel):
    id: str
    name: str
    instance: Dict[str, Any]
    styles: Dict[str, CapturedStyle]
    createdAt: int
    updatedAt: Optional[int] = None

class PrebuiltUpdate(BaseModel):
    instance: ComponentInstance

class InstantiateOut(BaseModel):
    instance: Dict[str, Any]
    styleIdMapping: Dict[str, str]

class InstanceLinkIn(BaseModel):
    prebuiltId: str
    styleIdMapping: Dict[str, str] = Field(default_factory=dict)

class InstanceLinkOut(BaseModel):
    instanceId: str
    prebuiltId: str
    styleIdMapping: Dict[str, str]

class LinkOut(BaseModel):
    instanceId: str
    linked: bool

class HealthOut(BaseModel):
    service: str
    prebuilts: int
    linkedInstances: int
    pendingWrite: bool
