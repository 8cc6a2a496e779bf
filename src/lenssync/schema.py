from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_LANGUAGES = ["c", "cpp", "cuda-cpp", "objective-c", "objective-cpp"]


class SyncOptions(BaseModel):
    """Static options naming the tracked flag and the dependent extension."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    section: str = "clangd"
    flag: str = "--code-lens"
    default_binary: str = "clangd"
    help_argument: str = "--help"
    languages: List[str] = Field(default_factory=lambda: list(DEFAULT_LANGUAGES))
    extension_id: str = "llvm-vs-code-extensions.vscode-clangd"
    restart_command: str = "clangd.restart"
    restart_delay_s: float = Field(default=1.0, ge=0)
    jitter_minimum_ms: int = Field(default=10, ge=0)
    jitter_spread_ms: int = Field(default=240, gt=0)

    @property
    def enabled_key(self) -> str:
        return f"{self.section}.CodeLens.Enabled"

    @property
    def restart_key(self) -> str:
        return f"{self.section}.CodeLens.RestartServerOnChange"

    @property
    def path_key(self) -> str:
        return f"{self.section}.path"

    @property
    def arguments_key(self) -> str:
        return f"{self.section}.arguments"


class SyncSettings(BaseModel):
    """User settings as read from the settings store."""

    enabled: bool = True
    restart_on_change: bool = False
    path: str = ""
    arguments: List[str] = []


class PositionDTO(BaseModel):
    line: int = Field(ge=0)
    character: int = Field(ge=0)


class RangeDTO(BaseModel):
    start: PositionDTO
    end: PositionDTO


class LocationDTO(BaseModel):
    uri: str
    range: RangeDTO


class ShowReferencesArgument(BaseModel):
    uri: str
    position: PositionDTO
    locations: List[LocationDTO] = []

    def protocol_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
