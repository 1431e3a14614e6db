from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field, field_validator, model_validator


class ExtensionEntry(BaseModel):
    factory: str  # "package.module:attr"
    options: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("factory")
    @classmethod
    def _factory_format(cls, v: str) -> str:
        module, sep, attr = v.partition(":")
        if not sep or not module.strip() or not attr.strip():
            raise ValueError(f"factory must look like 'module:attr', got {v!r}")
        return v.strip()


class ServerConfig(BaseModel):
    server_version: str = "mcsci-py"
    banner: List[str] = Field(default_factory=list)
    help: List[str] = Field(default_factory=list)
    extensions: List[ExtensionEntry] = Field(default_factory=list)

    @field_validator("banner", "help")
    @classmethod
    def _single_lines(cls, v: List[str]) -> List[str]:
        for text in v:
            if "\n" in text or "\r" in text:
                raise ValueError(f"info text must be a single line: {text!r}")
        return v

    @model_validator(mode="after")
    def _printable_version(self) -> "ServerConfig":
        if not self.server_version.strip():
            raise ValueError("server_version must not be empty")
        return self
