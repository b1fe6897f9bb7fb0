"""Typed results of injected-script operations"""

import base64
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union


@dataclass
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @property
    def center(self):
        return (self.x + self.width / 2, self.y + self.height / 2)

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoundingBox":
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
        )


@dataclass
class ActionResult:
    """Outcome of an element action such as click or dispatch"""
    success: bool
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ActionResult":
        if not data:
            return cls(False, "no result")
        return cls(bool(data.get("success")), data.get("error"))


@dataclass
class SetInputFilesResult:
    success: bool
    files_set: int = 0
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SetInputFilesResult":
        if not data:
            return cls(False, 0, "no result")
        return cls(bool(data.get("success")), int(data.get("filesSet", 0)), data.get("error"))


@dataclass
class FilePayload:
    """A file to inject into a file input"""
    name: str
    mime_type: str
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    @classmethod
    def from_path(cls, path: Union[str, Path], mime_type: Optional[str] = None) -> "FilePayload":
        path = Path(path)
        if mime_type is None:
            mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(path.name, mime_type, path.read_bytes())

    def to_base64_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "mimeType": self.mime_type,
            "size": self.size,
            "base64": base64.b64encode(self.data).decode("ascii"),
        }

    @classmethod
    def from_base64_dict(cls, data: Dict[str, Any]) -> "FilePayload":
        return cls(
            name=data["name"],
            mime_type=data.get("mimeType", "application/octet-stream"),
            data=base64.b64decode(data["base64"]),
        )
