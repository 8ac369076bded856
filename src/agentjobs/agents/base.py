"""Agent capability profiles."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional


@dataclass
class Agent:
    """A named capability profile: instructions plus the tools it may call."""

    id: str
    name: str
    instructions: str
    description: str = ""
    tools: List[str] = field(default_factory=list)

    def capabilities(self, tool_descriptions: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """Summary handed to the goal decomposer."""

        descriptions = tool_descriptions or {}
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "instructions": self.instructions,
            "tools": [
                {"name": name, "description": descriptions.get(name, "")} for name in self.tools
            ],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "instructions": self.instructions,
            "tools": list(self.tools),
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Agent":
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", data["id"])),
            instructions=str(data.get("instructions", "")),
            description=str(data.get("description") or ""),
            tools=[str(item) for item in data.get("tools") or []],
        )
