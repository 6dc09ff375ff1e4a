# ============================================
# BASE TOOL INTERFACE
# ============================================

from abc import ABC, abstractmethod
from typing import Any, Dict, List

from workforce.core.interfaces.tools import ToolContext


class Tool(ABC):
    """Base class for all workforce tools"""

    category: str = "general"

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        """``{param: {"type", "description", "required"}}``, flat scalars only"""
        return {}

    @property
    def required_parameters(self) -> List[str]:
        return [p for p, spec in self.parameters.items() if spec.get("required")]

    def describe(self) -> str:
        """One tool entry of the prompt schema."""
        lines = [f"- {self.name}: {self.description}"]
        for param, spec in self.parameters.items():
            flag = "required" if spec.get("required") else "optional"
            lines.append(f"    {param} ({spec.get('type', 'string')}, {flag}): {spec.get('description', '')}")
        return "\n".join(lines)

    @abstractmethod
    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        pass
