# ============================================
# WORKSPACE FILE TOOLS
# ============================================
from pathlib import Path
from typing import Any, Dict

import aiofiles

from workforce.core.interfaces.tools import ToolContext
from workforce.infrastructure.tools.base import Tool


class Workspace:
    """Shared directory the actors read and write; paths may not escape it."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Path escapes the workspace: {path}")
        return target


class ReadFileTool(Tool):
    """Read a workspace file with a size limit"""

    category = "file"

    def __init__(self, workspace: Workspace, max_size_kb: int = 512):
        self.workspace = workspace
        self.max_size_kb = max_size_kb

    @property
    def name(self) -> str:
        return "read_file"

    @property
    def description(self) -> str:
        return "Read a text file from the shared workspace"

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        return {"path": {"type": "string", "description": "File path relative to the workspace", "required": True}}

    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        try:
            file_path = self.workspace.resolve(str(args["path"]))
        except ValueError as e:
            return {"success": False, "error": str(e)}
        if not file_path.is_file():
            return {"success": False, "error": f"File not found: {args['path']}"}
        size_kb = file_path.stat().st_size / 1024
        if size_kb > self.max_size_kb:
            return {"success": False, "error": f"File too large: {size_kb:.0f}KB > {self.max_size_kb}KB"}
        async with aiofiles.open(file_path, "r", encoding="utf-8", errors="replace") as f:
            content = await f.read()
        return {"success": True, "path": str(args["path"]), "content": content, "size": len(content)}


class WriteFileTool(Tool):
    """Write a workspace file, keeping a .bak of the previous version"""

    category = "file"

    def __init__(self, workspace: Workspace):
        self.workspace = workspace

    @property
    def name(self) -> str:
        return "write_file"

    @property
    def description(self) -> str:
        return "Write text content to a file in the shared workspace"

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        return {
            "path": {"type": "string", "description": "File path relative to the workspace", "required": True},
            "content": {"type": "string", "description": "Full file content", "required": True},
        }

    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        try:
            file_path = self.workspace.resolve(str(args["path"]))
        except ValueError as e:
            return {"success": False, "error": str(e)}
        content = str(args["content"])
        backed_up = False
        if file_path.exists():
            backup_path = file_path.with_suffix(file_path.suffix + ".bak")
            backup_path.write_bytes(file_path.read_bytes())
            backed_up = True
        file_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(file_path, "w", encoding="utf-8") as f:
            await f.write(content)
        return {"success": True, "path": str(args["path"]), "size": len(content), "backed_up": backed_up}


class ListFilesTool(Tool):
    """List a workspace directory"""

    category = "file"

    def __init__(self, workspace: Workspace, max_entries: int = 200):
        self.workspace = workspace
        self.max_entries = max_entries

    @property
    def name(self) -> str:
        return "list_files"

    @property
    def description(self) -> str:
        return "List files and directories in the shared workspace"

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        return {"path": {"type": "string", "description": "Directory relative to the workspace (default: root)", "required": False}}

    async def execute(self, args: Dict[str, Any], context: ToolContext) -> Dict[str, Any]:
        try:
            directory = self.workspace.resolve(str(args.get("path") or "."))
        except ValueError as e:
            return {"success": False, "error": str(e)}
        if not directory.is_dir():
            return {"success": False, "error": f"Not a directory: {args.get('path')}"}
        entries = sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name))
        listing = [
            f"{p.relative_to(self.workspace.root)}{'/' if p.is_dir() else ''}"
            for p in entries[: self.max_entries]
        ]
        return {"success": True, "entries": listing, "truncated": len(entries) > self.max_entries}
