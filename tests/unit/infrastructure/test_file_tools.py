"""
Unit tests for the workspace file tools.
"""

import pytest

from workforce.core.interfaces.tools import ToolContext
from workforce.infrastructure.tools.file_tools import (
    ListFilesTool,
    ReadFileTool,
    Workspace,
    WriteFileTool,
)


@pytest.fixture
def workspace(tmp_path):
    return Workspace(str(tmp_path / "workspace"))


@pytest.fixture
def context():
    return ToolContext(actor_id="dev1")


def test_workspace_rejects_escape(workspace):
    with pytest.raises(ValueError, match="escapes the workspace"):
        workspace.resolve("../outside.txt")


@pytest.mark.asyncio
async def test_write_then_read(workspace, context):
    write = await WriteFileTool(workspace).execute({"path": "notes/plan.md", "content": "step 1"}, context)
    read = await ReadFileTool(workspace).execute({"path": "notes/plan.md"}, context)

    assert write == {"success": True, "path": "notes/plan.md", "size": 6, "backed_up": False}
    assert read["content"] == "step 1"


@pytest.mark.asyncio
async def test_overwrite_keeps_backup(workspace, context):
    tool = WriteFileTool(workspace)
    await tool.execute({"path": "a.txt", "content": "v1"}, context)

    result = await tool.execute({"path": "a.txt", "content": "v2"}, context)

    assert result["backed_up"] is True
    assert (workspace.root / "a.txt.bak").read_text(encoding="utf-8") == "v1"


@pytest.mark.asyncio
async def test_read_errors(workspace, context):
    tool = ReadFileTool(workspace, max_size_kb=1)
    (workspace.root / "big.txt").write_text("x" * 4096, encoding="utf-8")

    missing = await tool.execute({"path": "nope.txt"}, context)
    too_big = await tool.execute({"path": "big.txt"}, context)
    escaped = await tool.execute({"path": "../../etc/passwd"}, context)

    assert missing["error"] == "File not found: nope.txt"
    assert too_big["error"].startswith("File too large")
    assert escaped["success"] is False


@pytest.mark.asyncio
async def test_list_files_dirs_first(workspace, context):
    (workspace.root / "src").mkdir()
    (workspace.root / "README.md").write_text("hi", encoding="utf-8")

    result = await ListFilesTool(workspace).execute({}, context)

    assert result["entries"] == ["src/", "README.md"]
    assert result["truncated"] is False
