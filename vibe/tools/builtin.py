"""
VIBE Built-in Tools

File, search, shell and git tools wired to the session's Sandbox and
DiffEditor. Handlers never raise: every failure comes back as a failed
ToolResult. Checkpointing and approval are the executor's job; these
handlers only do the work (or describe it under dry_run).
"""

from __future__ import annotations

import fnmatch
import re
from pathlib import Path
from typing import Any

from vibe.errors import SandboxRejected
from vibe.tools.base import (
    ExecutionContext,
    FunctionTool,
    RiskLevel,
    SchemaProperty,
    ToolCategory,
    ToolResult,
    ToolSchema,
)
from vibe.tools.registry import ToolDefinition
from vibe.tools.sandbox import Sandbox
from vibe.workspace import SKIP_DIRS, Workspace, WorkspaceError
from vibe.workspace.editor import DiffEditor, EditOperation

MAX_READ_BYTES = 1024 * 1024
MAX_SEARCH_RESULTS = 200
MAX_GLOB_RESULTS = 500


def _schema(required: list[str] | None = None, **props: SchemaProperty) -> ToolSchema:
    return ToolSchema(properties=props, required=required or [])


def _prop(type: str, description: str = "", enum: list[str] | None = None) -> SchemaProperty:
    return SchemaProperty(type=type, description=description, enum=enum)


def _guard(sandbox: Sandbox, ctx: ExecutionContext, path: Path) -> ToolResult | None:
    if not ctx.sandbox_enabled:
        return None
    check = sandbox.check_path(path)
    if check.allowed:
        return None
    return ToolResult.fail(f"Access denied: {check.reason}", code=SandboxRejected.code)


def _rel(path: Path, ctx: ExecutionContext) -> str:
    try:
        return path.relative_to(Path(ctx.working_dir).resolve()).as_posix()
    except ValueError:
        return str(path)


def _walk(root: Path):
    for path in sorted(root.rglob("*")):
        if any(part in SKIP_DIRS for part in path.relative_to(root).parts):
            continue
        yield path


def builtin_tools(sandbox: Sandbox, editor: DiffEditor) -> list[ToolDefinition]:

    # -----------------------------------------------------------------------
    # Filesystem
    # -----------------------------------------------------------------------

    def file_read(args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        target = ctx.resolve(args["path"])
        if denied := _guard(sandbox, ctx, target):
            return denied
        if not target.is_file():
            return ToolResult.fail(f"File not found: {args['path']}", code="NOT_FOUND")
        try:
            if target.stat().st_size > MAX_READ_BYTES:
                return ToolResult.fail(f"File too large to read: {args['path']}")
            text = target.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            return ToolResult.fail(f"Cannot read {args['path']}: {e}")

        start, end = args.get("start_line"), args.get("end_line")
        if start is not None or end is not None:
            lines = text.split("\n")
            lo = max((start or 1) - 1, 0)
            hi = end if end is not None else len(lines)
            text = "\n".join(lines[lo:hi])
        return ToolResult.ok(text, data={"path": _rel(target, ctx)})

    def file_write(args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        target = ctx.resolve(args["path"])
        if denied := _guard(sandbox, ctx, target):
            return denied
        content: str = args["content"]
        mode = args.get("mode", "overwrite")

        if ctx.dry_run:
            return ToolResult.ok(f"Would {mode} {len(content)} chars to {args['path']}")

        try:
            existing = target.read_bytes().decode("utf-8") if target.is_file() else ""
            if mode == "append":
                sep = "" if not existing or existing.endswith("\n") else "\n"
                new_content = existing + sep + content
            elif mode == "insert":
                lines = existing.split("\n") if existing else []
                line = args.get("line", len(lines) + 1)
                if not 1 <= line <= len(lines) + 1:
                    return ToolResult.fail(f"Line {line} is outside 1..{len(lines) + 1}")
                lines[line - 1:line - 1] = [content]
                new_content = "\n".join(lines)
            else:
                new_content = content
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "w", encoding="utf-8", newline="") as f:
                f.write(new_content)
        except (OSError, UnicodeDecodeError) as e:
            return ToolResult.fail(f"Cannot write {args['path']}: {e}")

        rel = _rel(target, ctx)
        return ToolResult.ok(f"Wrote {len(new_content)} chars to {rel}", files_changed=[rel])

    def file_edit(args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        try:
            op = EditOperation.model_validate(args)
        except ValueError as e:
            return ToolResult.fail(f"Invalid edit: {e}", code="INVALID_ARGS")

        result = editor.apply_edit(op, ctx, checkpoint=False)
        if not result.success:
            return ToolResult.fail(result.error or "Edit failed", output=result.diff or "")
        if ctx.dry_run:
            return ToolResult.ok(result.diff or "", data={"dry_run": True})
        rel = _rel(ctx.resolve(op.file), ctx)
        return ToolResult.ok(result.diff or "", files_changed=[rel],
                             data={"changes": [c.model_dump() for c in result.changes]})

    def file_multi_edit(args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        try:
            ops = [EditOperation.model_validate(edit) for edit in args["edits"]]
        except (TypeError, ValueError) as e:
            return ToolResult.fail(f"Invalid edit: {e}", code="INVALID_ARGS")

        batch = editor.apply_multi_edit(ops, ctx, checkpoint=False)
        diffs = "\n".join(r.diff for r in batch.results if r.success and r.diff)
        data = {
            "successful_files": batch.successful_files,
            "failed_files": batch.failed_files,
            "errors": {r.file: r.error for r in batch.results if not r.success},
        }
        if not batch.success:
            return ToolResult.fail(
                f"{batch.failed_files} of {batch.total_files} edits failed",
                output=diffs,
                data=data,
            )
        files = [] if ctx.dry_run else sorted({_rel(ctx.resolve(op.file), ctx) for op in ops})
        return ToolResult.ok(diffs, files_changed=files, data=data)

    def file_glob(args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        root = ctx.resolve(args.get("path", "."))
        if denied := _guard(sandbox, ctx, root):
            return denied
        if not root.is_dir():
            return ToolResult.fail(f"Not a directory: {args.get('path', '.')}", code="NOT_FOUND")

        # A pattern without a slash matches file names at any depth
        pattern = args["pattern"]
        if Path(pattern).is_absolute() or ".." in Path(pattern).parts:
            return ToolResult.fail(f"Pattern must stay inside {args.get('path', '.')}: {pattern}", code="INVALID_ARGS")
        try:
            found = sorted(root.rglob(pattern) if "/" not in pattern else root.glob(pattern))
        except ValueError as e:
            return ToolResult.fail(f"Invalid pattern: {e}", code="INVALID_ARGS")

        matches: list[str] = []
        for path in found:
            rel = path.relative_to(root)
            if not path.is_file() or any(part in SKIP_DIRS for part in rel.parts):
                continue
            matches.append(rel.as_posix())
            if len(matches) >= MAX_GLOB_RESULTS:
                break
        return ToolResult.ok("\n".join(matches), data={"count": len(matches)})

    def file_tree(args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        root = ctx.resolve(args.get("path", "."))
        if denied := _guard(sandbox, ctx, root):
            return denied
        if not root.is_dir():
            return ToolResult.fail(f"Not a directory: {args.get('path', '.')}", code="NOT_FOUND")

        max_depth = args.get("max_depth", 3)
        lines = [root.name or str(root)]

        def walk(directory: Path, depth: int, prefix: str) -> None:
            if depth >= max_depth:
                return
            try:
                entries = sorted(
                    (e for e in directory.iterdir() if e.name not in SKIP_DIRS),
                    key=lambda e: (not e.is_dir(), e.name),
                )
            except OSError:
                return
            for idx, entry in enumerate(entries):
                last = idx == len(entries) - 1
                lines.append(f"{prefix}{'└── ' if last else '├── '}{entry.name}{'/' if entry.is_dir() else ''}")
                if entry.is_dir() and not entry.is_symlink():
                    walk(entry, depth + 1, prefix + ("    " if last else "│   "))

        walk(root, 0, "")
        return ToolResult.ok("\n".join(lines))

    def file_search(args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        root = ctx.resolve(args.get("path", "."))
        if denied := _guard(sandbox, ctx, root):
            return denied
        try:
            regex = re.compile(args["pattern"], 0 if args.get("case_sensitive", True) else re.IGNORECASE)
        except re.error as e:
            return ToolResult.fail(f"Invalid pattern: {e}", code="INVALID_ARGS")

        include = args.get("include")
        hits: list[str] = []
        files = [root] if root.is_file() else [p for p in _walk(root) if p.is_file()]
        for path in files:
            if include and not fnmatch.fnmatch(path.name, include):
                continue
            try:
                if path.stat().st_size > MAX_READ_BYTES:
                    continue
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            for no, line in enumerate(text.split("\n"), start=1):
                if regex.search(line):
                    hits.append(f"{_rel(path, ctx)}:{no}: {line.strip()}")
                    if len(hits) >= MAX_SEARCH_RESULTS:
                        return ToolResult.ok("\n".join(hits), data={"count": len(hits), "truncated": True})
        return ToolResult.ok("\n".join(hits), data={"count": len(hits), "truncated": False})

    # -----------------------------------------------------------------------
    # Shell
    # -----------------------------------------------------------------------

    def shell_exec(args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        cwd = ctx.resolve(args["cwd"]) if args.get("cwd") else Path(ctx.working_dir)
        return sandbox.execute_command(
            args["command"],
            cwd=cwd,
            timeout=args.get("timeout") or ctx.timeout,
            dry_run=ctx.dry_run,
        )

    # -----------------------------------------------------------------------
    # Git
    # -----------------------------------------------------------------------

    def _repo(ctx: ExecutionContext) -> Workspace:
        return Workspace(Path(ctx.working_dir), timeout=ctx.timeout or 60.0)

    def git_status(args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        try:
            return ToolResult.ok(_repo(ctx).status())
        except WorkspaceError as e:
            return ToolResult.fail(str(e))

    def git_diff(args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        try:
            return ToolResult.ok(_repo(ctx).diff(staged=bool(args.get("staged")), path=args.get("path")))
        except WorkspaceError as e:
            return ToolResult.fail(str(e))

    def git_commit(args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        files = args.get("files") or []
        add_all = bool(args.get("add_all"))
        if ctx.dry_run:
            scope = f"{len(files)} file(s)" if files else ("all changes" if add_all else "the index")
            return ToolResult.ok(f"Would commit {scope}: {args['message']}", data={"dry_run": True})
        try:
            sha = _repo(ctx).commit(args["message"], files=files, add_all=add_all)
        except WorkspaceError as e:
            return ToolResult.fail(str(e))
        if sha is None:
            return ToolResult.fail("Nothing to commit")
        return ToolResult.ok(f"Committed {sha[:12]}: {args['message']}", data={"sha": sha})

    def git_branch(args: dict[str, Any], ctx: ExecutionContext) -> ToolResult:
        action = args.get("action", "list")
        name = args.get("name")
        repo = _repo(ctx)
        try:
            if action == "list":
                branches = repo.branches()
                current = repo.current_branch()
                return ToolResult.ok("\n".join(branches), data={"branches": branches, "current": current})
            if not name:
                return ToolResult.fail(f"Branch name required for {action}", code="INVALID_ARGS")
            if ctx.dry_run:
                return ToolResult.ok(f"Would {action} branch {name}", data={"dry_run": True})
            if action == "create":
                repo.create_branch(name)
            elif action == "switch":
                repo.switch_branch(name)
            else:
                repo.delete_branch(name)
        except WorkspaceError as e:
            return ToolResult.fail(str(e))
        done = {"create": "Created", "switch": "Switched to", "delete": "Deleted"}[action]
        return ToolResult.ok(f"{done} branch {name}")

    # -----------------------------------------------------------------------
    # Definitions
    # -----------------------------------------------------------------------

    return [
        ToolDefinition(
            name="file_read",
            description="Read a text file, optionally a 1-based inclusive line range",
            category=ToolCategory.FILESYSTEM,
            schema=_schema(
                ["path"],
                path=_prop("string", "File path relative to the project root"),
                start_line=_prop("integer", "First line to return"),
                end_line=_prop("integer", "Last line to return"),
            ),
            risk_level=RiskLevel.LOW,
            requires_approval=False,
            handler=FunctionTool(file_read),
            read_only=True,
        ),
        ToolDefinition(
            name="file_write",
            description="Create or overwrite a file, append to it, or insert text at a line",
            category=ToolCategory.FILESYSTEM,
            schema=_schema(
                ["path", "content"],
                path=_prop("string", "File path relative to the project root"),
                content=_prop("string", "Text to write"),
                mode=_prop("string", "How to write", enum=["overwrite", "append", "insert"]),
                line=_prop("integer", "1-based line for insert mode"),
            ),
            risk_level=RiskLevel.MEDIUM,
            requires_approval=True,
            handler=FunctionTool(file_write),
            path_args=("path",),
        ),
        ToolDefinition(
            name="file_edit",
            description="Targeted edit: replace text, insert/delete lines, append, or apply a patch",
            category=ToolCategory.CODE,
            schema=_schema(
                ["type", "file"],
                type=_prop("string", "Edit kind", enum=["replace", "insert", "delete", "append", "patch"]),
                file=_prop("string", "File path relative to the project root"),
                search_pattern=_prop("string", "Exact text to replace (replace)"),
                replacement=_prop("string", "New text, or diff text for patch"),
                line_number=_prop("integer", "Insert after this line / first line to delete"),
                end_line_number=_prop("integer", "Last line to delete"),
            ),
            risk_level=RiskLevel.MEDIUM,
            requires_approval=True,
            handler=FunctionTool(file_edit),
            path_args=("file",),
        ),
        ToolDefinition(
            name="file_multi_edit",
            description="Apply several file_edit operations as one batch; any failure undoes the whole batch",
            category=ToolCategory.CODE,
            schema=_schema(
                ["edits"],
                edits=_prop("array", "List of edit objects with the same fields as file_edit"),
            ),
            risk_level=RiskLevel.MEDIUM,
            requires_approval=True,
            handler=FunctionTool(file_multi_edit),
        ),
        ToolDefinition(
            name="file_glob",
            description="List files matching a glob pattern",
            category=ToolCategory.SEARCH,
            schema=_schema(
                ["pattern"],
                pattern=_prop("string", "Glob, e.g. '**/*.py' or '*.md'"),
                path=_prop("string", "Directory to search from"),
            ),
            risk_level=RiskLevel.LOW,
            requires_approval=False,
            handler=FunctionTool(file_glob),
            read_only=True,
        ),
        ToolDefinition(
            name="file_tree",
            description="Show the directory tree",
            category=ToolCategory.FILESYSTEM,
            schema=_schema(
                path=_prop("string", "Directory to show"),
                max_depth=_prop("integer", "Depth limit (default 3)"),
            ),
            risk_level=RiskLevel.LOW,
            requires_approval=False,
            handler=FunctionTool(file_tree),
            read_only=True,
        ),
        ToolDefinition(
            name="file_search",
            description="Search file contents with a regular expression",
            category=ToolCategory.SEARCH,
            schema=_schema(
                ["pattern"],
                pattern=_prop("string", "Regular expression"),
                path=_prop("string", "File or directory to search"),
                include=_prop("string", "Only files whose name matches this glob"),
                case_sensitive=_prop("boolean", "Default true"),
            ),
            risk_level=RiskLevel.LOW,
            requires_approval=False,
            handler=FunctionTool(file_search),
            read_only=True,
        ),
        ToolDefinition(
            name="shell_exec",
            description="Run a shell command in the project directory",
            category=ToolCategory.SHELL,
            schema=_schema(
                ["command"],
                command=_prop("string", "Command line to run"),
                cwd=_prop("string", "Working directory relative to the project root"),
                timeout=_prop("number", "Seconds before the command is killed"),
            ),
            risk_level=RiskLevel.HIGH,
            requires_approval=True,
            handler=FunctionTool(shell_exec),
        ),
        ToolDefinition(
            name="git_status",
            description="Show the working tree status",
            category=ToolCategory.GIT,
            schema=_schema(),
            risk_level=RiskLevel.LOW,
            requires_approval=False,
            handler=FunctionTool(git_status),
            read_only=True,
        ),
        ToolDefinition(
            name="git_diff",
            description="Show unstaged (or staged) changes",
            category=ToolCategory.GIT,
            schema=_schema(
                staged=_prop("boolean", "Diff the index instead of the working tree"),
                path=_prop("string", "Limit to one path"),
            ),
            risk_level=RiskLevel.LOW,
            requires_approval=False,
            handler=FunctionTool(git_diff),
            read_only=True,
        ),
        ToolDefinition(
            name="git_commit",
            description="Commit staged changes, optionally staging files or everything first",
            category=ToolCategory.GIT,
            schema=_schema(
                ["message"],
                message=_prop("string", "Commit message"),
                files=_prop("array", "Paths to stage before committing"),
                add_all=_prop("boolean", "Stage every change before committing"),
            ),
            risk_level=RiskLevel.HIGH,
            requires_approval=True,
            handler=FunctionTool(git_commit),
            sandbox_allowed=False,
        ),
        ToolDefinition(
            name="git_branch",
            description="List, create, switch or delete branches",
            category=ToolCategory.GIT,
            schema=_schema(
                action=_prop("string", "What to do", enum=["list", "create", "switch", "delete"]),
                name=_prop("string", "Branch name"),
            ),
            risk_level=RiskLevel.MEDIUM,
            requires_approval=True,
            handler=FunctionTool(git_branch),
        ),
    ]
