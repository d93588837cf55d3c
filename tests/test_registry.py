"""Tests for the tool registry and subprocess tool discovery."""

from __future__ import annotations

import json
import logging

import pytest

from agent_runtime.config import McpServerConfig
from agent_runtime.errors import ProtocolError, ToolExecutionError, TransportError
from agent_runtime.tools import registry as registry_module
from agent_runtime.tools.discovered import SubprocessTool, parse_discovery_output
from agent_runtime.tools.registry import ToolRegistry

DISCOVER = """
    import json
    print(json.dumps([
        {"function_declarations": [
            {"name": "greet", "description": "Say hello",
             "parameters": {"type": "object", "properties": {"who": {"type": "string"}}}},
            {"name": "fail", "description": "Always fails"},
        ]},
        {"function_declarations": [{"name": "add"}]},
    ]))
"""

CALL = """
    import json, sys
    name = sys.argv[1]
    args = json.loads(sys.stdin.read() or "{}")
    if name == "greet":
        print("Hello, " + args.get("who", "world"))
    elif name == "add":
        print(args["a"] + args["b"])
    else:
        sys.stderr.write("nope")
        sys.exit(2)
"""


class TestParseDiscoveryOutput:
    def test_valid(self) -> None:
        declarations = parse_discovery_output(json.dumps([
            {"function_declarations": [{"name": "a"}, {"name": "b", "parameters": {"type": "object"}}]}
        ]))
        assert [d.name for d in declarations] == ["a", "b"]
        assert declarations[0].description == ""

    @pytest.mark.parametrize(
        "payload, fragment",
        [
            ("not json", "not valid JSON"),
            ('{"function_declarations": []}', "must be a JSON array"),
            ('[{"tools": []}]', "unexpected keys"),
            ('[{"function_declarations": {}}]', "'function_declarations' array"),
            ('[{"function_declarations": [{"name": "a", "extra": 1}]}]', "unexpected keys"),
            ('[{"function_declarations": [{"name": "bad name"}]}]', "function_declarations[0]"),
            ('[{"function_declarations": [{"name": "a"}, {"name": "a"}]}]', "duplicate"),
            ('[{"function_declarations": [{"name": "a", "description": 3}]}]', "description"),
            ('[{"function_declarations": [{"name": "a", "parameters": []}]}]', "parameters"),
        ],
    )
    def test_rejects_deviations(self, payload, fragment) -> None:
        with pytest.raises(ProtocolError) as excinfo:
            parse_discovery_output(payload)
        assert fragment in str(excinfo.value)


class TestStaticRegistration:
    def test_register_and_lookup(self, recording_tool) -> None:
        registry = ToolRegistry()
        tool = recording_tool("echo")
        registry.register_tool(tool)

        assert registry.get_tool("echo") is tool
        assert "echo" in registry
        assert len(registry) == 1
        assert registry.get_tool("missing") is None
        assert [d.name for d in registry.get_function_declarations()] == ["echo"]

    def test_overwrite_warns(self, recording_tool, caplog) -> None:
        registry = ToolRegistry()
        registry.register_tool(recording_tool("echo"))
        replacement = recording_tool("echo")

        with caplog.at_level(logging.WARNING, logger="agent_runtime.tools.registry"):
            registry.register_tool(replacement)

        assert registry.get_tool("echo") is replacement
        assert "already registered" in caplog.text

    def test_unregister(self, recording_tool) -> None:
        registry = ToolRegistry()
        registry.register_tool(recording_tool("echo"))
        assert registry.unregister_tool("echo")
        assert not registry.unregister_tool("echo")


class TestSubprocessDiscovery:
    @pytest.mark.asyncio
    async def test_discovers_every_declaration(self, tmp_path, python_script) -> None:
        registry = ToolRegistry(
            root=tmp_path,
            discovery_command=python_script("discover.py", DISCOVER),
            call_command=python_script("call.py", CALL),
        )

        await registry.discover_tools()

        assert sorted(t.name for t in registry.get_all_tools()) == ["add", "fail", "greet"]
        assert all(isinstance(t, SubprocessTool) for t in registry.get_all_tools())
        assert registry.get_tool("greet").description.startswith("Say hello")

    @pytest.mark.asyncio
    async def test_calls_through_call_command(self, tmp_path, python_script) -> None:
        registry = ToolRegistry(
            root=tmp_path,
            discovery_command=python_script("discover.py", DISCOVER),
            call_command=python_script("call.py", CALL),
        )
        await registry.discover_tools()

        greeting = await registry.get_tool("greet").execute({"who": "Ada"})
        total = await registry.get_tool("add").execute({"a": 2, "b": 3})

        assert greeting.llm_content == "Hello, Ada\n"
        assert total.llm_content == "5\n"

    @pytest.mark.asyncio
    async def test_stdout_is_returned_verbatim(self, tmp_path, python_script) -> None:
        call = python_script("call.py", """
            import sys
            sys.stdout.write("  line1\\n  indented\\n\\n")
        """)
        registry = ToolRegistry(
            root=tmp_path,
            discovery_command=python_script("discover.py", DISCOVER),
            call_command=call,
        )
        await registry.discover_tools()

        result = await registry.get_tool("greet").execute({})

        assert result.llm_content == "  line1\n  indented\n\n"
        assert result.return_display == "  line1\n  indented\n\n"

    @pytest.mark.asyncio
    async def test_non_zero_exit_is_tool_error(self, tmp_path, python_script) -> None:
        registry = ToolRegistry(
            root=tmp_path,
            discovery_command=python_script("discover.py", DISCOVER),
            call_command=python_script("call.py", CALL),
        )
        await registry.discover_tools()

        with pytest.raises(ToolExecutionError) as excinfo:
            await registry.get_tool("fail").execute({})

        message = str(excinfo.value)
        assert "Stderr: nope" in message
        assert "Exit Code: 2" in message

    @pytest.mark.asyncio
    async def test_rediscovery_replaces_previous_set(self, tmp_path, python_script, recording_tool) -> None:
        manifest = tmp_path / "names.json"
        manifest.write_text('["one", "two"]')
        discover = python_script("discover.py", f"""
            import json
            names = json.load(open({str(manifest)!r}))
            print(json.dumps([{{"function_declarations": [{{"name": n}} for n in names]}}]))
        """)
        registry = ToolRegistry(root=tmp_path, discovery_command=discover,
                                call_command=python_script("call.py", CALL))
        registry.register_tool(recording_tool("echo"))

        await registry.discover_tools()
        manifest.write_text('["three"]')
        await registry.discover_tools()

        assert sorted(t.name for t in registry.get_all_tools()) == ["echo", "three"]

    @pytest.mark.asyncio
    async def test_invalid_output_yields_no_tools(self, tmp_path, python_script, recording_tool, caplog) -> None:
        registry = ToolRegistry(
            root=tmp_path,
            discovery_command=python_script("discover.py", "print('not json')"),
            call_command=python_script("call.py", CALL),
        )
        registry.register_tool(recording_tool("echo"))

        with caplog.at_level(logging.ERROR, logger="agent_runtime.tools.registry"):
            await registry.discover_tools()

        assert [t.name for t in registry.get_all_tools()] == ["echo"]
        assert "Invalid tool discovery output" in caplog.text

    @pytest.mark.asyncio
    async def test_failing_discovery_command(self, tmp_path, python_script) -> None:
        registry = ToolRegistry(
            root=tmp_path,
            discovery_command=python_script("discover.py", "import sys; sys.exit(1)"),
            call_command=python_script("call.py", CALL),
        )
        await registry.discover_tools()
        assert len(registry) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "discovery, call",
        [
            ("bash discover.sh", "python3 call.py"),
            ("python3 tools.py; rm -rf /", "python3 call.py"),
            ("cat /etc/passwd", "python3 call.py"),
            ("python3 discover.py", None),
        ],
    )
    async def test_unsafe_or_incomplete_commands_are_refused(self, tmp_path, discovery, call) -> None:
        registry = ToolRegistry(root=tmp_path, discovery_command=discovery, call_command=call)
        await registry.discover_tools()
        assert len(registry) == 0


class TestMcpDiscovery:
    @pytest.mark.asyncio
    async def test_failing_server_is_isolated(self, monkeypatch, recording_tool) -> None:
        closed: list[str] = []

        class FakeConnection:
            def __init__(self, name: str) -> None:
                self.name = name

            async def close(self) -> None:
                closed.append(self.name)

        async def fake_discover(name, config, allowlist):
            if name == "broken":
                raise TransportError("Failed to connect to MCP server 'broken': boom")
            tool = recording_tool(f"{name}_tool")
            tool.kind = "mcp"
            return FakeConnection(name), [tool]

        monkeypatch.setattr(registry_module, "discover_server_tools", fake_discover)
        registry = ToolRegistry(mcp_servers={
            "good": McpServerConfig(command="good-server"),
            "broken": McpServerConfig(command="broken-server"),
        })

        await registry.discover_tools()

        assert [t.name for t in registry.get_all_tools()] == ["good_tool"]
        assert registry.get_connection("good") is not None
        assert registry.get_connection("broken") is None

        await registry.close()
        assert closed == ["good"]
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_rediscovery_closes_old_connections(self, monkeypatch) -> None:
        closed: list[int] = []
        generation = iter(range(10))

        class FakeConnection:
            def __init__(self) -> None:
                self.id = next(generation)

            async def close(self) -> None:
                closed.append(self.id)

        async def fake_discover(name, config, allowlist):
            return FakeConnection(), []

        monkeypatch.setattr(registry_module, "discover_server_tools", fake_discover)
        registry = ToolRegistry(mcp_servers={"s": McpServerConfig(command="srv")})

        async with registry:
            await registry.discover_tools()
            await registry.discover_tools()
            assert closed == [0]
        assert closed == [0, 1]
