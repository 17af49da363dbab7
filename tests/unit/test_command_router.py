"""
Tests for the command router.
"""

import pytest

from calendar_mcp.core.router import CommandRouter, RouterError
from calendar_mcp.models.domain.command_domain import Command, CommandContext, CommandResult


def make_handler(label: str, calls: list):
    async def handler(command: Command, context: CommandContext) -> CommandResult:
        calls.append((label, command))
        return CommandResult.ok({"handled_by": label})

    return handler


@pytest.mark.asyncio
async def test_reregistering_a_command_keeps_only_the_latest_handler():
    router = CommandRouter()
    calls = []
    router.register_handler("calendar.event.create", make_handler("first", calls))
    router.register_handler("calendar.event.create", make_handler("second", calls))

    result = await router.process_command(Command(name="calendar.event.create"))

    assert router.registered_commands() == ["calendar.event.create"]
    assert result.success is True
    assert result.data == {"handled_by": "second"}
    assert [label for label, _ in calls] == ["second"]


@pytest.mark.asyncio
async def test_command_without_name_is_rejected_before_any_handler():
    router = CommandRouter()
    calls = []
    router.register_handler("calendar.event.create", make_handler("only", calls))

    for command in ({}, None, Command()):
        result = await router.process_command(command)
        assert result.success is False
        assert result.error.code == "MISSING_COMMAND"
        assert result.error.details["status_code"] == 400

    assert calls == []


@pytest.mark.asyncio
async def test_unknown_command_returns_no_handler():
    router = CommandRouter()

    result = await router.process_command({"name": "calendar.events.query"})

    assert result.success is False
    assert result.error.code == "NO_HANDLER"
    assert result.error.details["status_code"] == 404


@pytest.mark.asyncio
async def test_missing_parameters_default_to_empty_map():
    router = CommandRouter()
    calls = []
    router.register_handler("preferences.get", make_handler("prefs", calls))

    await router.process_command(Command(name="preferences.get"))

    _, command = calls[0]
    assert command.parameters == {}


@pytest.mark.asyncio
async def test_middlewares_run_in_registration_order_before_dispatch():
    router = CommandRouter()
    order = []
    calls = []

    def tag_first(command: Command) -> Command:
        order.append("first")
        return command.with_updates(parameters={**(command.parameters or {}), "first": True})

    async def rename(command: Command) -> Command:
        order.append("second")
        return command.with_updates(name="docs.document.create")

    router.use(tag_first)
    router.use(rename)
    router.register_handler("docs.document.create", make_handler("docs", calls))

    result = await router.process_command(Command(name="calendar.event.create"))

    assert order == ["first", "second"]
    assert result.success is True
    _, command = calls[0]
    assert command.name == "docs.document.create"
    assert command.parameters == {"first": True}


@pytest.mark.asyncio
async def test_middleware_must_return_a_command():
    router = CommandRouter()
    router.use(lambda command: None)
    router.register_handler("preferences.get", make_handler("prefs", []))

    with pytest.raises(RouterError):
        await router.process_command(Command(name="preferences.get"))


@pytest.mark.asyncio
async def test_handler_exceptions_propagate():
    router = CommandRouter()

    async def broken(command, context):
        raise RuntimeError("provider down")

    router.register_handler("calendar.event.create", broken)

    with pytest.raises(RuntimeError, match="provider down"):
        await router.process_command(Command(name="calendar.event.create"))


@pytest.mark.asyncio
async def test_dict_results_are_validated_into_command_results():
    router = CommandRouter()

    async def plain(command, context):
        return {"success": True, "data": {"ok": 1}}

    router.register_handler("preferences.get", plain)

    result = await router.process_command(Command(name="preferences.get"))

    assert isinstance(result, CommandResult)
    assert result.data == {"ok": 1}


def test_unregister_and_health():
    router = CommandRouter(version="1.2.3")
    router.register_handler("a.b", make_handler("a", []))

    health = router.health()
    assert health["status"] == "ok"
    assert health["version"] == "1.2.3"
    assert health["handlers"] == ["a.b"]

    assert router.unregister_handler("a.b") is True
    assert router.unregister_handler("a.b") is False
    assert router.has_handler("a.b") is False


def test_command_context_defaults():
    context = CommandContext()

    assert context.request_id.startswith("req-")
    assert context.timestamp.tzinfo is not None
