"""Tests for the built-in function library."""

import pytest

from agentscript.dsl import FunctionLibrary


class TestFunctionLibrary:
    """Test built-ins and calling conventions."""

    def setup_method(self):
        self.functions = FunctionLibrary()

    @pytest.mark.asyncio
    async def test_keyword_arguments(self):
        assert await self.functions.call("add", {"a": 2, "b": 3}) == 5
        assert await self.functions.call("add", {"a": "2", "b": "3.5"}) == 5.5

    @pytest.mark.asyncio
    async def test_positional_arguments(self):
        assert await self.functions.call("upper", ["hi"]) == "HI"
        assert await self.functions.call("concat", ["a", "b", "c"]) == "abc"

    @pytest.mark.asyncio
    async def test_no_arguments(self):
        today = await self.functions.call("today")
        assert len(today) == 10

    @pytest.mark.asyncio
    async def test_single_value(self):
        assert await self.functions.call("trim", "  padded ") == "padded"

    @pytest.mark.asyncio
    async def test_aggregates(self):
        assert await self.functions.call("sum", [[1, 2, 3]]) == 6
        assert await self.functions.call("sum", ["[1, 2, 3]"]) == 6
        assert await self.functions.call("average", [[2, 4]]) == 3
        assert await self.functions.call("max", [[2, 9, 4]]) == 9
        assert await self.functions.call("count", [[1, 2]]) == 2

    @pytest.mark.asyncio
    async def test_divide_by_zero(self):
        with pytest.raises(ValueError, match="Division by zero"):
            await self.functions.call("divide", [1, 0])

    @pytest.mark.asyncio
    async def test_dates(self):
        assert await self.functions.call("add_days", ["2024-01-30", 3]) == "2024-02-02T00:00:00"
        assert await self.functions.call("format_date", ["2024-03-05T10:00:00", "%d/%m/%Y"]) == "05/03/2024"

    @pytest.mark.asyncio
    async def test_object_helpers(self):
        data = {"a": {"b": [1, 2]}, "c": 3}
        assert await self.functions.call("get", [data, "a.b.1"]) == 2
        assert await self.functions.call("get", [data, "a.x", "fallback"]) == "fallback"
        assert await self.functions.call("pick", [data, "a, c"]) == data
        assert await self.functions.call("keys", [data]) == ["a", "c"]
        assert await self.functions.call("merge", [{"a": 1}, {"b": 2}]) == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_json(self):
        assert await self.functions.call("json_parse", ['{"a": 1}']) == {"a": 1}
        assert await self.functions.call("json_stringify", [{"a": 1}]) == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_unknown_function(self):
        assert not self.functions.has("nope")
        with pytest.raises(KeyError):
            await self.functions.call("nope", [])

    @pytest.mark.asyncio
    async def test_register_async_function(self):
        async def slugify(text):
            return text.lower().replace(" ", "-")

        self.functions.register("slugify", slugify)
        assert "slugify" in self.functions.names()
        assert await self.functions.call("slugify", ["Hello World"]) == "hello-world"

    def test_empty_library(self):
        assert FunctionLibrary(include_builtins=False).names() == []
