"""
Tests for the route table.
"""

import pytest


async def _noop(ctx):
    return None


class TestCompilePattern:
    """Tests for pattern compilation."""

    def test_params_in_declared_order(self):
        """Test parameter names keep declaration order."""
        from vault_bridge.routing import compile_pattern

        regex, names = compile_pattern("/a/:first/b/:second")

        assert names == ("first", "second")
        assert regex.fullmatch("/a/1/b/2").groups() == ("1", "2")

    def test_segment_does_not_cross_slash(self):
        """Test a parameter captures exactly one segment."""
        from vault_bridge.routing import compile_pattern

        regex, _ = compile_pattern("/notes/:path")

        assert regex.fullmatch("/notes/a/b") is None

    def test_literal_characters_escaped(self):
        """Test regex metacharacters in literals match literally."""
        from vault_bridge.routing import compile_pattern

        regex, _ = compile_pattern("/v1.0/items")

        assert regex.fullmatch("/v1.0/items") is not None
        assert regex.fullmatch("/v1x0/items") is None

    def test_duplicate_param_rejected(self):
        """Test a pattern cannot name the same parameter twice."""
        from vault_bridge.routing import compile_pattern

        with pytest.raises(ValueError, match="Duplicate"):
            compile_pattern("/:id/x/:id")


class TestRouteTable:
    """Tests for RouteTable matching."""

    def test_tag_param_extraction(self):
        """Test /tags/:tag/notes against /tags/work/notes."""
        from vault_bridge.routing import RouteTable

        table = RouteTable()
        table.register("GET", "/tags/:tag/notes", _noop)

        match = table.match("GET", "/tags/work/notes")

        assert match.params == {"tag": "work"}
        assert match.route.pattern == "/tags/:tag/notes"

    def test_method_must_match(self):
        """Test the same path with a different method does not match."""
        from vault_bridge.routing import RouteTable

        table = RouteTable()
        table.register("GET", "/notes", _noop)

        assert table.match("POST", "/notes") is None
        assert table.match("get", "/notes") is not None

    def test_first_registered_wins(self):
        """Test overlapping routes resolve to the first registration."""
        from vault_bridge.routing import RouteTable

        async def first(ctx):
            return 1

        async def second(ctx):
            return 2

        table = RouteTable()
        table.register("GET", "/notes/:path", first)
        table.register("GET", "/notes/special", second)

        for _ in range(3):
            assert table.match("GET", "/notes/special").route.handler is first

    def test_params_percent_decoded(self):
        """Test encoded slashes and spaces are decoded after matching."""
        from vault_bridge.routing import RouteTable

        table = RouteTable()
        table.register("GET", "/notes/:path/backlinks", _noop)

        match = table.match("GET", "/notes/Sessions%2FDev%20Setup/backlinks")

        assert match.params == {"path": "Sessions/Dev Setup"}

    def test_malformed_encoding_rejected(self):
        """Test invalid UTF-8 percent escapes are an input error."""
        from vault_bridge.routing import RouteTable
        from vault_bridge.errors import InvalidInputError

        table = RouteTable()
        table.register("GET", "/notes/:path", _noop)

        with pytest.raises(InvalidInputError, match="Malformed path parameter: path"):
            table.match("GET", "/notes/%ff%fe")

    def test_no_match_returns_none(self):
        """Test an unknown path yields None."""
        from vault_bridge.routing import RouteTable

        table = RouteTable()
        table.register("GET", "/notes", _noop)

        assert table.match("GET", "/nope") is None

    def test_frozen_table_rejects_registration(self):
        """Test routes cannot be added after freeze()."""
        from vault_bridge.routing import RouteTable

        table = RouteTable()
        table.register("GET", "/notes", _noop)
        table.freeze()

        with pytest.raises(RuntimeError):
            table.register("GET", "/late", _noop)
        assert len(table) == 1

    async def test_full_route_surface_registers(self, cache, resolver, settings):
        """Test every route group registers without pattern clashes."""
        from vault_bridge.routes import register_routes
        from vault_bridge.routing import RouteTable

        table = RouteTable()
        register_routes(table, cache, resolver, settings)
        declared = {(route.method, route.pattern) for route in table.routes}

        assert len(declared) == len(table) == 18
        assert table.match("POST", "/notes/Concepts%2FPython/move").route.pattern == "/notes/:path/move"
        assert table.match("GET", "/notes/Concepts%2FPython").route.pattern == "/notes/:path"
        assert table.match("GET", "/daily/2024-01-15").params == {"date": "2024-01-15"}
