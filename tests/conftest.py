"""
Pytest configuration and fixtures for vault-bridge tests.
"""

import pytest
from pathlib import Path

TEST_TOKEN = "test-token-abcdefghijklmnopqrstuvwxyz"


@pytest.fixture
def temp_vault(tmp_path: Path):
    """Create a temporary vault with interlinked test notes."""
    vault_path = tmp_path / "vault"
    vault_path.mkdir()

    # Create folder structure
    (vault_path / "Concepts").mkdir()
    (vault_path / "Sessions").mkdir()
    (vault_path / "References").mkdir()
    (vault_path / "Templates").mkdir()

    # Note 1: Concept with full frontmatter
    (vault_path / "Concepts" / "Python.md").write_text("""---
title: Python
created: 2024-01-15
tags:
  - programming
  - language
---

# Python

Python is a programming language.

See also [[JavaScript]] for comparison. #lang
""", encoding="utf-8")

    # Note 2: Another concept with links
    (vault_path / "Concepts" / "JavaScript.md").write_text("""---
title: JavaScript
tags:
  - programming
  - web
---

# JavaScript

JavaScript is a web programming language.

It links to [[Python]] and [[Docker]].
""", encoding="utf-8")

    # Note 3: Session note with a relative markdown link
    (vault_path / "Sessions" / "Dev Setup.md").write_text("""---
tags:
  - devops
---

# Development Setup

Today we configured Python and Docker for development.
The setup includes [[Python|the Python language]] configuration.
See [Docker notes](../References/Docker.md).
""", encoding="utf-8")

    # Note 4: Reference note with an unresolved link
    (vault_path / "References" / "Docker.md").write_text("""---
title: Docker Reference
tags: [devops, containers]
---

# Docker

Docker is a containerization platform.

Related: [[Python]], [[Kubernetes]]
""", encoding="utf-8")

    # Note 5: Template
    (vault_path / "Templates" / "Meeting.md").write_text("""# {{title}}

Date: {{date}}
Attendees: {{attendees}}
""", encoding="utf-8")

    # Note 6: Note without frontmatter
    (vault_path / "no_frontmatter.md").write_text("""# Simple Note

This note has no YAML frontmatter.
Just plain markdown content.
""", encoding="utf-8")

    # Note 7: Note with invalid frontmatter
    (vault_path / "invalid_frontmatter.md").write_text("""---
title: [invalid yaml
date: not-a-date
---

This note has invalid YAML frontmatter.
""", encoding="utf-8")

    # Hidden folders are never indexed
    (vault_path / ".obsidian").mkdir()
    (vault_path / ".obsidian" / "workspace.md").write_text("[[Python]]", encoding="utf-8")

    yield vault_path


@pytest.fixture
async def cache(temp_vault):
    """Create a loaded VaultCache over the temp vault."""
    from vault_bridge.cache import VaultCache

    vault_cache = VaultCache(temp_vault, ttl=60, batch_size=2)
    await vault_cache.refresh(force=True)
    return vault_cache


@pytest.fixture
def resolver(cache):
    from vault_bridge.resolver import LinkResolver

    return LinkResolver(cache)


@pytest.fixture
def settings(temp_vault, tmp_path):
    from vault_bridge.config import Settings

    return Settings(vault_path=temp_vault, config_dir=tmp_path / "config", port=0)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {TEST_TOKEN}"}


@pytest.fixture
def make_dispatcher(cache, resolver, settings):
    """Factory for a Dispatcher with every route registered."""
    from vault_bridge.auth import AuthGate, TokenHolder
    from vault_bridge.routes import health_provider, register_routes
    from vault_bridge.routing import RouteTable
    from vault_bridge.server import Dispatcher

    def factory(token: str | None = TEST_TOKEN, **overrides):
        table = RouteTable()
        register_routes(table, cache, resolver, settings)
        options = {
            "max_body_size": settings.max_body_size,
            "request_timeout": settings.request_timeout,
            "cors_origins": settings.cors_origins,
        }
        options.update(overrides)
        return Dispatcher(table, AuthGate(TokenHolder(token)), health_provider(cache), **options)

    return factory


@pytest.fixture
async def client(aiohttp_raw_server, aiohttp_client, make_dispatcher):
    """Test client talking to the full route surface."""
    raw_server = await aiohttp_raw_server(make_dispatcher())
    return await aiohttp_client(raw_server)
