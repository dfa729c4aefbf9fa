# Vault Bridge
#
# Modular package structure:
# - config.py: Settings and constants
# - logging.py: structlog configuration
# - errors.py: Exception hierarchy with HTTP status and error codes
# - models.py: Pydantic models for index records, payloads and request bodies
# - utils.py: Parsing, regex patterns, batching and path validation
# - cache.py: VaultCache metadata index and note store
# - resolver.py: Link resolution and the reverse link index
# - graph.py: Graph traversal and neighbor queries
# - links.py: Backlink and outlink queries
# - search.py: Listing, search and tag functions
# - writer.py: Note create/update/delete/move
# - templates.py, daily.py: Templates and daily notes
# - context.py, routing.py, auth.py: Request context, route table, auth gate
# - server.py: Dispatcher and lifecycle
# - routes.py: Route registration
# - main.py: Entry point and server assembly

from .config import VERSION

__version__ = VERSION
