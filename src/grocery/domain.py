"""Domain initialization and configuration.

A single domain hosts orders, payments, inventory, deliveries and webhook
receipts. The engines coordinate these aggregates synchronously, so they
share one composition root and one unit of work.
"""

import structlog
from protean.domain import Domain

# Import the catalog package before Domain.init() traverses its modules, so
# its __init__ is loaded ahead of memory_adapter.py (avoids a circular import)
import grocery.catalog  # noqa: F401
from grocery.utils.logging import configure_logging

# Configure logging for the application
configure_logging()

logger = structlog.get_logger(__name__)

# Domain Composition Root
grocery = Domain(name="grocery")
