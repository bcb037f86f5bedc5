from __future__ import annotations

import secrets
import string
import uuid
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import urlsplit

from widgetgate.core.config import settings
from widgetgate.core.exceptions import KeyCollisionError, ValidationError
from widgetgate.core.logging import get_structlog_logger
from widgetgate.services import metrics
from widgetgate.services.calculators import ISSUABLE_CALCULATOR_TYPES, is_issuable
from widgetgate.services.key_store import WidgetKeyRecord, WidgetKeyStore

logger = get_structlog_logger(__name__)

KEY_ALPHABET = string.ascii_lowercase + string.digits

_EMBED_TEMPLATE = """<!-- Contractor AI Widget - {title} Calculator -->
<div id="{container_id}"></div>
<script>
(function() {{
  var s = document.createElement('script');
  s.src = '{script_url}';
  s.setAttribute('data-widget-key', '{widget_key}');
  s.setAttribute('data-calculator', '{calculator_type}');
  s.async = true;
  document.head.appendChild(s);
}})();
</script>
<!-- End Contractor AI Widget -->"""


def generate_widget_key(prefix: Optional[str] = None, length: Optional[int] = None) -> str:
    """Prefix plus ``length`` characters drawn uniformly from [a-z0-9]."""
    prefix = settings.widget_key_prefix if prefix is None else prefix
    length = settings.widget_key_random_length if length is None else length
    return prefix + "".join(secrets.choice(KEY_ALPHABET) for _ in range(length))


def normalize_domain(domain: Optional[str]) -> Optional[str]:
    """Reduce a contractor-entered domain to a bare lowercase host, or None."""
    if domain is None:
        return None
    value = domain.strip().lower()
    if "://" in value:
        value = urlsplit(value).netloc
    value = value.split("/", 1)[0].rstrip(".")
    return value or None


def build_embed_snippet(widget_key: str, calculator_type: str) -> str:
    return _EMBED_TEMPLATE.format(
        title=calculator_type.upper(),
        container_id=settings.widget_container_id,
        script_url=settings.embed_script_url,
        widget_key=widget_key,
        calculator_type=calculator_type,
    )


@dataclass(frozen=True)
class IssuedKey:
    record: WidgetKeyRecord
    embed_snippet: str

    @property
    def key(self) -> str:
        return self.record.key


class KeyIssuer:
    def __init__(
        self,
        key_store: WidgetKeyStore,
        key_factory: Callable[[], str] = generate_widget_key,
        default_rate_limit: Optional[int] = None,
    ) -> None:
        self.key_store = key_store
        self.key_factory = key_factory
        self.default_rate_limit = default_rate_limit or settings.widget_default_rate_limit

    async def issue(
        self,
        contractor_id: uuid.UUID,
        calculator_type: str,
        domain: Optional[str] = None,
    ) -> IssuedKey:
        """Mint and persist one key. A collision raises ``KeyCollisionError``."""
        if not is_issuable(calculator_type):
            raise ValidationError(
                f"Invalid calculator type. Must be one of: {', '.join(ISSUABLE_CALCULATOR_TYPES)}",
                details={"field": "calculatorType"},
            )

        record = WidgetKeyRecord(
            id=uuid.uuid4(),
            key=self.key_factory(),
            contractor_id=contractor_id,
            calculator_type=calculator_type,
            domain=normalize_domain(domain),
            is_active=True,
            rate_limit_per_minute=self.default_rate_limit,
            usage_count=0,
        )
        stored = await self.key_store.insert(record)

        metrics.WIDGET_KEYS_ISSUED.labels(calculator_type=calculator_type).inc()
        logger.info(
            "widget_key.issued",
            widget_key_id=str(stored.id),
            contractor_id=str(contractor_id),
            calculator_type=calculator_type,
            domain_locked=stored.domain is not None,
        )
        return IssuedKey(record=stored, embed_snippet=build_embed_snippet(stored.key, stored.calculator_type))

    async def issue_with_retry(
        self,
        contractor_id: uuid.UUID,
        calculator_type: str,
        domain: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> IssuedKey:
        """Regenerate and retry on collision; the last collision propagates."""
        attempts = attempts or settings.widget_key_issue_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await self.issue(contractor_id, calculator_type, domain)
            except KeyCollisionError:
                logger.warning("widget_key.collision", attempt=attempt, max_attempts=attempts)
                if attempt == attempts:
                    raise
        raise KeyCollisionError()
