"""
Payment Source Registry

Central registry of supported payment sources.
Each source has:
- Display name
- CSV dialect used to import it
- Whether its rows carry customer hints (name, email, card address)
- The payment-source type recorded when a payment is confirmed

Supported Sources:
- BANK_CSV: bank statement exports (credits only)
- STRIPE_REPORT: payment-processor reports
"""

from typing import Dict, Any, List, Optional
from dataclasses import dataclass

from ingestion.models import PaymentSourceType
from ingestion.parsers import CsvDialect


class PaymentSourceKind:
    """Values stored in payment_sources.source_type"""
    BANK_ACCOUNT = "bank_account"
    STRIPE_SOURCE = "stripe_source"


@dataclass
class SourceConfig:
    """
    Configuration for a payment source.
    """
    source: PaymentSourceType
    display_name: str
    dialect: CsvDialect
    enabled: bool
    provides_customer_hints: bool
    payment_source_kind: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source.value,
            "display_name": self.display_name,
            "dialect": self.dialect.value,
            "enabled": self.enabled,
            "provides_customer_hints": self.provides_customer_hints,
            "payment_source_kind": self.payment_source_kind,
        }


class SourceRegistry:
    """
    Registry of payment sources, looked up by source or by CSV dialect.
    """

    _default_configs: Dict[PaymentSourceType, SourceConfig] = {
        PaymentSourceType.BANK_CSV: SourceConfig(
            source=PaymentSourceType.BANK_CSV,
            display_name="Bank Statement (Lloyds CSV)",
            dialect=CsvDialect.LLOYDS,
            enabled=True,
            provides_customer_hints=False,
            payment_source_kind=PaymentSourceKind.BANK_ACCOUNT,
        ),
        PaymentSourceType.STRIPE_REPORT: SourceConfig(
            source=PaymentSourceType.STRIPE_REPORT,
            display_name="Stripe Payments Report",
            dialect=CsvDialect.STRIPE,
            enabled=True,
            provides_customer_hints=True,
            payment_source_kind=PaymentSourceKind.STRIPE_SOURCE,
        ),
    }

    def __init__(self):
        self._configs = dict(self._default_configs)

    def get_config(self, source: PaymentSourceType) -> Optional[SourceConfig]:
        """Get configuration for a source."""
        return self._configs.get(PaymentSourceType(source))

    def get_enabled_sources(self) -> List[PaymentSourceType]:
        return [cfg.source for cfg in self._configs.values() if cfg.enabled]

    def config_for_dialect(self, dialect: CsvDialect) -> Optional[SourceConfig]:
        dialect = CsvDialect(dialect)
        for cfg in self._configs.values():
            if cfg.dialect == dialect:
                return cfg
        return None

    def is_dialect_enabled(self, dialect: CsvDialect) -> bool:
        cfg = self.config_for_dialect(dialect)
        return cfg.enabled if cfg else False

    def payment_source_kind(self, source: PaymentSourceType) -> str:
        cfg = self.get_config(source)
        return cfg.payment_source_kind if cfg else PaymentSourceKind.BANK_ACCOUNT

    def to_dict(self) -> Dict[str, Any]:
        return {
            source.value: cfg.to_dict()
            for source, cfg in self._configs.items()
        }


# Global registry instance
source_registry = SourceRegistry()
