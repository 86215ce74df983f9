"""
Configuration loader for the Adaptive Invoice Review Engine
"""
import os
import yaml
from dotenv import load_dotenv
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

# Load environment variables
load_dotenv()


class Config:
    """Application configuration"""

    # Memory store
    MEMORY_DATABASE_URL = os.getenv('MEMORY_DATABASE_URL', 'sqlite:///./data/memory_store.db')

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FILE = os.getenv('LOG_FILE')

    # Pipeline definition (stage toggles, trigger markers)
    DEFAULT_PIPELINE_CONFIG_PATH = str(Path(__file__).parent / 'pipeline.yaml')
    PIPELINE_CONFIG_PATH = os.getenv('PIPELINE_CONFIG_PATH', DEFAULT_PIPELINE_CONFIG_PATH)

    @staticmethod
    def auto_accept_threshold() -> Optional[float]:
        """AUTO_ACCEPT_THRESHOLD override, read at call time; None when unset"""
        value = os.getenv('AUTO_ACCEPT_THRESHOLD')
        return float(value) if value else None

    @classmethod
    def load_pipeline_config(cls, config_path: Optional[str] = None) -> dict:
        """
        Load pipeline configuration from YAML

        Raises:
            FileNotFoundError: The configured file does not exist
        """
        path = Path(config_path or cls.PIPELINE_CONFIG_PATH)
        if not path.is_file():
            raise FileNotFoundError(f"Pipeline configuration not found: {path}")
        with open(path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}


class TriggerSpec(BaseModel):
    """Declared text predicate as written in pipeline.yaml"""
    pattern: str
    mode: str = 'substring'
    case_sensitive: bool = True


def _markers(*patterns: str) -> List[TriggerSpec]:
    return [TriggerSpec(pattern=p) for p in patterns]


class SafetyNetSpec(BaseModel):
    """One safety-net check: markers that fire it and the confidence penalty"""
    markers: List[TriggerSpec] = Field(default_factory=list)
    penalty: float = 0.0


class POFallbackSpec(BaseModel):
    """Vendor-specific literal PO assignment used when nothing else matched"""
    vendor: str
    keyword: str
    po_number: str


class StageToggles(BaseModel):
    duplicate_detection: bool = True
    three_way_match: bool = True
    vendor_trust: bool = True


class Thresholds(BaseModel):
    auto_accept: float = 0.80
    memory_apply: float = 0.5
    learned_preference: float = 0.6
    dn_priority: float = 0.7
    min_recall_confidence: float = 0.2
    duplicate_window_days: int = 7


class PipelineSettings(BaseModel):
    """
    Validated pipeline configuration

    Everything the stages match against in raw invoice text is declared
    here rather than inlined in the nodes. The defaults are the full
    standard rule set, so a partial YAML file only overrides what it names.
    """
    stages: StageToggles = Field(default_factory=StageToggles)
    thresholds: Thresholds = Field(default_factory=Thresholds)
    duplicate_markers: List[TriggerSpec] = Field(
        default_factory=lambda: [TriggerSpec(pattern='duplicate', case_sensitive=False)]
    )
    service_date_fallback: str = '01.01.2024'
    service_date_check: SafetyNetSpec = Field(
        default_factory=lambda: SafetyNetSpec(markers=_markers('Leistungsdatum'), penalty=0.25)
    )
    vat_inclusive_check: SafetyNetSpec = Field(
        default_factory=lambda: SafetyNetSpec(markers=_markers('MwSt. inkl', 'Prices incl. VAT'), penalty=0.3)
    )
    shipping_check: SafetyNetSpec = Field(
        default_factory=lambda: SafetyNetSpec(markers=_markers('Seefracht', 'Shipping'), penalty=0.2)
    )
    currency_markers: Dict[str, List[TriggerSpec]] = Field(
        default_factory=lambda: {
            'EUR': _markers('EUR', '€'),
            'USD': _markers('USD'),
            'GBP': _markers('GBP', '£'),
            'CHF': _markers('CHF'),
        }
    )
    discount_terms: Dict[str, List[TriggerSpec]] = Field(
        default_factory=lambda: {'2% Skonto': _markers('Skonto')}
    )
    # Site data, only ever supplied by the YAML file
    po_fallbacks: List[POFallbackSpec] = Field(default_factory=list)


def load_settings(config_path: Optional[str] = None) -> PipelineSettings:
    """
    Load pipeline settings from YAML, applying environment overrides

    Args:
        config_path: Optional path to a pipeline YAML file

    Returns:
        Validated PipelineSettings

    Raises:
        FileNotFoundError: config_path (or PIPELINE_CONFIG_PATH) names a missing file
    """
    settings = PipelineSettings.model_validate(Config.load_pipeline_config(config_path))

    threshold = Config.auto_accept_threshold()
    if threshold is not None:
        settings.thresholds.auto_accept = threshold

    return settings


# Create singleton instance
config = Config()
