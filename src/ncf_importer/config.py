"""Application configuration models and helpers.

The configuration is persisted in a YAML file (``config.yaml`` by default)
and validated with ``pydantic`` models.  Matching thresholds, import
policies and the saved-match backend all live here so that none of them is
hardcoded in the pipeline, and tests can spin up temporary environments with
customised paths.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, validator


class PathsConfig(BaseModel):
    """Filesystem locations used by the pipeline."""

    match_store_file: Path = Field(..., description="JSON file holding saved manual matches (json backend)")
    invoice_store_file: Path = Field(..., description="JSON file where committed invoices are recorded")
    output_folder: Path = Field(..., description="Folder where review reports and templates are written")
    log_folder: Path = Field(..., description="Folder for import run summaries")
    products_file: Optional[Path] = Field(default=None, description="CSV/XLSX export of the product catalogue")
    clients_file: Optional[Path] = Field(default=None, description="CSV/XLSX export of the client catalogue")

    @validator(
        "match_store_file",
        "invoice_store_file",
        "output_folder",
        "log_folder",
        "products_file",
        "clients_file",
        pre=True,
    )
    def _expand_path(cls, value: Optional[str]) -> Optional[Path]:
        if value is None:
            return None
        return Path(value).expanduser().resolve()

    def ensure_directories(self) -> None:
        """Create the directories required for the pipeline to operate."""

        for attr in ("output_folder", "log_folder"):
            path: Path = getattr(self, attr)
            path.mkdir(parents=True, exist_ok=True)
        self.match_store_file.parent.mkdir(parents=True, exist_ok=True)
        self.invoice_store_file.parent.mkdir(parents=True, exist_ok=True)


class MatchingConfig(BaseModel):
    """Minimum fuzzy scores per entity type.

    Scores range from 0 to 1.5 (token Jaccard plus a containment bonus).
    """

    product_threshold: float = Field(0.62, description="Minimum fuzzy score to accept a product")
    client_threshold: float = Field(0.68, description="Minimum fuzzy score to accept a client")
    suggestions: int = Field(5, description="Number of catalogue suggestions offered for unresolved names")

    @validator("product_threshold", "client_threshold")
    def _validate_threshold(cls, value: float) -> float:
        if not 0 < value <= 1.5:
            raise ValueError("thresholds must be greater than 0 and at most 1.5")
        return value

    @validator("suggestions")
    def _validate_suggestions(cls, value: int) -> int:
        if value < 0:
            raise ValueError("suggestions must not be negative")
        return value


class ImportConfig(BaseModel):
    """Row strictness and commit policies."""

    column_policy: str = Field("exact", description="'exact' requires 6 columns, 'at_least' ignores extra ones")
    zero_price_is_offer: bool = Field(
        True,
        description="Treat a zero unit price as an offer line.  When false a zero price is a row error.",
    )
    ncf_prefix: str = Field("B010000", description="Prefix prepended to the 4 digit suffix to build the NCF")
    commit_mode: str = Field("single", description="'single' submits invoices one by one, 'batch' all at once")
    default_percentage: float = Field(25.0, description="Commission percentage given to bulk imported products")

    @validator("column_policy")
    def _validate_policy(cls, value: str) -> str:
        allowed = {"exact", "at_least"}
        if value not in allowed:
            raise ValueError(f"Unsupported column policy '{value}'. Valid values: {sorted(allowed)}")
        return value

    @validator("commit_mode")
    def _validate_commit_mode(cls, value: str) -> str:
        allowed = {"single", "batch"}
        if value not in allowed:
            raise ValueError(f"Unsupported commit mode '{value}'. Valid values: {sorted(allowed)}")
        return value


class MatchStoreConfig(BaseModel):
    """Backend used for saved manual matches."""

    backend: str = Field("json", description="'json' (local file) or 'http' (shared REST backend)")
    base_url: Optional[str] = Field(default=None, description="Base URL of the REST backend")
    token: Optional[str] = Field(default=None, description="Bearer token sent to the REST backend")
    timeout: float = Field(10.0, description="Request timeout in seconds")

    @validator("backend")
    def _validate_backend(cls, value: str) -> str:
        allowed = {"json", "http"}
        if value not in allowed:
            raise ValueError(f"Unsupported match store backend '{value}'. Valid values: {sorted(allowed)}")
        return value


class Settings(BaseModel):
    """Top level configuration object."""

    paths: PathsConfig
    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    import_options: ImportConfig = Field(default_factory=ImportConfig)
    match_store: MatchStoreConfig = Field(default_factory=MatchStoreConfig)

    def ensure_folders(self) -> None:
        """Create all folders referenced by the configuration."""

        self.paths.ensure_directories()

    @classmethod
    def load(cls, path: Path | str = Path("config.yaml")) -> "Settings":
        """Load the configuration from a YAML file."""

        config_path = Path(path).expanduser().resolve()
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with config_path.open("r", encoding="utf-8") as stream:
            data = yaml.safe_load(stream) or {}

        settings = cls.parse_obj(data)
        settings.ensure_folders()
        return settings


__all__ = [
    "Settings",
    "PathsConfig",
    "MatchingConfig",
    "ImportConfig",
    "MatchStoreConfig",
]
