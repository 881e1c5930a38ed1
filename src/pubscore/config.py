"""Configuration handling for literature enrichment scoring."""

import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import tomli
import tomli_w


class PubScoreConfig:
    """Configuration class for a literature scoring run."""

    def __init__(self, config_path: Union[str, Path]):
        """Initialise the configuration from a TOML file.

        Args:
            config_path: Path to the TOML configuration file
        """
        self.config_path = config_path

        # Load configuration file
        try:
            with open(config_path, "rb") as f:
                self.config = tomli.load(f)
        except FileNotFoundError:
            raise ValueError(f"Error loading configuration file: {config_path} does not exist")
        except Exception as e:
            raise ValueError(f"Error loading configuration file: {str(e)}")

        self._validate()

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> "PubScoreConfig":
        """Build a configuration from an already parsed dictionary."""
        instance = cls.__new__(cls)
        instance.config_path = None
        instance.config = config
        instance._validate()
        return instance

    def _validate(self) -> None:
        if 'query' not in self.config:
            raise ValueError("Missing required sections in configuration: query")

        self.query = self.config['query']
        if not self.query.get('terms'):
            raise ValueError("Missing required query setting: terms")
        if 'genes' not in self.query and 'genes_file' not in self.query:
            raise ValueError("Missing required query setting: genes or genes_file")

        self.universe_config = self.config.get('universe', {})
        self.analysis_params = self.config.get('analysis', {})
        self.entrez_config = self.config.get('entrez', {})
        self.output_config = self.config.get('output', {})

        # Fail on a bad cap when loading, not after the lookups
        max_score = self.max_score
        if math.isnan(max_score) or max_score <= 0:
            raise ValueError(f"analysis.max_score must be positive or 'inf', got {max_score}")

    @property
    def terms(self) -> List[str]:
        terms = self.query['terms']
        return [terms] if isinstance(terms, str) else list(terms)

    @property
    def genes(self) -> Optional[List[str]]:
        return self.query.get('genes')

    @property
    def genes_file(self) -> Optional[str]:
        return self.query.get('genes_file')

    @property
    def universe_genes(self) -> Optional[List[str]]:
        return self.universe_config.get('genes')

    @property
    def universe_file(self) -> Optional[str]:
        return self.universe_config.get('genes_file')

    @property
    def has_universe(self) -> bool:
        return bool(self.universe_genes or self.universe_file)

    @property
    def nsim(self) -> int:
        return int(self.analysis_params.get('nsim', 100000))

    @property
    def max_score(self) -> float:
        """Per-pair cap; a missing value or the string 'inf' means no cap."""
        return float(self.analysis_params.get('max_score', math.inf))

    @property
    def remove_ambiguous(self) -> bool:
        return bool(self.analysis_params.get('remove_ambiguous', True))

    @property
    def seed(self) -> Optional[int]:
        return self.analysis_params.get('seed')

    @property
    def batch_size(self) -> int:
        return int(self.analysis_params.get('batch_size', 10000))

    @property
    def num_threads(self) -> Optional[int]:
        """Threads for the simulation loop; None keeps the numba default."""
        return self.analysis_params.get('num_threads')

    @property
    def max_workers(self) -> int:
        return int(self.entrez_config.get('max_workers', 3))

    @property
    def counts_file(self) -> Optional[str]:
        return self.entrez_config.get('counts_file')

    def get_provider_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for EntrezCountProvider."""
        keys = ('email', 'api_key', 'tool', 'min_interval', 'timeout', 'max_retries', 'field')
        return {key: self.entrez_config[key] for key in keys if key in self.entrez_config}

    def get_log_dir(self) -> Optional[Path]:
        log_dir = self.output_config.get('log_dir')
        return Path(log_dir) if log_dir else None

    def save_config(self, output_path: Union[str, Path]) -> None:
        """Save the configuration to a TOML file.

        Args:
            output_path: Path to save the configuration file
        """
        with open(output_path, "wb") as f:
            tomli_w.dump(self.config, f)
