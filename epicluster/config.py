"""
epicluster/config.py

Analysis configuration, read from YAML.

Example (config/analysis.yaml)
------------------------------
analysis:
  quantile: 0.95
  quantiles: [0.9, 0.95, 0.99]
  solver:
    truncation_tol: 1.0e-9
    max_generations: 10000
streams:
  temporal:
    family: gamma
    reporting: 0.5
    params: {shape: 2.36, scale: 2.64}
  genetic:
    family: poisson
    reporting: 0.5
    params: {rate: 0.9}
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Union

import yaml

from .errors import ConfigurationError
from .families import MODEL_FAMILIES, build_model
from .model import SolverSettings, check_quantile, check_reporting, CasePairModel


def load_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def deep_get(d: Dict[str, Any], keys: List[str], default: Any = None) -> Any:
    cur: Any = d
    for k in keys:
        if not isinstance(cur, dict) or k not in cur:
            return default
        cur = cur[k]
    return cur


def ensure_dirs(*dirs: Path) -> None:
    for d in dirs:
        d.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class StreamConfig:
    family: str
    params: Dict[str, Any] = field(default_factory=dict)
    reporting: float = 1.0

    def __post_init__(self) -> None:
        family = str(self.family).lower().strip()
        if family not in MODEL_FAMILIES:
            raise ConfigurationError(f"Unknown model family '{self.family}'. Options: {sorted(MODEL_FAMILIES)}")
        object.__setattr__(self, "family", family)
        object.__setattr__(self, "reporting", check_reporting(self.reporting))

    def build(self, settings: SolverSettings) -> CasePairModel:
        return build_model(self.family, settings=settings, **self.params)


@dataclass(frozen=True)
class AnalysisConfig:
    streams: Dict[str, StreamConfig]
    quantile: float = 0.95
    quantiles: List[float] = field(default_factory=lambda: [0.9, 0.95, 0.99])
    solver: SolverSettings = field(default_factory=SolverSettings)

    def __post_init__(self) -> None:
        if not self.streams:
            raise ConfigurationError("Configuration defines no streams.")
        check_quantile(self.quantile)
        for q in self.quantiles:
            check_quantile(q)

    @classmethod
    def from_dict(cls, cfg: Dict[str, Any]) -> "AnalysisConfig":
        streams_cfg = deep_get(cfg, ["streams"], {}) or {}
        if not isinstance(streams_cfg, dict):
            raise ConfigurationError("'streams' must be a mapping of stream type -> settings.")

        streams = {}
        for name, sc in streams_cfg.items():
            if not isinstance(sc, dict) or "family" not in sc:
                raise ConfigurationError(f"Stream '{name}' needs a 'family' entry.")
            streams[str(name)] = StreamConfig(
                family=sc["family"],
                params=dict(sc.get("params") or {}),
                reporting=float(sc.get("reporting", 1.0)),
            )

        solver_cfg = deep_get(cfg, ["analysis", "solver"], {}) or {}
        unknown = set(solver_cfg) - set(SolverSettings.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(f"Unknown solver settings: {sorted(unknown)}")
        # PyYAML reads "1e-9" (no dot) as a string
        solver_cfg = {
            k: int(v) if k in ("max_generations", "max_expansions", "maxiter") else float(v)
            for k, v in solver_cfg.items()
        }

        return cls(
            streams=streams,
            quantile=float(deep_get(cfg, ["analysis", "quantile"], 0.95)),
            quantiles=[float(q) for q in deep_get(cfg, ["analysis", "quantiles"], [0.9, 0.95, 0.99])],
            solver=SolverSettings(**solver_cfg),
        )

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AnalysisConfig":
        return cls.from_dict(load_yaml(path))
