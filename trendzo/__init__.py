"""Trendzo ETL: turns trending TikTok videos into reusable templates and sounds."""

from .config import EtlConfig, load_config

__all__ = ["EtlConfig", "load_config"]
