"""
Scan defaults, overridable through ``KEYHEAT_*`` environment variables or a
``.env`` file.
"""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from keyspace_heatmap.models import DEFAULT_IDLE_BUCKETS, DEFAULT_TTL_BUCKETS, ScanConfig


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="KEYHEAT_", env_file=".env", extra="ignore")

    HOST: str = "127.0.0.1"
    PORT: int = 6379
    PASSWORD: Optional[str] = None
    TLS: bool = False

    DBS: List[int] = [0]
    SAMPLE_LIMIT: int = 50000
    SCAN_COUNT: int = 1000
    TTL_BUCKETS: List[int] = list(DEFAULT_TTL_BUCKETS)
    IDLE_BUCKETS: List[int] = list(DEFAULT_IDLE_BUCKETS)
    SIZE_TOP_N: int = 20
    SIZE_STRIDE: int = 10
    DELIMITER: str = ":"
    PREFIX_DEPTH: int = 3
    TIMEOUT: Optional[float] = None

    def scan_config(self, **overrides) -> ScanConfig:
        values = dict(
            dbs=list(self.DBS),
            sample_limit=self.SAMPLE_LIMIT,
            scan_count=self.SCAN_COUNT,
            ttl_buckets=list(self.TTL_BUCKETS),
            idle_buckets=list(self.IDLE_BUCKETS),
            size_top_n=self.SIZE_TOP_N,
            delimiter=self.DELIMITER,
            prefix_depth=self.PREFIX_DEPTH,
            size_stride=self.SIZE_STRIDE,
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return ScanConfig(**values)


def get_settings() -> Settings:
    return Settings()
