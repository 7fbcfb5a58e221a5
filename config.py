from dataclasses import dataclass, field
from typing import Optional
import os
import yaml
from pathlib import Path

@dataclass
class HashingConfig:
    """Configuration for content hashing"""
    algorithm: str = "phash"  # Options: phash, dhash, average, whash
    hash_size: int = 16  # 16x16 = 256 bits
    max_image_pixels: int = 50_000_000  # 50MP limit
    max_image_bytes: int = 50 * 1024 * 1024  # 50 MB
    thumbnail_size: int = 1000


@dataclass
class MatchingConfig:
    """Configuration for duplicate matching"""
    image_threshold: int = 5  # Hamming distance in bits


@dataclass
class ReportConfig:
    """Configuration for statistics reports"""
    window_days: int = 7
    top_contributors: int = 5
    top_offenders: int = 3


@dataclass
class SystemConfig:
    """System-wide configuration"""
    n_workers: int = 4
    database_path: str = "data/repost_guard.db"
    log_dir: str = "logs"
    log_level: str = "INFO"
    store_timeout: float = 5.0
    lock_timeout: float = 10.0
    group_id: Optional[str] = None
    link_template: str = "https://t.me/c/{chat}/{message}"

    # Content hashing
    hashing: HashingConfig = field(default_factory=HashingConfig)

    # Duplicate matching
    matching: MatchingConfig = field(default_factory=MatchingConfig)

    # Statistics reports
    report: ReportConfig = field(default_factory=ReportConfig)

    def save(self, path: str = "config.yaml"):
        """Save configuration to YAML file"""
        config_dict = {
            'n_workers': self.n_workers,
            'database_path': self.database_path,
            'log_dir': self.log_dir,
            'log_level': self.log_level,
            'store_timeout': self.store_timeout,
            'lock_timeout': self.lock_timeout,
            'group_id': self.group_id,
            'link_template': self.link_template,
            'hashing': {
                'algorithm': self.hashing.algorithm,
                'hash_size': self.hashing.hash_size,
                'max_image_pixels': self.hashing.max_image_pixels,
                'max_image_bytes': self.hashing.max_image_bytes,
                'thumbnail_size': self.hashing.thumbnail_size
            },
            'matching': {
                'image_threshold': self.matching.image_threshold
            },
            'report': {
                'window_days': self.report.window_days,
                'top_contributors': self.report.top_contributors,
                'top_offenders': self.report.top_offenders
            }
        }

        with open(path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2)

    @classmethod
    def load(cls, path: str = "config.yaml") -> 'SystemConfig':
        """Load configuration from YAML file, then apply environment overrides"""
        config = cls()

        if Path(path).exists():
            with open(path, 'r') as f:
                config_dict = yaml.safe_load(f) or {}
            config._apply_dict(config_dict)

        config._apply_env()
        return config

    def _apply_dict(self, config_dict: dict):
        # Load system settings
        self.n_workers = config_dict.get('n_workers', self.n_workers)
        self.database_path = config_dict.get('database_path', self.database_path)
        self.log_dir = config_dict.get('log_dir', self.log_dir)
        self.log_level = config_dict.get('log_level', self.log_level)
        self.store_timeout = config_dict.get('store_timeout', self.store_timeout)
        self.lock_timeout = config_dict.get('lock_timeout', self.lock_timeout)
        self.group_id = config_dict.get('group_id', self.group_id)
        self.link_template = config_dict.get('link_template', self.link_template)

        # Load hashing settings
        if 'hashing' in config_dict:
            h = config_dict['hashing']
            self.hashing = HashingConfig(
                algorithm=h.get('algorithm', self.hashing.algorithm),
                hash_size=h.get('hash_size', self.hashing.hash_size),
                max_image_pixels=h.get('max_image_pixels', self.hashing.max_image_pixels),
                max_image_bytes=h.get('max_image_bytes', self.hashing.max_image_bytes),
                thumbnail_size=h.get('thumbnail_size', self.hashing.thumbnail_size)
            )

        # Load matching settings
        if 'matching' in config_dict:
            m = config_dict['matching']
            self.matching = MatchingConfig(
                image_threshold=m.get('image_threshold', self.matching.image_threshold)
            )

        # Load report settings
        if 'report' in config_dict:
            r = config_dict['report']
            self.report = ReportConfig(
                window_days=r.get('window_days', self.report.window_days),
                top_contributors=r.get('top_contributors', self.report.top_contributors),
                top_offenders=r.get('top_offenders', self.report.top_offenders)
            )

    def _apply_env(self):
        self.database_path = os.environ.get('REPOST_GUARD_DATABASE_PATH', self.database_path)
        self.log_level = os.environ.get('REPOST_GUARD_LOG_LEVEL', self.log_level)
        self.group_id = os.environ.get('REPOST_GUARD_GROUP_ID', self.group_id)
