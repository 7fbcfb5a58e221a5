# core/service.py

import logging

from config import SystemConfig
from core.content_hasher import ContentHasher
from core.database import MediaStore
from core.duplicate_engine import DuplicateDecisionEngine
from core.listener import EventListener
from core.similarity_index import SimilarityIndex
from core.statistics import StatisticsAggregator
from utils.logging_config import PerformanceLogger

logger = logging.getLogger(__name__)


class RepostGuard:
    """
    Wires the store into every component and owns its lifecycle:
    opened on construction, closed by close() or on leaving a with block.
    """

    def __init__(self, config: SystemConfig = None, store: MediaStore = None):
        self.config = config or SystemConfig()
        self.store = store or MediaStore(self.config.database_path,
                                         timeout=self.config.store_timeout)
        self.performance = PerformanceLogger()

        self.hasher = ContentHasher(self.config.hashing)
        self.index = SimilarityIndex(
            self.store,
            default_threshold=self.config.matching.image_threshold,
            lock_timeout=self.config.lock_timeout
        )
        self.engine = DuplicateDecisionEngine(
            self.store,
            self.index,
            self.hasher,
            image_threshold=self.config.matching.image_threshold,
            link_template=self.config.link_template,
            performance=self.performance
        )
        self.statistics = StatisticsAggregator(
            self.store,
            window_days=self.config.report.window_days,
            top_contributors=self.config.report.top_contributors,
            top_offenders=self.config.report.top_offenders,
            group_id=self.config.group_id
        )
        self.listener = EventListener(self.engine, n_workers=self.config.n_workers)

        logger.info("Repost guard ready (store %s, %s hash, threshold %d)",
                    self.config.database_path, self.config.hashing.algorithm,
                    self.config.matching.image_threshold)

    def close(self):
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
