import logging
import math
import os
from dataclasses import dataclass
from typing import Dict, Optional

from config import settings
from services.state_store import StateStore

logger = logging.getLogger(__name__)

MB = 1024 * 1024

PER_FILE_MB = "ATTACHMENT_PER_FILE_MB"
TOTAL_MB = "ATTACHMENT_TOTAL_MB"
MAX_COUNT = "ATTACHMENT_MAX_COUNT"
DOWNLOAD_CAP_MB = "ATTACHMENT_DOWNLOAD_CAP_MB"

LIMIT_KEYS = (PER_FILE_MB, TOTAL_MB, MAX_COUNT, DOWNLOAD_CAP_MB)


@dataclass(frozen=True)
class AttachmentLimits:
    per_file_mb: float
    total_mb: float
    max_count: int
    download_cap_mb: float

    @property
    def per_file_bytes(self) -> int:
        return int(self.per_file_mb * MB)

    @property
    def total_bytes(self) -> int:
        return int(self.total_mb * MB)

    @property
    def download_cap_bytes(self) -> int:
        return int(self.download_cap_mb * MB)


def _parse_positive(raw: Optional[str], integer: bool) -> Optional[float]:
    if raw is None:
        return None
    try:
        value = int(raw) if integer else float(raw)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return value


class AttachmentLimitService:
    """
    Live attachment limits. Resolved on every read, in order:
    app_settings row, environment variable, config default.
    """

    def __init__(self, store: StateStore):
        self.store = store

    def _defaults(self) -> Dict[str, float]:
        return {
            PER_FILE_MB: settings.attachment_per_file_mb,
            TOTAL_MB: settings.attachment_total_mb,
            MAX_COUNT: settings.attachment_max_count,
            DOWNLOAD_CAP_MB: settings.attachment_download_cap_mb,
        }

    def _resolve(self, key: str, default: float) -> float:
        integer = key == MAX_COUNT
        for source, raw in (
            ("app_settings", self.store.get_setting(key)),
            ("env", os.getenv(key)),
        ):
            value = _parse_positive(raw, integer)
            if value is not None:
                return value
            if raw is not None:
                logger.warning(
                    f"Ignoring invalid {key}={raw!r} from {source}"
                )
        return default

    def get_limits(self) -> AttachmentLimits:
        defaults = self._defaults()
        return AttachmentLimits(
            per_file_mb=self._resolve(PER_FILE_MB, defaults[PER_FILE_MB]),
            total_mb=self._resolve(TOTAL_MB, defaults[TOTAL_MB]),
            max_count=int(self._resolve(MAX_COUNT, defaults[MAX_COUNT])),
            download_cap_mb=self._resolve(
                DOWNLOAD_CAP_MB, defaults[DOWNLOAD_CAP_MB]
            ),
        )

    def set_limit(self, key: str, value: str) -> AttachmentLimits:
        if key not in LIMIT_KEYS:
            raise ValueError(f"Unknown attachment limit {key}")
        if _parse_positive(value, key == MAX_COUNT) is None:
            raise ValueError(f"{key} must be a positive number")
        self.store.set_setting(key, str(value))
        logger.info(f"Attachment limit {key} set to {value}")
        return self.get_limits()

    def clear_limit(self, key: str) -> AttachmentLimits:
        if key not in LIMIT_KEYS:
            raise ValueError(f"Unknown attachment limit {key}")
        self.store.delete_setting(key)
        logger.info(f"Attachment limit {key} reset to default")
        return self.get_limits()
