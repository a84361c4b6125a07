"""
Audit Log - JSON Lines Record of Tool Executions
================================================
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class AuditLog:
    """Appends one JSON object per execution outcome to ``log_file``"""

    def __init__(self, log_file: Optional[str] = None):
        self.log_file = log_file
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    def record(self, entry: Dict[str, Any]) -> None:
        if not self.log_file:
            return

        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            **entry,
        }

        try:
            with open(self.log_file, 'a') as f:
                f.write(json.dumps(log_entry, default=str) + "\n")
        except OSError as e:
            # Don't fail execution on logging errors
            logger.warning(f"Failed to write audit entry: {e}")
