"""
Audit Logging Module.

Records every lifecycle mutation executed through the manager, accepted or
rejected by the collaborator, as append-only JSON lines.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Union

from ..models import AuditRecord

logger = logging.getLogger(__name__)

FILE_PATTERN = "audit_*.jsonl"


class AuditLogger:
    """
    Append-only trail of lifecycle actions.

    One JSONL file is kept per UTC day under ``audit_dir``; records are
    never rewritten.
    """

    def __init__(self, audit_dir: Union[str, Path] = "audit_logs"):
        self.audit_dir = Path(audit_dir)
        self.audit_dir.mkdir(parents=True, exist_ok=True)

    def _file_for(self, moment: datetime) -> Path:
        return self.audit_dir / f"audit_{moment.astimezone(timezone.utc):%Y-%m-%d}.jsonl"

    def log_event(self, record: AuditRecord) -> str:
        """
        Append a record to the file for its day.

        Returns:
            The record ID

        Raises:
            OSError: If the record could not be written
        """
        log_file = self._file_for(record.timestamp)
        line = json.dumps(record.model_dump(mode="json"))

        try:
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.error(f"Could not append to {log_file}: {e}")
            raise

        logger.info(f"Audited {record.action} on {record.entity_type.value} "
                    f"{record.entity_id or '-'} by {record.actor} (success={record.success})")
        return record.id

    def _newest_first(self) -> Iterator[AuditRecord]:
        for log_file in sorted(self.audit_dir.glob(FILE_PATTERN), reverse=True):
            try:
                lines = log_file.read_text(encoding="utf-8").splitlines()
            except OSError as e:
                logger.error(f"Skipping unreadable audit file {log_file}: {e}")
                continue

            for line in reversed(lines):
                if not line.strip():
                    continue
                try:
                    yield AuditRecord.model_validate_json(line)
                except ValueError as e:
                    logger.warning(f"Skipping corrupt audit line in {log_file.name}: {e}")

    def get_events(
        self,
        actor: Optional[str] = None,
        entity_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditRecord]:
        """
        Query the trail, most recent first.

        Args:
            actor: Only records by this username
            entity_id: Only records about this policy or claim
            start_date: Earliest timestamp to include
            end_date: Latest timestamp to include
            limit: Maximum number of records to return
        """
        results: List[AuditRecord] = []

        for record in self._newest_first():
            if len(results) >= limit:
                break
            if actor and record.actor != actor:
                continue
            if entity_id and record.entity_id != entity_id:
                continue
            if start_date and record.timestamp < start_date:
                continue
            if end_date and record.timestamp > end_date:
                continue
            results.append(record)

        return results
