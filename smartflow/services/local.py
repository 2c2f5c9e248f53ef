"""Submission service that writes collected answers to a local JSON file.

Used by the CLI ``run`` command in place of a remote document generator.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from ..core.errors import TokenExpiredError
from ..core.models import SubmissionResult
from .base import SubmissionService
from .verification import VerificationTokenStore

logger = logging.getLogger(__name__)


class LocalSubmissionService(SubmissionService):
    def __init__(
        self,
        output_path: Path | str,
        *,
        template_id: str = "",
        token_store: VerificationTokenStore | None = None,
    ):
        self.output_path = Path(output_path)
        self.template_id = template_id
        self.token_store = token_store

    async def submit(self, values: dict[str, Any], token: str) -> SubmissionResult:
        # Mirrors a remote generator rejecting a stale proof token
        if self.token_store is not None and self.token_store.get() != token:
            raise TokenExpiredError("verification token is no longer valid")

        submitted_at = datetime.now(timezone.utc).isoformat()
        document = {
            "template_id": self.template_id,
            "submitted_at": submitted_at,
            "answers": values,
        }
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.output_path, "w") as f:
            json.dump(document, f, indent=2, default=str)
        logger.info(f"Wrote answers to {self.output_path}")
        return SubmissionResult(
            document=document,
            metadata={"path": str(self.output_path), "submitted_at": submitted_at},
        )
