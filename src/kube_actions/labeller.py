"""Run labelling: a single identifier correlating everything created by one run."""

import uuid
from typing import Dict, Optional

RUN_ID_LABEL = "skaffold.dev/run-id"


class RunLabeller:
    """Hands out the run id, stable for the lifetime of the instance."""

    def __init__(self, run_id: Optional[str] = None):
        self._run_id = run_id or str(uuid.uuid4())

    def get_run_id(self) -> str:
        return self._run_id

    def labels(self) -> Dict[str, str]:
        return {RUN_ID_LABEL: self._run_id}

    def selector(self) -> str:
        """Label selector matching every resource of this run."""
        return f"{RUN_ID_LABEL}={self._run_id}"
