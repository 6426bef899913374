"""
Run history for flow executions.
Each run appends one JSON line; the summary gives per-flow test case status.

History is bookkeeping only: a failed write never fails the run itself.
"""
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class RunHistory:

    def __init__(self, path: Path):
        self.path = Path(path)

    def record_run(self, flow: str, environment: str, user: str, status: str,
                   exit_code: Optional[int] = None, duration: float = 0.0) -> None:
        """Append one run record."""
        event = {
            "ts": datetime.now().isoformat(timespec="seconds"),
            "flow": flow,
            "environment": environment,
            "user": user,
            "status": status,
            "exit_code": exit_code,
            "duration": round(duration, 1),
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event) + "\n")
        except OSError as e:
            logger.warning("Could not record run of %s: %s", flow, e)

    def runs(self) -> List[dict]:
        """All records in file order. Corrupt lines are skipped."""
        if not self.path.exists():
            return []
        events = []
        try:
            with open(self.path, encoding="utf-8") as f:
                for line in f:
                    if not line.strip():
                        continue
                    try:
                        event = json.loads(line)
                    except ValueError:
                        event = None
                    if not isinstance(event, dict):
                        logger.debug("Skipping corrupt history line: %r", line[:80])
                        continue
                    events.append(event)
        except OSError as e:
            logger.warning("Could not read run history %s: %s", self.path, e)
        return events

    def test_cases(self, flows: Iterable[str]) -> List[Dict[str, object]]:
        """
        Latest state of each flow.

        status is passing/failing/unknown from the last recorded run, or
        pending when the flow never ran.
        """
        last: Dict[str, dict] = {}
        counts: Dict[str, int] = {}
        for event in self.runs():
            name = event.get("flow")
            if not name:
                continue
            last[name] = event
            counts[name] = counts.get(name, 0) + 1

        cases = []
        for flow in flows:
            event = last.get(flow)
            if event is None:
                cases.append({"flow": flow, "status": "pending", "last_run": None,
                              "environment": None, "user": None, "runs": 0})
                continue
            status = {"success": "passing", "failed": "failing"}.get(event.get("status"), "unknown")
            cases.append({
                "flow": flow,
                "status": status,
                "last_run": event.get("ts"),
                "environment": event.get("environment"),
                "user": event.get("user"),
                "runs": counts[flow],
            })
        return cases
