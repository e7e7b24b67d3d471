"""Complexity report lookup used to enrich loaded tasks.

Reports live under ``.taskmaster/reports``; a project without a report simply
gets no enrichment.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, Optional

from core import DEFAULT_TAG, TaskComplexity
from infrastructure.path_resolver import PathResolver

logger = logging.getLogger("task_store.reports")

REPORT_BASENAME = "task-complexity-report"


def _to_complexity(analysis: Dict[str, Any]) -> TaskComplexity:
    return TaskComplexity(
        complexity_score=analysis.get("complexityScore"),
        recommended_subtasks=analysis.get("recommendedSubtasks"),
        expansion_prompt=analysis.get("expansionPrompt") or "",
        complexity_reasoning=analysis.get("complexityReasoning") or "",
    )


class ComplexityReportManager:
    def __init__(self, project_root: Path | str) -> None:
        self.paths = PathResolver(project_root)
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = Lock()

    def get_report_path(self, tag: Optional[str] = None) -> Path:
        suffix = f"_{tag}" if tag and tag != DEFAULT_TAG else ""
        return self.paths.reports_dir / f"{REPORT_BASENAME}{suffix}.json"

    def load_report(self, tag: Optional[str] = None) -> Optional[Dict[str, Any]]:
        resolved = tag or DEFAULT_TAG
        with self._lock:
            if resolved in self._cache:
                return self._cache[resolved]

        path = self.get_report_path(tag)
        if not path.exists():
            logger.debug("No complexity report found for tag '%s'", resolved)
            return None
        try:
            report = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Failed to load complexity report for tag '%s': %s", resolved, exc)
            return None
        if not isinstance(report, dict) or not report.get("meta") or not isinstance(
            report.get("complexityAnalysis"), list
        ):
            logger.warning("Invalid complexity report structure at %s, ignoring", path)
            return None

        with self._lock:
            self._cache[resolved] = report
        logger.debug(
            "Loaded complexity report for tag '%s' with %d analyses", resolved, len(report["complexityAnalysis"])
        )
        return report

    def get_complexity_for_task(self, task_id: Any, tag: Optional[str] = None) -> Optional[TaskComplexity]:
        return self.get_complexity_for_tasks([task_id], tag).get(str(task_id))

    def get_complexity_for_tasks(self, task_ids: Iterable[Any], tag: Optional[str] = None) -> Dict[str, TaskComplexity]:
        report = self.load_report(tag)
        if not report:
            return {}
        by_id = {
            str(a.get("taskId")): a for a in report["complexityAnalysis"] if isinstance(a, dict) and "taskId" in a
        }
        result: Dict[str, TaskComplexity] = {}
        for task_id in task_ids:
            analysis = by_id.get(str(task_id))
            if analysis is not None:
                result[str(task_id)] = _to_complexity(analysis)
        return result

    def clear_cache(self, tag: Optional[str] = None) -> None:
        with self._lock:
            if tag:
                self._cache.pop(tag, None)
            else:
                self._cache.clear()

    def has_report(self, tag: Optional[str] = None) -> bool:
        return self.get_report_path(tag).exists()


__all__ = ["ComplexityReportManager", "REPORT_BASENAME"]
