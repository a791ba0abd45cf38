"""Aggregate progress figures over a user's projects."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from shared.api import Project


@dataclass(frozen=True)
class ProjectSummary:
    total_projects: int
    completed_projects: int
    active_projects: int
    total_tasks: int
    completed_tasks: int
    # Share of completed tasks over all tasks, 0-100.
    overall_progress: float


def summarize(projects: Iterable[Project]) -> ProjectSummary:
    projects = list(projects)
    completed_projects = sum(1 for project in projects if project.is_completed)
    total_tasks = sum(project.tasks_count for project in projects)
    completed_tasks = sum(project.completed_tasks_count for project in projects)
    overall = round(100.0 * completed_tasks / total_tasks, 2) if total_tasks else 0.0
    return ProjectSummary(
        total_projects=len(projects),
        completed_projects=completed_projects,
        active_projects=len(projects) - completed_projects,
        total_tasks=total_tasks,
        completed_tasks=completed_tasks,
        overall_progress=overall,
    )


def rank_by_progress(projects: Iterable[Project]) -> list[Project]:
    """Most advanced projects first; ties keep their incoming order."""
    return sorted(projects, key=lambda project: project.progress_percentage, reverse=True)
