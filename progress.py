"""
Progress report rendered as markdown.

A report has a title, a free-form summary and a table of tasks whose status
is updated as work goes on. Agent sessions keep one per run and the editor
role writes it into the workspace as the rationale artifact.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class Task:
    key: str
    description: str
    status: str


@dataclass
class ProgressReport:
    title: str = ""
    summary: str = ""
    tasks: List[Task] = field(default_factory=list)

    def write_title(self, title: str) -> "ProgressReport":
        """Replace the title. Rendered upper-cased as a H2 heading."""
        self.title = title.upper()
        return self

    def write_summary(self, summary: str) -> "ProgressReport":
        """Overwrite the summary."""
        self.summary = summary
        return self

    def append_summary(self, summary: str) -> "ProgressReport":
        """Append text to the summary on a new line, without doubling newlines."""
        if not self.summary:
            self.summary = summary
            return self
        self.summary = self.summary.rstrip() + "\n" + summary
        return self

    def start_task(self, key: str, description: str, status: str) -> "ProgressReport":
        self.tasks.append(Task(key=key, description=description, status=status))
        return self

    def update_task(self, key: str, status: str) -> "ProgressReport":
        for task in self.tasks:
            if task.key == key:
                task.status = status
                return self
        raise KeyError(f"no task at key {key}")

    def render(self, now: Optional[datetime] = None) -> str:
        contents = ""
        if self.title:
            contents = f"## {self.title}\n\n"
        if self.summary:
            contents += self.summary + "\n\n"
        if self.tasks:
            contents += "### Tasks\n\n"
            contents += "<table>\n<tr><th>Description</th><th>Status</th></tr>\n"
            for task in self.tasks:
                contents += f"<tr><td>{task.description}</td><td>{task.status}</td></tr>\n"
            contents += "</table>\n"
        stamp = (now or datetime.now().astimezone()).strftime("%Y-%m-%d %H:%M:%S %Z")
        contents += f"\n<sub>*Last update: {stamp}*</sub>\n"
        return contents
