"""Current-session tracking per project."""


class ActiveSessions:
    """Maps a project path to the session new events attach to.

    Held in memory by whoever owns the store (the MCP server keeps one per
    process). Nothing here is persisted: after a restart every project has
    no current session until an agent starts or switches to one again.
    """

    def __init__(self) -> None:
        self._by_project: dict[str, str] = {}

    def set(self, project_path: str, session_id: str) -> None:
        self._by_project[project_path] = session_id

    def get(self, project_path: str) -> str | None:
        return self._by_project.get(project_path)

    def clear(self, project_path: str) -> None:
        self._by_project.pop(project_path, None)

    def forget_session(self, session_id: str) -> None:
        """Drop every project pointer to ``session_id`` (e.g. after deletion)."""
        for project, current in list(self._by_project.items()):
            if current == session_id:
                del self._by_project[project]

    def __contains__(self, project_path: str) -> bool:
        return project_path in self._by_project
