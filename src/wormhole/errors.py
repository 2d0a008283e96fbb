"""Error types raised at the knowledge-store boundary."""


class KnowledgeError(ValueError):
    """Base class for rejected knowledge writes."""


class KnowledgeValidationError(KnowledgeError):
    def __init__(self, message: str, field: str = "unknown"):
        super().__init__(message)
        self.field = field


class DuplicateKnowledgeError(KnowledgeError):
    """A knowledge object with the same project, type and title already exists."""

    def __init__(self, project_path: str, knowledge_type: str, title: str):
        super().__init__(f"Knowledge already exists: {knowledge_type} '{title}'")
        self.project_path = project_path
        self.knowledge_type = knowledge_type
        self.title = title
